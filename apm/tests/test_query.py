"""Tests for the allow-listed query builder"""

import pytest

from apm.core.errors import InvalidFieldError
from apm.core.query import (
    CONTAINER_TABLE, HOST_TABLE, ContainerField, HostField, PackageQuery,
    build_count, build_select, parse_bool,
)


class TestParseBool:
    """Tests for boolean spellings."""

    @pytest.mark.parametrize('value', ['1', 'true', 'TRUE', 'yes', 'Yes', 'on', 'y', 't', True, 1])
    def test_true_values(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize('value', ['0', 'false', 'False', 'no', 'off', 'n', 'f', False, 0])
    def test_false_values(self, value):
        assert parse_bool(value) is False

    @pytest.mark.parametrize('value', ['maybe', '', '2', 2, None, 1.5])
    def test_unparseable(self, value):
        assert parse_bool(value) is None


class TestFilters:
    """Tests for WHERE clause building."""

    def test_no_filters(self):
        sql, params = build_select(HOST_TABLE, ['name'])
        assert sql == "SELECT name FROM host_image_packages"
        assert params == []

    def test_string_filter_is_substring(self):
        sql, params = build_select(HOST_TABLE, ['name'], {'name': 'vim'})
        assert "instr(name, ?) > 0" in sql
        assert params == ['vim']

    def test_non_string_filter_is_equality(self):
        sql, params = build_select(HOST_TABLE, ['name'], {'size': 1024})
        assert "size = ?" in sql
        assert params == [1024]

    def test_api_name_maps_to_column(self):
        sql, params = build_select(HOST_TABLE, ['name'], {'versionInstalled': '1.0'})
        assert "instr(installed_version, ?) > 0" in sql

    def test_enum_member_accepted(self):
        sql, params = build_select(HOST_TABLE, ['name'], {HostField.SECTION: 'Editors'})
        assert "instr(section, ?) > 0" in sql
        assert params == ['Editors']

    def test_boolean_filter(self):
        sql, params = build_select(HOST_TABLE, ['name'], {'installed': 'yes'})
        assert "installed = ?" in sql
        assert params == [1]

    def test_unparseable_boolean_is_skipped(self):
        with_filter = build_select(HOST_TABLE, ['name'], {'installed': 'perhaps'})
        without = build_select(HOST_TABLE, ['name'])
        assert with_filter == without

    def test_list_field_wraps_separators(self):
        sql, params = build_select(HOST_TABLE, ['name'], {'provides': 'lib'})
        assert "instr(',' || provides || ',', ?) > 0" in sql
        assert params == [',lib,']

    def test_filters_are_anded(self):
        sql, params = build_select(HOST_TABLE, ['name'], {'name': 'a', 'installed': 0})
        assert " WHERE " in sql
        assert " AND " in sql
        assert params == ['a', 0]

    def test_invalid_field_rejected(self):
        with pytest.raises(InvalidFieldError) as exc:
            build_select(HOST_TABLE, ['name'], {'name; DROP TABLE x': 'a'})
        assert exc.value.field == 'name; DROP TABLE x'
        assert 'name' in exc.value.allowed
        assert 'Available fields' in str(exc.value)

    def test_container_field_not_allowed_on_host(self):
        with pytest.raises(InvalidFieldError):
            build_select(HOST_TABLE, ['name'], {'exporting': True})

    def test_container_table_has_exporting(self):
        sql, params = build_select(CONTAINER_TABLE, ['name'], {ContainerField.EXPORTING: 'true'})
        assert "exporting = ?" in sql
        assert params == [1]

    def test_fixed_condition_comes_first(self):
        query = PackageQuery(CONTAINER_TABLE).where("container = ?", 'box')
        query.filter('name', 'vim')
        sql, params = query.select_sql(['name'])
        assert sql.index("container = ?") < sql.index("instr(name")
        assert params == ['box', 'vim']


class TestSortAndPagination:
    """Tests for ORDER BY / LIMIT / OFFSET."""

    def test_no_sort_field(self):
        sql, _ = build_select(HOST_TABLE, ['name'], sort_order='desc')
        assert "ORDER BY" not in sql

    def test_sort_desc_case_insensitive(self):
        sql, _ = build_select(HOST_TABLE, ['name'], sort_field='name', sort_order='Desc')
        assert sql.endswith("ORDER BY name DESC")

    def test_unknown_direction_is_ascending(self):
        sql, _ = build_select(HOST_TABLE, ['name'], sort_field='installedSize', sort_order='sideways')
        assert sql.endswith("ORDER BY installed_size ASC")

    def test_invalid_sort_field(self):
        with pytest.raises(InvalidFieldError) as exc:
            build_select(HOST_TABLE, ['name'], sort_field='rowid')
        assert exc.value.kind == 'sort'

    def test_limit_and_offset(self):
        sql, params = build_select(HOST_TABLE, ['name'], limit=20, offset=40)
        assert sql.endswith("LIMIT ? OFFSET ?")
        assert params == [20, 40]

    def test_zero_offset_omitted(self):
        sql, params = build_select(HOST_TABLE, ['name'], limit=5)
        assert sql.endswith("LIMIT ?")
        assert params == [5]

    @pytest.mark.parametrize('limit', [0, -1])
    def test_no_limit_ignores_offset(self, limit):
        sql, params = build_select(HOST_TABLE, ['name'], limit=limit, offset=10)
        assert "LIMIT" not in sql
        assert "OFFSET" not in sql
        assert params == []

    def test_count(self):
        sql, params = build_count(HOST_TABLE, {'installed': True})
        assert sql == "SELECT COUNT(*) FROM host_image_packages WHERE installed = ?"
        assert params == [1]
