"""
Allow-listed query builder for the package tables.

Only fields declared in a table's field enum can reach SQL text; values
are always bound as parameters. Anything else raises InvalidFieldError
before a statement is built.

Filter semantics:
    installed, exporting    boolean, any common spelling ("1", "yes", "True"...);
                            unparseable values are skipped
    depends, provides       exact member of the stored ',' separated list
    other string values     case-sensitive substring
    other non-string values exact equality
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from .errors import InvalidFieldError
from .models import LIST_SEPARATOR, wrap_token


class HostField(Enum):
    """Queryable fields of the host package table."""
    NAME = "name"
    SECTION = "section"
    INSTALLED_SIZE = "installedSize"
    MAINTAINER = "maintainer"
    VERSION = "version"
    VERSION_INSTALLED = "versionInstalled"
    DEPENDS = "depends"
    PROVIDES = "provides"
    SIZE = "size"
    FILENAME = "filename"
    DESCRIPTION = "description"
    CHANGELOG = "changelog"
    INSTALLED = "installed"


class ContainerField(Enum):
    """Queryable fields of the container package table."""
    NAME = "name"
    VERSION = "version"
    DESCRIPTION = "description"
    CONTAINER = "container"
    INSTALLED = "installed"
    EXPORTING = "exporting"
    MANAGER = "manager"


# API field name -> column name, where they differ
_COLUMNS = {
    'installedSize': 'installed_size',
    'versionInstalled': 'installed_version',
}

BOOLEAN_FIELDS = frozenset({'installed', 'exporting'})
LIST_FIELDS = frozenset({'depends', 'provides'})

_TRUE = frozenset({'1', 't', 'true', 'y', 'yes', 'on'})
_FALSE = frozenset({'0', 'f', 'false', 'n', 'no', 'off'})

FieldLike = Union[str, Enum]


@dataclass(frozen=True)
class Table:
    """A package table and the closed set of fields it exposes."""
    name: str
    fields: Type[Enum]

    def allowed(self) -> List[str]:
        return [f.value for f in self.fields]


HOST_TABLE = Table('host_image_packages', HostField)
CONTAINER_TABLE = Table('distrobox_packages', ContainerField)


def parse_bool(value: Any) -> Optional[bool]:
    """Parse a boolean in any usual spelling.

    Returns:
        True/False, or None if the value is not a boolean
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    return None


def column_for(field: Enum) -> str:
    """Column name backing an allow-listed field."""
    return _COLUMNS.get(field.value, field.value)


def coerce_field(table: Table, field: FieldLike, kind: str = "filter") -> Enum:
    """Map a caller-supplied field name onto the table's field enum.

    Raises:
        InvalidFieldError: if the field is not allow-listed for the table
    """
    if isinstance(field, table.fields):
        return field
    name = field.value if isinstance(field, Enum) else field
    try:
        return table.fields(name)
    except ValueError:
        raise InvalidFieldError(str(name), table.allowed(), kind) from None


class PackageQuery:
    """Incremental builder for SELECT/COUNT statements on one table.

    Example:
        query = PackageQuery(HOST_TABLE)
        query.filter('installed', 'yes').order_by('name', 'desc').paginate(20, 40)
        sql, params = query.select_sql(['name', 'version'])
    """

    def __init__(self, table: Table):
        self.table = table
        self._conditions: List[str] = []
        self._params: List[Any] = []
        self._order: Optional[str] = None
        self._limit = 0
        self._offset = 0

    def where(self, condition: str, *params) -> 'PackageQuery':
        """Add a fixed condition written by the store itself."""
        self._conditions.append(condition)
        self._params.extend(params)
        return self

    def filter(self, field: FieldLike, value: Any) -> 'PackageQuery':
        """Add one allow-listed filter."""
        member = coerce_field(self.table, field, "filter")
        column = column_for(member)

        if member.value in BOOLEAN_FIELDS:
            flag = parse_bool(value)
            if flag is None:
                return self
            self._conditions.append(f"{column} = ?")
            self._params.append(1 if flag else 0)
        elif member.value in LIST_FIELDS:
            self._conditions.append(
                f"instr('{LIST_SEPARATOR}' || {column} || '{LIST_SEPARATOR}', ?) > 0"
            )
            self._params.append(wrap_token(str(value)))
        elif isinstance(value, str):
            self._conditions.append(f"instr({column}, ?) > 0")
            self._params.append(value)
        else:
            self._conditions.append(f"{column} = ?")
            self._params.append(value)
        return self

    def filters(self, filters: Optional[Dict[FieldLike, Any]]) -> 'PackageQuery':
        for field, value in (filters or {}).items():
            self.filter(field, value)
        return self

    def order_by(self, field: Optional[FieldLike], direction: str = "") -> 'PackageQuery':
        """Sort by at most one field; unknown directions mean ascending."""
        if not field:
            self._order = None
            return self
        member = coerce_field(self.table, field, "sort")
        upper = (direction or "").upper()
        if upper not in ("ASC", "DESC"):
            upper = "ASC"
        self._order = f"{column_for(member)} {upper}"
        return self

    def paginate(self, limit: int = 0, offset: int = 0) -> 'PackageQuery':
        """limit <= 0 disables pagination entirely."""
        self._limit = limit or 0
        self._offset = offset or 0
        return self

    def _where_clause(self) -> str:
        if not self._conditions:
            return ""
        return " WHERE " + " AND ".join(self._conditions)

    def select_sql(self, columns: List[str]) -> Tuple[str, List[Any]]:
        sql = f"SELECT {', '.join(columns)} FROM {self.table.name}"
        sql += self._where_clause()
        params = list(self._params)

        if self._order:
            sql += f" ORDER BY {self._order}"

        if self._limit > 0:
            sql += " LIMIT ?"
            params.append(self._limit)
            if self._offset > 0:
                sql += " OFFSET ?"
                params.append(self._offset)

        return sql, params

    def count_sql(self) -> Tuple[str, List[Any]]:
        sql = f"SELECT COUNT(*) FROM {self.table.name}" + self._where_clause()
        return sql, list(self._params)


def build_select(table: Table, columns: List[str],
                 filters: Dict[FieldLike, Any] = None,
                 sort_field: FieldLike = None, sort_order: str = "",
                 limit: int = 0, offset: int = 0) -> Tuple[str, List[Any]]:
    """One-shot helper around PackageQuery.select_sql()."""
    query = PackageQuery(table).filters(filters)
    query.order_by(sort_field, sort_order).paginate(limit, offset)
    return query.select_sql(columns)


def build_count(table: Table, filters: Dict[FieldLike, Any] = None) -> Tuple[str, List[Any]]:
    return PackageQuery(table).filters(filters).count_sql()
