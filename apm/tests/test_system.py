"""Tests for the host package service"""

import pytest

from apm.core.backend import PackageBackend
from apm.core.database import PackageDatabase
from apm.core.desired import DesiredConfig, DesiredConfigStore
from apm.core.errors import BackendError
from apm.core.image import ImageBuilder
from apm.core.models import ListParams, Package, Scope
from apm.core.sync import sync_host
from apm.core.system import SystemService, found_message


class FakeBackend(PackageBackend):

    def __init__(self, packages, installed=None, fail=False):
        self.packages = packages
        self.installed = installed or {}
        self.fail = fail
        self.scans = 0
        self.refreshes = 0

    def refresh_lists(self):
        self.refreshes += 1

    def scan_available_packages(self):
        self.scans += 1
        if self.fail:
            raise BackendError("apt-cache dumpavail exited with code 100")
        return list(self.packages)

    def get_installed_snapshot(self):
        return dict(self.installed)


class FakeImageBuilder(ImageBuilder):

    def __init__(self, transport='registry'):
        self.transport = transport
        self.builds = []

    def rebuild_and_switch(self, config):
        self.builds.append(config.to_dict())
        return 'localhost/apm-os:latest'

    def status(self):
        return {'status': {'booted': {'image': {'image': {
            'image': 'localhost/apm-os:latest', 'transport': self.transport,
        }}}}}


PACKAGES = [
    Package(name='vim', version='9.0', section='Editors'),
    Package(name='vim-common', version='9.0', section='Editors'),
    Package(name='htop', version='3.2', section='Monitoring'),
]


@pytest.fixture
def db(tmp_path):
    database = PackageDatabase(tmp_path / 'apm.db')
    yield database
    database.close()


@pytest.fixture
def store(tmp_path):
    return DesiredConfigStore(tmp_path / 'image.yml', tmp_path / 'Containerfile')


def make_service(db, store, backend=None, builder=None, atomic=True):
    backend = backend or FakeBackend(PACKAGES, installed={'vim': '9.0'})
    return SystemService(db, backend, config_store=store,
                         image_builder=builder or FakeImageBuilder(), atomic=atomic)


class TestSync:

    def test_sync_host(self, db):
        backend = FakeBackend(PACKAGES, installed={'htop': '3.2'})
        stages = []
        result = sync_host(db, backend, progress_callback=lambda s, c, t: stages.append(s))

        assert result.packages_count == 3
        assert result.installed_count == 1
        assert stages == ['scanning', 'importing', 'installed']
        assert db.get_by_name(Scope.host(), 'htop').installed is True


class TestPackages:
    """Tests for update/info/list/search."""

    def test_found_message(self):
        assert found_message(1) == "Found 1 record"
        assert found_message(3) == "Found 3 records"

    def test_update(self, db, store):
        backend = FakeBackend(PACKAGES)
        response = make_service(db, store, backend=backend).update()
        assert response.error is False
        assert response.data['count'] == 3
        assert backend.refreshes == 1

    def test_info_does_not_refresh_lists(self, db, store):
        backend = FakeBackend(PACKAGES)
        make_service(db, store, backend=backend).info('vim')
        assert backend.refreshes == 0

    def test_update_failure_keeps_cache(self, db, store):
        make_service(db, store).update()
        response = make_service(db, store, backend=FakeBackend([], fail=True)).update()
        assert response.error is True
        assert "exited with code 100" in response.message
        assert db.count(Scope.host()) == 3

    def test_info_scans_empty_cache(self, db, store):
        backend = FakeBackend(PACKAGES, installed={'vim': '9.0'})
        response = make_service(db, store, backend=backend).info('vim')

        assert response.error is False
        assert response.data['packageInfo']['installed'] is True
        assert backend.scans == 1

    def test_info_missing(self, db, store):
        response = make_service(db, store).info('ghost')
        assert response.error is True
        assert "ghost" in response.message

    def test_info_empty_name(self, db, store):
        assert make_service(db, store).info('  ').error is True

    def test_list_filter_and_sort(self, db, store):
        params = ListParams(sort='name', order='desc', filter_field='section',
                            filter_value='Editors')
        response = make_service(db, store).list(params)

        assert [p['name'] for p in response.data['packages']] == ['vim-common', 'vim']
        assert response.data['totalCount'] == 2

    def test_list_pagination_total(self, db, store):
        response = make_service(db, store).list(ListParams(sort='name', limit=1, offset=1))
        assert [p['name'] for p in response.data['packages']] == ['vim']
        assert response.data['totalCount'] == 3

    def test_list_invalid_field(self, db, store):
        params = ListParams(filter_field='bogus', filter_value='x')
        response = make_service(db, store).list(params)
        assert response.error is True
        assert "Available fields" in response.message

    def test_list_nothing_found(self, db, store):
        params = ListParams(filter_field='name', filter_value='nope')
        response = make_service(db, store).list(params)
        assert response.error is True
        assert response.message == "Nothing found"

    def test_search_installed_only(self, db, store):
        response = make_service(db, store).search('vim', installed_only=True)
        assert [p['name'] for p in response.data['packages']] == ['vim']


class TestImage:
    """Tests for the image operations."""

    def test_status_cloud_image(self, db, store):
        response = make_service(db, store).image_status()
        assert response.data['bootedImage']['status'] == "Cloud image without changes"

    def test_status_local_image(self, db, store):
        builder = FakeImageBuilder(transport='containers-storage')
        response = make_service(db, store, builder=builder).image_status()
        assert response.data['bootedImage']['status'].startswith("Modified image")

    def test_status_requires_atomic(self, db, store):
        response = make_service(db, store, atomic=False).image_status()
        assert response.error is True
        assert "atomic" in response.message

    def test_apply(self, db, store):
        store.save(DesiredConfig(install=['htop']))
        builder = FakeImageBuilder()
        response = make_service(db, store, builder=builder).image_apply()

        assert response.error is False
        assert builder.builds[0]['packages']['install'] == ['htop']
        assert "RUN apt-get -y install htop" in store.containerfile.read_text()
        assert db.count_image_history() == 1

    def test_history(self, db, store):
        db.record_image_history('a', {}, timestamp=1)
        db.record_image_history('b', {}, timestamp=2)
        response = make_service(db, store).image_history(limit=1)

        assert [h['imageName'] for h in response.data['history']] == ['b']
        assert response.data['totalCount'] == 2
