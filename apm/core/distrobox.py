"""Package management inside distrobox containers."""

import logging
import threading

from .backend import ContainerBackend, DistroboxBackend
from .database import PackageDatabase
from .errors import ApmError
from .models import ListParams, Response, Scope, error_response
from .sync import sync_container
from .system import found_message

logger = logging.getLogger(__name__)


class ContainerService:
    """Cached package lists of containers, and app install/export.

    A container that was never scanned is scanned on first use.
    """

    def __init__(self, db: PackageDatabase, backend: ContainerBackend = None,
                 cancel_event: threading.Event = None):
        self.db = db
        self.backend = backend or DistroboxBackend()
        self.cancel_event = cancel_event

    def _scope(self, container: str) -> Scope:
        scope = Scope.for_container(container)
        if not self.db.exists(scope):
            logger.info(f"No cached packages for {scope.container}, updating")
            sync_container(self.db, self.backend, scope.container, self.cancel_event)
        return scope

    def _fail(self, e: Exception) -> Response:
        logger.error(str(e))
        return error_response(str(e))

    def update(self, container: str) -> Response:
        try:
            result = sync_container(self.db, self.backend, container, self.cancel_event)
        except (ApmError, ValueError) as e:
            return self._fail(e)
        return Response("Package list updated successfully", data={
            'container': result.scope.container,
            'count': result.packages_count,
        })

    def info(self, container: str, name: str) -> Response:
        name = (name or "").strip()
        if not name:
            return error_response("A package name is required, for example: info package")
        try:
            scope = self._scope(container)
            pkg = self.db.get_by_name(scope, name)
        except (ApmError, ValueError) as e:
            return self._fail(e)
        return Response("Package information", data={'packageInfo': pkg.to_dict()})

    def search(self, container: str, name: str) -> Response:
        name = (name or "").strip()
        if not name:
            return error_response("A package name is required, for example: search package")
        try:
            scope = self._scope(container)
            packages = self.db.search(scope, name)
        except (ApmError, ValueError) as e:
            return self._fail(e)
        return Response(found_message(len(packages)),
                        data={'packages': [pkg.to_dict() for pkg in packages]})

    def list(self, params: ListParams) -> Response:
        try:
            if params.force_update:
                sync_container(self.db, self.backend, params.container, self.cancel_event)
            scope = self._scope(params.container)
            filters = params.filters()
            total = self.db.count(scope, filters)
            packages = self.db.query(scope, filters, params.sort, params.order,
                                     params.limit, params.offset)
        except (ApmError, ValueError) as e:
            return self._fail(e)
        return Response(found_message(len(packages)), data={
            'packages': [pkg.to_dict() for pkg in packages],
            'totalCount': total,
        })

    def install(self, container: str, name: str, export: bool = False) -> Response:
        """Install a package, and optionally export it to the host."""
        name = (name or "").strip()
        if not name:
            return error_response("A package name is required, for example: install package")
        try:
            scope = self._scope(container)
            pkg = self.db.get_by_name(scope, name)
            if not pkg.installed:
                self.backend.install(scope.container, name)
                self.db.update_field(scope, name, 'installed', True,
                                     installed_version=pkg.version)
            if export and not pkg.exporting:
                self.backend.export_app(scope.container, name)
                self.db.update_field(scope, name, 'exporting', True)
            pkg = self.db.get_by_name(scope, name)
        except (ApmError, ValueError) as e:
            return self._fail(e)
        return Response(f"Package {name} installed", data={'packageInfo': pkg.to_dict()})

    def remove(self, container: str, name: str, only_export: bool = False) -> Response:
        """Remove a package; with only_export, just withdraw its export."""
        name = (name or "").strip()
        if not name:
            return error_response("A package name is required, for example: remove package")
        try:
            scope = self._scope(container)
            pkg = self.db.get_by_name(scope, name)
            if pkg.exporting:
                self.backend.export_app(scope.container, name, delete=True)
                self.db.update_field(scope, name, 'exporting', False)
            if not only_export and pkg.installed:
                self.backend.remove(scope.container, name)
                self.db.update_field(scope, name, 'installed', False)
            pkg = self.db.get_by_name(scope, name)
        except (ApmError, ValueError) as e:
            return self._fail(e)
        return Response(f"Package {name} removed", data={'packageInfo': pkg.to_dict()})

    def container_list(self) -> Response:
        try:
            containers = self.backend.list_containers()
        except ApmError as e:
            return self._fail(e)
        cached = set(self.db.list_containers())
        for info in containers:
            info['cached'] = info['name'] in cached
        return Response(found_message(len(containers)), data={'containers': containers})

    def container_remove(self, name: str) -> Response:
        """Tear a container down and forget its cached packages."""
        try:
            scope = Scope.for_container(name)
            self.backend.remove_container(scope.container)
            removed = self.db.delete_scope(scope)
        except (ApmError, ValueError) as e:
            return self._fail(e)
        return Response(f"Container {scope.container} removed successfully",
                        data={'container': scope.container, 'packagesRemoved': removed})
