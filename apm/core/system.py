"""
Host package service: update, info, list, search and image management.

Install and remove go through TransactionCoordinator; everything else a
caller can ask about the host lives here. Every method returns a Response,
errors included.
"""

import logging
import threading
from typing import Any, Dict

from .backend import PackageBackend
from .config import get_image_file, is_atomic
from .database import PackageDatabase
from .desired import DesiredConfigStore
from .errors import ApmError
from .image import BootcImageBuilder, ImageBuilder
from .models import ListParams, Response, Scope, error_response
from .sync import sync_host

logger = logging.getLogger(__name__)

# bootc transport of a locally built image
LOCAL_TRANSPORT = 'containers-storage'


def found_message(count: int) -> str:
    return f"Found {count} record{'' if count == 1 else 's'}"


class SystemService:
    """Read side of the host package cache, plus image operations."""

    def __init__(self, db: PackageDatabase, backend: PackageBackend,
                 config_store: DesiredConfigStore = None,
                 image_builder: ImageBuilder = None,
                 atomic: bool = None,
                 cancel_event: threading.Event = None):
        self.db = db
        self.backend = backend
        self.config_store = config_store or DesiredConfigStore()
        self.image_builder = image_builder or BootcImageBuilder(self.config_store)
        self.atomic = is_atomic() if atomic is None else atomic
        self.cancel_event = cancel_event
        self.scope = Scope.host()

    def _ensure_cache(self):
        if not self.db.exists(self.scope):
            logger.info("Package cache is empty, updating")
            sync_host(self.db, self.backend, cancel_event=self.cancel_event)

    def _fail(self, e: Exception) -> Response:
        logger.error(str(e))
        return error_response(str(e))

    # =========================================================================
    # Packages
    # =========================================================================

    def update(self) -> Response:
        """Rescan the package manager and rebuild the host cache."""
        try:
            result = sync_host(self.db, self.backend, cancel_event=self.cancel_event,
                               refresh=True)
        except ApmError as e:
            return self._fail(e)
        return Response("Package list updated successfully",
                        data={'count': result.packages_count})

    def info(self, name: str) -> Response:
        name = (name or "").strip()
        if not name:
            return error_response("A package name is required, for example: info package")
        try:
            self._ensure_cache()
            pkg = self.db.get_by_name(self.scope, name)
        except ApmError as e:
            return self._fail(e)
        return Response("Package found", data={'packageInfo': pkg.to_dict()})

    def list(self, params: ListParams) -> Response:
        try:
            if params.force_update:
                sync_host(self.db, self.backend, cancel_event=self.cancel_event)
            else:
                self._ensure_cache()
            filters = params.filters()
            total = self.db.count(self.scope, filters)
            packages = self.db.query(self.scope, filters, params.sort, params.order,
                                     params.limit, params.offset)
        except ApmError as e:
            return self._fail(e)

        if not packages:
            return error_response("Nothing found")
        return Response(found_message(len(packages)), data={
            'packages': [pkg.to_dict() for pkg in packages],
            'totalCount': total,
        })

    def search(self, name: str, installed_only: bool = False) -> Response:
        name = (name or "").strip()
        if not name:
            return error_response("A package name is required, for example: search package")
        try:
            self._ensure_cache()
            packages = self.db.search(self.scope, name, installed_only)
        except ApmError as e:
            return self._fail(e)

        if not packages:
            return error_response("Nothing found")
        return Response(found_message(len(packages)),
                        data={'packages': [pkg.to_dict() for pkg in packages]})

    # =========================================================================
    # Image
    # =========================================================================

    def _require_atomic(self):
        if not self.atomic:
            raise ApmError("This option is only available on an atomic system")

    def _image_status(self) -> Dict[str, Any]:
        status = self.image_builder.status()
        config = self.config_store.load()

        booted = ((status.get('status') or {}).get('booted') or {})
        transport = (((booted.get('image') or {}).get('image') or {}).get('transport'))
        if transport == LOCAL_TRANSPORT:
            text = f"Modified image. Configuration file: {get_image_file()}"
        else:
            text = "Cloud image without changes"
        return {'image': status, 'status': text, 'config': config.to_dict()}

    def image_status(self) -> Response:
        try:
            self._require_atomic()
            status = self._image_status()
        except ApmError as e:
            return self._fail(e)
        return Response("Image status", data={'bootedImage': status})

    def image_apply(self) -> Response:
        """Rebuild the image from the saved configuration and switch to it."""
        try:
            self._require_atomic()
            config = self.config_store.load()
            self.config_store.generate_containerfile(config)
            image = self.image_builder.rebuild_and_switch(config)
            self.db.record_image_history(image, config.to_dict())
            status = self._image_status()
        except ApmError as e:
            return self._fail(e)
        return Response("Changes applied successfully. A reboot is required",
                        data={'bootedImage': status})

    def image_history(self, image: str = "", limit: int = 10, offset: int = 0) -> Response:
        try:
            history = self.db.list_image_history(image, limit, offset)
            total = self.db.count_image_history(image)
        except ApmError as e:
            return self._fail(e)
        return Response(found_message(len(history)),
                        data={'history': history, 'totalCount': total})
