"""
Package cache synchronization for apm

Scans the package manager (host or container) and replaces the cached
snapshot of that scope, then syncs installed flags.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .backend import ContainerBackend, PackageBackend
from .database import PackageDatabase
from .models import Scope

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of a cache sync."""
    scope: Scope
    packages_count: int = 0
    installed_count: int = 0


def sync_host(db: PackageDatabase, backend: PackageBackend,
              progress_callback: Callable[[str, int, int], None] = None,
              cancel_event: Optional[threading.Event] = None,
              refresh: bool = False) -> SyncResult:
    """Rebuild the host package cache.

    Args:
        db: Database instance
        backend: Host package manager
        progress_callback: Optional callback(stage, current, total)
        cancel_event: Checked between insert batches
        refresh: Update the repository lists before scanning

    Returns:
        SyncResult with counts
    """
    scope = Scope.host()

    if refresh:
        if progress_callback:
            progress_callback("refreshing", 0, 0)
        backend.refresh_lists()

    if progress_callback:
        progress_callback("scanning", 0, 0)
    packages = backend.scan_available_packages()

    if progress_callback:
        progress_callback("importing", 0, len(packages))
    count = db.replace_all(scope, packages, cancel_event=cancel_event)

    if progress_callback:
        progress_callback("installed", count, count)
    installed = backend.get_installed_snapshot()
    db.reconcile_installed(scope, installed)

    logger.info(f"Host cache: {count} packages, {len(installed)} installed")
    return SyncResult(scope=scope, packages_count=count, installed_count=len(installed))


def sync_container(db: PackageDatabase, backend: ContainerBackend, container: str,
                   cancel_event: Optional[threading.Event] = None) -> SyncResult:
    """Rebuild the package cache of one container.

    The container backend reports installed flags along with the scan.
    """
    scope = Scope.for_container(container)
    packages = backend.scan_packages(scope.container)
    count = db.replace_all(scope, packages, cancel_event=cancel_event)
    installed = sum(1 for pkg in packages if pkg.installed)
    logger.info(f"Container {container} cache: {count} packages, {installed} installed")
    return SyncResult(scope=scope, packages_count=count, installed_count=installed)
