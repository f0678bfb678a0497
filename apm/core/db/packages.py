"""Package row operations for the host and container scopes."""

import logging
import sqlite3
import threading
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..errors import InvalidFieldError, NotFoundError, OperationCancelled, StoreError
from ..models import Package, Scope, join_list, split_list
from ..query import (
    CONTAINER_TABLE, HOST_TABLE, FieldLike, PackageQuery, Table,
    coerce_field, column_for, parse_bool,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000

HOST_COLUMNS = [
    'name', 'section', 'installed_size', 'maintainer', 'version',
    'installed_version', 'depends', 'provides', 'size', 'filename',
    'description', 'changelog', 'installed',
]
CONTAINER_COLUMNS = ['container'] + HOST_COLUMNS + ['exporting', 'manager']

# Fields that may be changed one row at a time without a rescan
MUTABLE_FIELDS = ('installed', 'exporting')

HOST_DDL = """
    CREATE TABLE IF NOT EXISTS host_image_packages (
        name TEXT NOT NULL,
        section TEXT DEFAULT '',
        installed_size INTEGER DEFAULT 0,
        maintainer TEXT DEFAULT '',
        version TEXT DEFAULT '',
        installed_version TEXT DEFAULT '',
        depends TEXT DEFAULT '',
        provides TEXT DEFAULT '',
        size INTEGER DEFAULT 0,
        filename TEXT DEFAULT '',
        description TEXT DEFAULT '',
        changelog TEXT DEFAULT '',
        installed INTEGER DEFAULT 0,
        UNIQUE(name)
    )
"""

CONTAINER_DDL = """
    CREATE TABLE IF NOT EXISTS distrobox_packages (
        container TEXT NOT NULL,
        name TEXT NOT NULL,
        section TEXT DEFAULT '',
        installed_size INTEGER DEFAULT 0,
        maintainer TEXT DEFAULT '',
        version TEXT DEFAULT '',
        installed_version TEXT DEFAULT '',
        depends TEXT DEFAULT '',
        provides TEXT DEFAULT '',
        size INTEGER DEFAULT 0,
        filename TEXT DEFAULT '',
        description TEXT DEFAULT '',
        changelog TEXT DEFAULT '',
        installed INTEGER DEFAULT 0,
        exporting INTEGER DEFAULT 0,
        manager TEXT DEFAULT '',
        UNIQUE(container, name)
    )
"""


def _table(scope: Scope) -> Table:
    return HOST_TABLE if scope.is_host else CONTAINER_TABLE


def _columns(scope: Scope) -> List[str]:
    return HOST_COLUMNS if scope.is_host else CONTAINER_COLUMNS


def _row_to_package(row: sqlite3.Row) -> Package:
    keys = row.keys()
    pkg = Package(
        name=row['name'],
        version=row['version'] or "",
        section=row['section'] or "",
        maintainer=row['maintainer'] or "",
        installed_version=row['installed_version'] or "",
        depends=split_list(row['depends']),
        provides=split_list(row['provides']),
        size=row['size'] or 0,
        installed_size=row['installed_size'] or 0,
        filename=row['filename'] or "",
        description=row['description'] or "",
        changelog=row['changelog'] or "",
        installed=bool(row['installed']),
    )
    if 'container' in keys:
        pkg.container = row['container']
        pkg.manager = row['manager'] or ""
        pkg.exporting = bool(row['exporting'])
    return pkg


class PackagesMixin:
    """Mixin providing package row operations.

    Requires:
        - self.conn: sqlite3.Connection
        - self._write_lock: threading.Lock
        - self._begin(): opens an explicit write transaction
    """

    _write_lock: threading.Lock

    def _ensure_table(self, scope: Scope):
        self.conn.execute(HOST_DDL if scope.is_host else CONTAINER_DDL)

    def _scope_query(self, scope: Scope) -> PackageQuery:
        query = PackageQuery(_table(scope))
        if not scope.is_host:
            query.where("container = ?", scope.container)
        return query

    def _package_row(self, scope: Scope, pkg: Package) -> tuple:
        """Build the INSERT tuple; raises ValueError on a bad list element."""
        row = (
            pkg.name,
            pkg.section or "",
            pkg.installed_size or 0,
            pkg.maintainer or "",
            pkg.version or "",
            pkg.installed_version or "",
            join_list(pkg.depends),
            join_list(pkg.provides),
            pkg.size or 0,
            pkg.filename or "",
            pkg.description or "",
            pkg.changelog or "",
            1 if pkg.installed else 0,
        )
        if scope.is_host:
            return row
        return (scope.container,) + row + (1 if pkg.exporting else 0, pkg.manager or "")

    # =========================================================================
    # Bulk operations
    # =========================================================================

    def replace_all(self, scope: Scope, packages: Iterable[Package],
                    cancel_event: threading.Event = None,
                    batch_size: int = BATCH_SIZE) -> int:
        """Replace the whole snapshot of a scope with a new scan.

        Delete and inserts run in one transaction: readers on other
        connections see either the previous snapshot or the new one.

        Args:
            scope: Host or container scope
            packages: Full scan result for the scope
            cancel_event: Checked between batches; when set, the prior
                          snapshot is restored and OperationCancelled raised
            batch_size: Rows per executemany() call

        Returns:
            Number of rows written

        Raises:
            StoreError: on any database error (prior snapshot intact)
            OperationCancelled: if cancel_event was set
            ValueError: if a depends/provides element contains the separator
        """
        table = _table(scope).name
        columns = _columns(scope)
        rows = [self._package_row(scope, pkg) for pkg in packages]
        insert_sql = (
            f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' * len(columns))})"
        )

        with self._write_lock:
            try:
                self._ensure_table(scope)
                self._begin()
                if scope.is_host:
                    self.conn.execute(f"DELETE FROM {table}")
                else:
                    self.conn.execute(f"DELETE FROM {table} WHERE container = ?",
                                      (scope.container,))

                for start in range(0, len(rows), batch_size):
                    if cancel_event is not None and cancel_event.is_set():
                        raise OperationCancelled(
                            f"Package refresh of {scope} cancelled after {start} rows"
                        )
                    self.conn.executemany(insert_sql, rows[start:start + batch_size])

                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                logger.error(f"Replace of {scope} failed: {e}")
                raise StoreError(f"Batch insert error for {scope}: {e}") from e
            except BaseException:
                # Cancellation, KeyboardInterrupt and the like
                self.conn.rollback()
                raise

        logger.debug(f"Replaced {scope} with {len(rows)} packages")
        return len(rows)

    def reconcile_installed(self, scope: Scope, installed: Dict[str, str]) -> int:
        """Sync installed flags and versions with the package manager.

        Only existing rows are touched: a name in ``installed`` without a
        row is ignored and no row is ever deleted.

        Args:
            scope: Host or container scope
            installed: name -> installed version, as reported by the system

        Returns:
            Number of rows updated
        """
        table = _table(scope).name
        sql = f"""
            UPDATE {table} SET
                installed = CASE WHEN EXISTS (
                    SELECT 1 FROM tmp_installed t WHERE t.name = {table}.name
                ) THEN 1 ELSE 0 END,
                installed_version = COALESCE((
                    SELECT t.version FROM tmp_installed t WHERE t.name = {table}.name
                ), '')
        """
        params: List[Any] = []
        if not scope.is_host:
            sql += " WHERE container = ?"
            params.append(scope.container)

        with self._write_lock:
            try:
                self._ensure_table(scope)
                self._begin()
                self.conn.execute("DROP TABLE IF EXISTS temp.tmp_installed")
                self.conn.execute(
                    "CREATE TEMP TABLE tmp_installed (name TEXT PRIMARY KEY, version TEXT)"
                )
                self.conn.executemany(
                    "INSERT OR REPLACE INTO tmp_installed (name, version) VALUES (?, ?)",
                    [(name, version or "") for name, version in installed.items()]
                )
                cursor = self.conn.execute(sql, params)
                updated = cursor.rowcount
                self.conn.execute("DROP TABLE temp.tmp_installed")
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                logger.error(f"Reconcile of {scope} failed: {e}")
                raise StoreError(f"Failed to sync installed packages of {scope}: {e}") from e
            except BaseException:
                self.conn.rollback()
                raise

        logger.debug(f"Reconciled {updated} rows of {scope} against "
                     f"{len(installed)} installed packages")
        return updated

    def delete_scope(self, scope: Scope) -> int:
        """Drop every row of a container scope (container torn down)."""
        if scope.is_host:
            raise ValueError("The host scope cannot be deleted")
        with self._write_lock:
            try:
                self._ensure_table(scope)
                cursor = self.conn.execute(
                    f"DELETE FROM {CONTAINER_TABLE.name} WHERE container = ?",
                    (scope.container,)
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StoreError(f"Failed to delete packages of {scope}: {e}") from e
        return cursor.rowcount

    # =========================================================================
    # Lookups
    # =========================================================================

    def exists(self, scope: Scope) -> bool:
        """Check if the scope has ever been scanned."""
        sql, params = self._scope_query(scope).paginate(1).select_sql(['1'])
        try:
            return self.conn.execute(sql, params).fetchone() is not None
        except sqlite3.OperationalError:
            # Table not created yet
            return False

    def get_by_name(self, scope: Scope, name: str) -> Package:
        """Exact lookup of one package.

        Raises:
            NotFoundError: if the scope has no row with that name
        """
        query = self._scope_query(scope).where("name = ?", name).paginate(1)
        sql, params = query.select_sql(_columns(scope))
        try:
            row = self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to get package {name}: {e}") from e
        if row is None:
            raise NotFoundError(name)
        return _row_to_package(row)

    def search(self, scope: Scope, name_part: str, installed_only: bool = False,
               limit: int = 0) -> List[Package]:
        """Substring search on package names, sorted by name."""
        query = self._scope_query(scope).filter('name', name_part)
        if installed_only:
            query.filter('installed', True)
        query.order_by('name').paginate(limit)
        return self._fetch(query, scope)

    def query(self, scope: Scope, filters: Dict[FieldLike, Any] = None,
              sort_field: Optional[FieldLike] = None, sort_order: str = "",
              limit: int = 0, offset: int = 0) -> List[Package]:
        """Filtered, sorted and paginated package list.

        Raises:
            InvalidFieldError: if a filter or sort field is not allow-listed
        """
        query = self._scope_query(scope).filters(filters)
        query.order_by(sort_field, sort_order).paginate(limit, offset)
        return self._fetch(query, scope)

    def count(self, scope: Scope, filters: Dict[FieldLike, Any] = None) -> int:
        sql, params = self._scope_query(scope).filters(filters).count_sql()
        try:
            return self.conn.execute(sql, params).fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count packages of {scope}: {e}") from e

    def _fetch(self, query: PackageQuery, scope: Scope) -> List[Package]:
        sql, params = query.select_sql(_columns(scope))
        try:
            return [_row_to_package(row) for row in self.conn.execute(sql, params)]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to query packages of {scope}: {e}") from e

    def list_containers(self) -> List[str]:
        """Names of the containers that have cached packages."""
        try:
            cursor = self.conn.execute(
                f"SELECT DISTINCT container FROM {CONTAINER_TABLE.name} ORDER BY container"
            )
        except sqlite3.OperationalError:
            return []
        return [row[0] for row in cursor]

    # =========================================================================
    # Single field updates
    # =========================================================================

    def update_field(self, scope: Scope, name: str, field: FieldLike, value: Any,
                     installed_version: str = ""):
        """Change one mutable field of one package.

        Changing ``installed`` also sets ``installed_version``: cleared when
        the package goes away, else the given version or, without one, the
        available version of the row.

        Raises:
            InvalidFieldError: field is not mutable for this scope
            NotFoundError: no such package in the scope
            ValueError: value is not a boolean
        """
        table = _table(scope)
        field_name = field.value if isinstance(field, Enum) else str(field)
        allowed = [f for f in MUTABLE_FIELDS if f in table.allowed()]
        if field_name not in allowed:
            raise InvalidFieldError(field_name, allowed, "update")
        member = coerce_field(table, field_name, "update")

        flag = parse_bool(value)
        if flag is None:
            raise ValueError(f"Invalid value for {member.value}: {value!r}")

        column = column_for(member)
        assignments = f"{column} = ?"
        params: List[Any] = [1 if flag else 0]
        if member.value == 'installed':
            if not flag:
                assignments += ", installed_version = ''"
            elif installed_version:
                assignments += ", installed_version = ?"
                params.append(installed_version)
            else:
                assignments += ", installed_version = version"
        sql = f"UPDATE {table.name} SET {assignments} WHERE name = ?"
        params.append(name)
        if not scope.is_host:
            sql += " AND container = ?"
            params.append(scope.container)

        try:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StoreError(f"Failed to update {member.value} of {name}: {e}") from e
        if cursor.rowcount == 0:
            raise NotFoundError(name)
