"""
SQLite database for the apm package cache

Mirrors the package metadata known to apt (host) and to each distrobox
container, so that list/search/info never have to parse apt output.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from .db import PackagesMixin, HistoryMixin
from .db.packages import CONTAINER_DDL, HOST_DDL

logger = logging.getLogger(__name__)

# Schema version - increment when schema changes
SCHEMA_VERSION = 2

SCHEMA = f"""
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER PRIMARY KEY
);

-- Host image packages (depends/provides are ',' separated names)
{HOST_DDL};

-- Container packages, one scope per 'container' value
{CONTAINER_DDL};

-- Image rebuild history
CREATE TABLE IF NOT EXISTS image_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    image_name TEXT NOT NULL,
    config TEXT,               -- JSON snapshot of the desired config
    timestamp INTEGER NOT NULL
);

-- Configuration
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_host_installed ON host_image_packages(installed);
CREATE INDEX IF NOT EXISTS idx_distrobox_container ON distrobox_packages(container);
CREATE INDEX IF NOT EXISTS idx_image_history_name ON image_history(image_name);
"""

# Migrations: dict of from_version -> (to_version, sql_script)
# Each migration upgrades from one version to the next
MIGRATIONS = {
    1: (2, """
        -- Migration v1 -> v2: Add image history
        CREATE TABLE IF NOT EXISTS image_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            image_name TEXT NOT NULL,
            config TEXT,
            timestamp INTEGER NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_image_history_name ON image_history(image_name);
    """),
}


class PackageDatabase(PackagesMixin, HistoryMixin):
    """SQLite database for package metadata cache.

    Each instance owns its connection and a write lock. Replace and
    reconcile hold the lock, so two instances (host service and a
    container scan, for example) never contend with each other, while
    readers on other connections see either the old or the new snapshot.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file.
                     If None, auto-detects based on .apm.local or environment.
        """
        if db_path is None:
            from .config import get_db_path
            db_path = get_db_path()
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._write_lock = threading.Lock()
        self.conn = self._connect()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def _init_schema(self):
        """Initialize or migrate database schema."""
        try:
            cursor = self.conn.execute("SELECT version FROM schema_info LIMIT 1")
            row = cursor.fetchone()
            current_version = row[0] if row else 0
        except sqlite3.OperationalError:
            current_version = 0

        if current_version == 0:
            # Fresh database - create full schema
            self.conn.executescript(SCHEMA)
            self.conn.execute(
                "INSERT OR REPLACE INTO schema_info (version) VALUES (?)",
                (SCHEMA_VERSION,)
            )
            self.conn.commit()
        elif current_version < SCHEMA_VERSION:
            self._apply_migrations(current_version)
        elif current_version > SCHEMA_VERSION:
            logger.warning(
                f"Database schema version {current_version} is newer than "
                f"supported version {SCHEMA_VERSION}. Consider upgrading apm."
            )

    def _apply_migrations(self, from_version: int):
        """Apply all migrations from from_version to SCHEMA_VERSION."""
        version = from_version
        while version < SCHEMA_VERSION:
            if version not in MIGRATIONS:
                # The cache can always be rebuilt from apt
                logger.error(
                    f"No migration from version {version}. "
                    f"Package cache will be recreated."
                )
                self.conn.close()
                self.db_path.unlink(missing_ok=True)
                self.conn = self._connect()
                self.conn.executescript(SCHEMA)
                self.conn.execute(
                    "INSERT OR REPLACE INTO schema_info (version) VALUES (?)",
                    (SCHEMA_VERSION,)
                )
                self.conn.commit()
                return

            to_version, migration_sql = MIGRATIONS[version]
            logger.info(f"Migrating database schema v{version} -> v{to_version}")

            try:
                self.conn.executescript(migration_sql)
                self.conn.execute(
                    "UPDATE schema_info SET version = ?", (to_version,)
                )
                self.conn.commit()
                version = to_version
            except sqlite3.Error as e:
                logger.error(f"Migration v{version} -> v{to_version} failed: {e}")
                raise RuntimeError(f"Database migration failed: {e}")

        logger.info(f"Database schema is now at version {SCHEMA_VERSION}")

    def schema_version(self) -> int:
        row = self.conn.execute("SELECT version FROM schema_info LIMIT 1").fetchone()
        return row[0] if row else 0

    def close(self):
        """Close database connection."""
        try:
            self.conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Error closing database: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _begin(self):
        """Open an explicit write transaction.

        A transaction left open by an interrupted write is rolled back, never
        committed.
        """
        if self.conn.in_transaction:
            logger.warning("Rolling back a stale open transaction")
            self.conn.rollback()
        self.conn.execute("BEGIN IMMEDIATE")

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        stats = {}

        cursor = self.conn.execute("SELECT COUNT(*) FROM host_image_packages")
        stats['host_packages'] = cursor.fetchone()[0]

        cursor = self.conn.execute(
            "SELECT COUNT(*) FROM host_image_packages WHERE installed = 1"
        )
        stats['host_installed'] = cursor.fetchone()[0]

        cursor = self.conn.execute("SELECT COUNT(DISTINCT container) FROM distrobox_packages")
        stats['containers'] = cursor.fetchone()[0]

        stats['db_size_mb'] = self.db_path.stat().st_size / 1024 / 1024
        stats['db_path'] = str(self.db_path)

        return stats

    # =========================================================================
    # Configuration
    # =========================================================================

    def get_config(self, key: str, default: str = None) -> Optional[str]:
        """Get a configuration value."""
        cursor = self.conn.execute(
            "SELECT value FROM config WHERE key = ?", (key,)
        )
        row = cursor.fetchone()
        return row[0] if row else default

    def set_config(self, key: str, value: str):
        """Set a configuration value."""
        self.conn.execute(
            "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
            (key, value)
        )
        self.conn.commit()
