"""SQLite schema migrations for the tracking store."""

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from shelfwatch.store.errors import MigrationError


logger = structlog.get_logger()

# Current schema version
CURRENT_VERSION = 3


@dataclass(frozen=True)
class Migration:
    """A database migration.

    Attributes:
        version: Target version after applying this migration.
        description: Human-readable description.
        up_sql: SQL to apply the migration.
        down_sql: SQL to rollback the migration.
    """

    version: int
    description: str
    up_sql: str
    down_sql: str


# All migrations in order. Every DDL statement is guarded with IF [NOT] EXISTS
# so a migration interrupted half way can be re-applied.
MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="Append-only item_snapshots and item_transitions tables",
        up_sql="""
-- One row per item per scrape cycle per patron
CREATE TABLE IF NOT EXISTS item_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL,
    patron_name TEXT NOT NULL,
    title TEXT,
    subtitle TEXT,
    author TEXT,
    item_kind TEXT NOT NULL,
    format TEXT,
    state TEXT NOT NULL,
    due_date TEXT,
    checkout_by TEXT,
    expires_on TEXT,
    queue_position INTEGER,
    scraped_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_item_snapshots_item_id ON item_snapshots(item_id);
CREATE INDEX IF NOT EXISTS idx_item_snapshots_patron ON item_snapshots(patron_name);
CREATE INDEX IF NOT EXISTS idx_item_snapshots_scraped_at ON item_snapshots(scraped_at);

-- One row per classified change
CREATE TABLE IF NOT EXISTS item_transitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL,
    patron_name TEXT NOT NULL,
    title TEXT,
    from_state TEXT,
    to_state TEXT,
    transition_kind TEXT NOT NULL,
    is_expected INTEGER NOT NULL DEFAULT 1,
    notes TEXT NOT NULL,
    transitioned_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_item_transitions_item_id ON item_transitions(item_id);
CREATE INDEX IF NOT EXISTS idx_item_transitions_patron ON item_transitions(patron_name);
CREATE INDEX IF NOT EXISTS idx_item_transitions_kind ON item_transitions(transition_kind);
""",
        down_sql="""
DROP INDEX IF EXISTS idx_item_transitions_kind;
DROP INDEX IF EXISTS idx_item_transitions_patron;
DROP INDEX IF EXISTS idx_item_transitions_item_id;
DROP TABLE IF EXISTS item_transitions;
DROP INDEX IF EXISTS idx_item_snapshots_scraped_at;
DROP INDEX IF EXISTS idx_item_snapshots_patron;
DROP INDEX IF EXISTS idx_item_snapshots_item_id;
DROP TABLE IF EXISTS item_snapshots;
""",
    ),
    Migration(
        version=2,
        description="Cycle lookup index and partial index over unexpected transitions",
        up_sql="""
CREATE INDEX IF NOT EXISTS idx_item_snapshots_patron_cycle
    ON item_snapshots(patron_name, scraped_at);
CREATE INDEX IF NOT EXISTS idx_item_transitions_transitioned_at
    ON item_transitions(transitioned_at);
CREATE INDEX IF NOT EXISTS idx_item_transitions_unexpected
    ON item_transitions(transitioned_at) WHERE is_expected = 0;
""",
        down_sql="""
DROP INDEX IF EXISTS idx_item_transitions_unexpected;
DROP INDEX IF EXISTS idx_item_transitions_transitioned_at;
DROP INDEX IF EXISTS idx_item_snapshots_patron_cycle;
""",
    ),
    Migration(
        version=3,
        description="Per-patron scrape cycle markers, including empty cycles",
        up_sql="""
-- One row per processed cycle, written even when the batch is empty
CREATE TABLE IF NOT EXISTS scrape_cycles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    patron_name TEXT NOT NULL,
    scraped_at TEXT NOT NULL,
    item_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (patron_name, scraped_at)
);
INSERT OR IGNORE INTO scrape_cycles (patron_name, scraped_at, item_count, created_at)
SELECT patron_name, scraped_at, COUNT(*), MIN(created_at)
FROM item_snapshots
GROUP BY patron_name, scraped_at;
""",
        down_sql="""
DROP TABLE IF EXISTS scrape_cycles;
""",
    ),
]


def get_migrations_to_apply(current_version: int) -> list[Migration]:
    """Get migrations that need to be applied.

    Args:
        current_version: The current schema version.

    Returns:
        List of migrations to apply in order.
    """
    return [m for m in MIGRATIONS if m.version > current_version]


class MigrationManager:
    """Manages SQLite schema migrations."""

    VERSION_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL,
    description TEXT
);
"""

    def __init__(self, connection: sqlite3.Connection) -> None:
        """Initialize the migration manager.

        Args:
            connection: SQLite connection to manage.
        """
        self._conn = connection
        self._log = logger.bind(component="store", operation="migration")

    def ensure_version_table(self) -> None:
        """Ensure the schema_version table exists."""
        self._conn.execute(self.VERSION_TABLE_SQL)

    def get_current_version(self) -> int:
        """Get the current schema version.

        Returns:
            Current version number, or 0 if no migrations applied.
        """
        self.ensure_version_table()
        cursor = self._conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def apply_migrations(self) -> list[int]:
        """Apply all pending migrations.

        Returns:
            List of version numbers that were applied.

        Raises:
            MigrationError: If a migration script fails.
        """
        current = self.get_current_version()
        pending = get_migrations_to_apply(current)

        if not pending:
            self._log.debug("no_migrations_pending", current_version=current)
            return []

        applied: list[int] = []

        for migration in pending:
            self._log.info(
                "applying_migration",
                version=migration.version,
                description=migration.description,
            )

            try:
                self._conn.executescript(migration.up_sql)
                self._conn.execute(
                    """
                    INSERT INTO schema_version (version, applied_at, description)
                    VALUES (?, ?, ?)
                    """,
                    (
                        migration.version,
                        datetime.now(UTC).isoformat(),
                        migration.description,
                    ),
                )
            except sqlite3.Error as e:
                self._log.error(
                    "migration_failed",
                    version=migration.version,
                    error=str(e),
                )
                raise MigrationError(migration.version, str(e)) from e

            applied.append(migration.version)
            self._log.info("migration_applied", version=migration.version)

        return applied

    def rollback_to(self, target_version: int) -> list[int]:
        """Rollback to a specific version.

        Args:
            target_version: The version to rollback to.

        Returns:
            List of version numbers that were rolled back.

        Raises:
            ValueError: If target version is invalid.
            MigrationError: If a down script fails.
        """
        if target_version < 0:
            msg = f"Invalid target version: {target_version}"
            raise ValueError(msg)

        rolled_back: list[int] = []

        for migration in reversed(MIGRATIONS):
            if migration.version <= target_version:
                break
            if migration.version > self.get_current_version():
                continue

            self._log.info(
                "rolling_back_migration",
                version=migration.version,
                description=migration.description,
            )

            try:
                self._conn.executescript(migration.down_sql)
                self._conn.execute(
                    "DELETE FROM schema_version WHERE version = ?",
                    (migration.version,),
                )
            except sqlite3.Error as e:
                self._log.error(
                    "rollback_failed",
                    version=migration.version,
                    error=str(e),
                )
                raise MigrationError(migration.version, str(e)) from e

            rolled_back.append(migration.version)

        return rolled_back

    def get_applied_migrations(self) -> list[dict[str, str | int]]:
        """Get list of applied migrations.

        Returns:
            List of dicts with version, applied_at, and description.
        """
        self.ensure_version_table()
        cursor = self._conn.execute(
            """
            SELECT version, applied_at, description
            FROM schema_version
            ORDER BY version
            """
        )
        return [
            {
                "version": row[0],
                "applied_at": row[1],
                "description": row[2],
            }
            for row in cursor.fetchall()
        ]
