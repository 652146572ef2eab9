"""SQLite store for item snapshots and classified transitions."""

import sqlite3
import time
import uuid
from collections.abc import Callable, Generator, Iterable, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from functools import partial
from pathlib import Path
from typing import Any

import structlog

from shelfwatch.data_model.enums import ItemKind, ItemState, TransitionKind
from shelfwatch.data_model.items import (
    CheckoutRecord,
    HoldRecord,
    ItemSnapshot,
    ItemTransition,
    coerce_records,
)
from shelfwatch.data_model.timestamps import from_db_timestamp, to_db_timestamp
from shelfwatch.store.errors import (
    DuplicateCycleError,
    StorageError,
    StoreConnectionError,
)
from shelfwatch.store.metrics import MetricsRecorder, StoreMetrics, TransactionContext
from shelfwatch.store.migrations import CURRENT_VERSION, MigrationManager


logger = structlog.get_logger()

DEFAULT_BUSY_TIMEOUT_MS = 5000


class TrackingStore:
    """Append-only SQLite store for item snapshots and transitions.

    One store wraps one connection and must only be used from the thread
    that connected it. Every write runs inside ``BEGIN IMMEDIATE`` so a
    cycle's rows become visible to other connections all at once. Rows are
    never updated; the only deletes are the explicit prune methods used by
    a retention policy.
    """

    def __init__(
        self,
        db_path: Path | str,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        """Initialize the tracking store.

        Args:
            db_path: Path to SQLite database file.
            busy_timeout_ms: How long to wait on a competing writer.
            metrics: Metrics recorder (a private StoreMetrics by default).
        """
        self._db_path = Path(db_path) if isinstance(db_path, str) else db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None
        self._tx_depth = 0
        self._on_commit: list[Callable[[], None]] = []
        self._metrics: MetricsRecorder = (
            metrics if metrics is not None else StoreMetrics()
        )
        self._log = logger.bind(component="store", db_path=str(self._db_path))

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    @property
    def metrics(self) -> MetricsRecorder:
        """Get the metrics recorder."""
        return self._metrics

    @property
    def is_connected(self) -> bool:
        """Check if connected to database."""
        return self._conn is not None

    def connect(self) -> None:
        """Open connection to database and apply migrations.

        Creates the database file and parent directories if they don't exist.

        Raises:
            StoreConnectionError: If the file cannot be opened as a database.
            MigrationError: If a pending migration fails.
        """
        if self._conn is not None:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._log.info("connecting_to_database")

        # Autocommit mode: transactions are opened explicitly in _transaction.
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=self._busy_timeout_ms / 1000,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        except sqlite3.Error as e:
            conn.close()
            self._log.error("database_open_failed", error=str(e))
            msg = f"Cannot open {self._db_path}: {e}"
            raise StoreConnectionError(msg) from e

        self._conn = conn

        migration_mgr = MigrationManager(self._conn)
        old_version = migration_mgr.get_current_version()
        applied = migration_mgr.apply_migrations()

        self._log.info(
            "database_connected",
            old_version=old_version,
            new_version=CURRENT_VERSION,
            migrations_applied=applied,
        )

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._tx_depth = 0
            self._on_commit = []
            self._log.info("database_closed")

    def __enter__(self) -> "TrackingStore":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database is connected.

        Returns:
            The database connection.

        Raises:
            StoreConnectionError: If not connected.
        """
        if self._conn is None:
            raise StoreConnectionError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def _transaction(self, operation: str) -> Generator[TransactionContext]:
        """Context manager for write transactions with timing and logging.

        Nested use joins the outermost transaction; only the outermost
        block commits or rolls back. Callbacks registered with _after_commit
        run once the outermost block has committed and are dropped on
        rollback.

        Args:
            operation: Name of the operation for logging.

        Yields:
            Transaction context with timing information.

        Raises:
            StorageError: If SQLite fails; the transaction is rolled back.
        """
        conn = self._ensure_connected()
        tx_id = str(uuid.uuid4())[:8]
        start_ns = time.perf_counter_ns()
        ctx = TransactionContext(
            tx_id=tx_id, start_time_ns=start_ns, operation=operation
        )

        if self._tx_depth > 0:
            self._tx_depth += 1
            try:
                yield ctx
            finally:
                self._tx_depth -= 1
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            self._log.error("transaction_begin_failed", op=operation, error=str(e))
            raise StorageError(operation, str(e)) from e

        self._tx_depth = 1
        self._log.debug("transaction_started", tx_id=tx_id, op=operation)

        try:
            yield ctx
            conn.execute("COMMIT")
        except Exception as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
            self._log.error(
                "transaction_failed",
                tx_id=tx_id,
                op=operation,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            if isinstance(e, sqlite3.Error):
                raise StorageError(operation, str(e)) from e
            raise
        finally:
            self._tx_depth = 0
            pending, self._on_commit = self._on_commit, []

        for callback in pending:
            callback()

        duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
        self._metrics.record_tx_duration(duration_ms)
        self._log.info(
            "transaction_complete",
            tx_id=tx_id,
            op=operation,
            affected_rows=ctx.affected_rows,
            duration_ms=round(duration_ms, 2),
        )

    @contextmanager
    def atomic(self, operation: str) -> Generator[TransactionContext]:
        """Group several store writes and reads into one transaction.

        Args:
            operation: Name of the operation for logging.

        Yields:
            Transaction context of the outermost transaction.
        """
        with self._transaction(operation) as ctx:
            yield ctx

    def _after_commit(self, callback: Callable[[], None]) -> None:
        """Defer a callback until the enclosing outermost transaction commits."""
        self._on_commit.append(callback)

    def _query(
        self, operation: str, sql: str, params: tuple[Any, ...] = ()
    ) -> list[sqlite3.Row]:
        """Run a read query, converting SQLite failures to StorageError.

        Args:
            operation: Name of the operation for logging.
            sql: Query text.
            params: Bound parameters.

        Returns:
            All result rows.
        """
        conn = self._ensure_connected()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            self._log.error("query_failed", op=operation, error=str(e))
            raise StorageError(operation, str(e)) from e

    # ===== Snapshots =====

    def record_snapshot(
        self,
        items: Iterable[CheckoutRecord | HoldRecord | Mapping[str, Any]],
        patron: str,
        timestamp: datetime,
    ) -> list[ItemSnapshot]:
        """Append one snapshot row per item for a scrape cycle.

        All rows share ``scraped_at = timestamp`` and are committed together
        with the patron's cycle marker. The marker is written even for an
        empty batch, so an empty cycle still counts as the patron's latest
        cycle. Records belonging to another patron are skipped.

        Args:
            items: Checkout and hold records observed this cycle.
            patron: Patron the cycle belongs to.
            timestamp: Cycle timestamp.

        Returns:
            The stored snapshots with row ids, in input order.

        Raises:
            DuplicateCycleError: If the patron already has a cycle at
                ``timestamp``; nothing is written.
        """
        records = coerce_records(items)
        now = datetime.now(UTC)
        scraped_at = to_db_timestamp(timestamp)
        stored: list[ItemSnapshot] = []

        with self._transaction("record_snapshot") as ctx:
            conn = self._ensure_connected()
            existing = conn.execute(
                "SELECT 1 FROM scrape_cycles WHERE patron_name = ? AND scraped_at = ?",
                (patron, scraped_at),
            ).fetchone()
            if existing is not None:
                raise DuplicateCycleError(patron, scraped_at)

            for record in records:
                if record.patron_name != patron:
                    self._log.warning(
                        "snapshot_record_skipped",
                        reason="patron_mismatch",
                        patron=patron,
                        record_patron=record.patron_name,
                        item_id=record.item_id,
                    )
                    continue

                snapshot = ItemSnapshot.from_record(record, scraped_at=timestamp)
                cursor = conn.execute(
                    """
                    INSERT INTO item_snapshots (
                        item_id, patron_name, title, subtitle, author,
                        item_kind, format, state, due_date, checkout_by,
                        expires_on, queue_position, scraped_at, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        snapshot.item_id,
                        snapshot.patron_name,
                        snapshot.title,
                        snapshot.subtitle,
                        snapshot.author,
                        snapshot.item_kind.value,
                        snapshot.format,
                        snapshot.state.value,
                        snapshot.due_date,
                        snapshot.checkout_by,
                        snapshot.expires_on,
                        snapshot.queue_position,
                        scraped_at,
                        to_db_timestamp(now),
                    ),
                )
                ctx.add_affected_rows(1)
                stored.append(
                    snapshot.model_copy(
                        update={"id": cursor.lastrowid, "created_at": now}
                    )
                )

            conn.execute(
                """
                INSERT INTO scrape_cycles (
                    patron_name, scraped_at, item_count, created_at
                ) VALUES (?, ?, ?, ?)
                """,
                (patron, scraped_at, len(stored), to_db_timestamp(now)),
            )
            ctx.add_affected_rows(1)
            self._after_commit(partial(self._metrics.record_snapshots, len(stored)))

        self._log.info(
            "snapshot_recorded",
            patron=patron,
            scraped_at=scraped_at,
            rows=len(stored),
        )
        return stored

    def get_previous_snapshots(
        self,
        patron: str,
        before: datetime | None = None,
    ) -> list[ItemSnapshot]:
        """Get the rows of the patron's previous scrape cycle.

        Without ``before`` this is the second most recent cycle, i.e. the
        one preceding the cycle just written. With ``before`` it is the most
        recent cycle strictly older than that timestamp. Cycles are resolved
        against the cycle markers, so an empty cycle is a valid previous
        cycle and yields no rows.

        Args:
            patron: Patron name.
            before: Optional exclusive upper bound on scraped_at.

        Returns:
            Snapshots ordered by row id; empty if there is no such cycle or
            it held no items.
        """
        if before is None:
            rows = self._query(
                "get_previous_snapshots",
                """
                SELECT scraped_at FROM scrape_cycles
                WHERE patron_name = ?
                ORDER BY scraped_at DESC
                LIMIT 1 OFFSET 1
                """,
                (patron,),
            )
        else:
            rows = self._query(
                "get_previous_snapshots",
                """
                SELECT MAX(scraped_at) AS scraped_at FROM scrape_cycles
                WHERE patron_name = ? AND scraped_at < ?
                """,
                (patron, to_db_timestamp(before)),
            )

        if not rows or rows[0]["scraped_at"] is None:
            return []

        return self._get_cycle(patron, rows[0]["scraped_at"])

    def get_latest_snapshots(self, patron: str) -> list[ItemSnapshot]:
        """Get the rows of the patron's most recent scrape cycle.

        Args:
            patron: Patron name.

        Returns:
            Snapshots ordered by row id; empty if the patron was never seen
            or the latest cycle was empty.
        """
        rows = self._query(
            "get_latest_snapshots",
            """
            SELECT MAX(scraped_at) AS scraped_at FROM scrape_cycles
            WHERE patron_name = ?
            """,
            (patron,),
        )
        if not rows or rows[0]["scraped_at"] is None:
            return []
        return self._get_cycle(patron, rows[0]["scraped_at"])

    def list_cycle_times(self, patron: str) -> list[datetime]:
        """Get the timestamps of every recorded cycle for a patron, oldest first."""
        rows = self._query(
            "list_cycle_times",
            """
            SELECT scraped_at FROM scrape_cycles
            WHERE patron_name = ?
            ORDER BY scraped_at
            """,
            (patron,),
        )
        return [from_db_timestamp(row["scraped_at"]) for row in rows]

    def _get_cycle(self, patron: str, scraped_at: str) -> list[ItemSnapshot]:
        rows = self._query(
            "get_cycle",
            """
            SELECT * FROM item_snapshots
            WHERE patron_name = ? AND scraped_at = ?
            ORDER BY id
            """,
            (patron, scraped_at),
        )
        return [self._row_to_snapshot(row) for row in rows]

    def get_item_history(self, item_id: str) -> list[ItemSnapshot]:
        """Get every stored observation of one item.

        Args:
            item_id: Item fingerprint.

        Returns:
            Snapshots ordered by scraped_at, then row id.
        """
        rows = self._query(
            "get_item_history",
            "SELECT * FROM item_snapshots WHERE item_id = ? ORDER BY scraped_at, id",
            (item_id,),
        )
        return [self._row_to_snapshot(row) for row in rows]

    def list_patrons(self) -> list[str]:
        """Get all patrons with at least one recorded cycle, sorted."""
        rows = self._query(
            "list_patrons",
            "SELECT DISTINCT patron_name FROM scrape_cycles ORDER BY patron_name",
        )
        return [row["patron_name"] for row in rows]

    def list_item_ids_seen_since(self, since: datetime) -> list[str]:
        """Get distinct item ids observed after a timestamp.

        Args:
            since: Exclusive lower bound on scraped_at.

        Returns:
            Sorted item ids.
        """
        rows = self._query(
            "list_item_ids_seen_since",
            """
            SELECT DISTINCT item_id FROM item_snapshots
            WHERE scraped_at > ?
            ORDER BY item_id
            """,
            (to_db_timestamp(since),),
        )
        return [row["item_id"] for row in rows]

    def _row_to_snapshot(self, row: sqlite3.Row) -> ItemSnapshot:
        """Convert a database row to an ItemSnapshot."""
        return ItemSnapshot(
            id=row["id"],
            item_id=row["item_id"],
            patron_name=row["patron_name"],
            title=row["title"],
            subtitle=row["subtitle"],
            author=row["author"],
            item_kind=ItemKind(row["item_kind"]),
            format=row["format"],
            state=ItemState(row["state"]),
            due_date=row["due_date"],
            checkout_by=row["checkout_by"],
            expires_on=row["expires_on"],
            queue_position=row["queue_position"],
            scraped_at=from_db_timestamp(row["scraped_at"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    # ===== Transitions =====

    def record_transitions(
        self, transitions: Iterable[ItemTransition]
    ) -> list[ItemTransition]:
        """Append classified transitions in one transaction.

        Args:
            transitions: Unsaved transitions.

        Returns:
            The stored transitions with row ids, in input order.
        """
        now = datetime.now(UTC)
        stored: list[ItemTransition] = []

        with self._transaction("record_transitions") as ctx:
            conn = self._ensure_connected()
            for transition in transitions:
                cursor = conn.execute(
                    """
                    INSERT INTO item_transitions (
                        item_id, patron_name, title, from_state, to_state,
                        transition_kind, is_expected, notes, transitioned_at,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        transition.item_id,
                        transition.patron_name,
                        transition.title,
                        transition.from_state.value if transition.from_state else None,
                        transition.to_state.value if transition.to_state else None,
                        transition.transition_kind.value,
                        1 if transition.is_expected else 0,
                        transition.notes,
                        to_db_timestamp(transition.transitioned_at),
                        to_db_timestamp(now),
                    ),
                )
                ctx.add_affected_rows(1)
                stored.append(
                    transition.model_copy(
                        update={"id": cursor.lastrowid, "created_at": now}
                    )
                )
                self._after_commit(
                    partial(self._metrics.record_transition, transition.is_expected)
                )

        return stored

    def list_unexpected_transitions(self, since: datetime) -> list[ItemTransition]:
        """Get unexpected transitions after a timestamp, newest first.

        Served by the partial index over unexpected transitions.

        Args:
            since: Exclusive lower bound on transitioned_at.

        Returns:
            Transitions ordered by transitioned_at then id, descending.
        """
        rows = self._query(
            "list_unexpected_transitions",
            """
            SELECT * FROM item_transitions
            INDEXED BY idx_item_transitions_unexpected
            WHERE is_expected = 0 AND transitioned_at > ?
            ORDER BY transitioned_at DESC, id DESC
            """,
            (to_db_timestamp(since),),
        )
        return [self._row_to_transition(row) for row in rows]

    def list_unexpected_disappearances(self, since: datetime) -> list[ItemTransition]:
        """Get unexpected disappearances after a timestamp.

        Args:
            since: Exclusive lower bound on transitioned_at.

        Returns:
            Transitions, newest cycle first and insertion order within a cycle.
        """
        rows = self._query(
            "list_unexpected_disappearances",
            """
            SELECT * FROM item_transitions
            INDEXED BY idx_item_transitions_unexpected
            WHERE is_expected = 0
              AND transitioned_at > ?
              AND transition_kind = ?
            ORDER BY transitioned_at DESC, id ASC
            """,
            (to_db_timestamp(since), TransitionKind.DISAPPEARED.value),
        )
        return [self._row_to_transition(row) for row in rows]

    def get_transitions_for_item(self, item_id: str) -> list[ItemTransition]:
        """Get every transition recorded for one item, oldest first."""
        rows = self._query(
            "get_transitions_for_item",
            """
            SELECT * FROM item_transitions
            WHERE item_id = ?
            ORDER BY transitioned_at, id
            """,
            (item_id,),
        )
        return [self._row_to_transition(row) for row in rows]

    def _row_to_transition(self, row: sqlite3.Row) -> ItemTransition:
        """Convert a database row to an ItemTransition."""
        return ItemTransition(
            id=row["id"],
            item_id=row["item_id"],
            patron_name=row["patron_name"],
            title=row["title"],
            from_state=ItemState(row["from_state"]) if row["from_state"] else None,
            to_state=ItemState(row["to_state"]) if row["to_state"] else None,
            transition_kind=TransitionKind(row["transition_kind"]),
            is_expected=bool(row["is_expected"]),
            notes=row["notes"],
            transitioned_at=from_db_timestamp(row["transitioned_at"]),
            created_at=from_db_timestamp(row["created_at"]),
        )

    # ===== Retention =====

    def prune_snapshots_before(self, cutoff: datetime) -> int:
        """Delete snapshots scraped before a cutoff.

        A patron's most recent cycle is always kept, so the next detection
        still has a baseline. Cycle markers older than the cutoff go with
        their rows, except the latest one.

        Args:
            cutoff: Exclusive upper bound on scraped_at of deleted rows.

        Returns:
            Number of snapshot rows deleted.
        """
        with self._transaction("prune_snapshots") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                """
                DELETE FROM item_snapshots
                WHERE scraped_at < ?
                  AND scraped_at < (
                      SELECT MAX(latest.scraped_at) FROM scrape_cycles AS latest
                      WHERE latest.patron_name = item_snapshots.patron_name
                  )
                """,
                (to_db_timestamp(cutoff),),
            )
            pruned = cursor.rowcount
            cursor = conn.execute(
                """
                DELETE FROM scrape_cycles
                WHERE scraped_at < ?
                  AND scraped_at < (
                      SELECT MAX(latest.scraped_at) FROM scrape_cycles AS latest
                      WHERE latest.patron_name = scrape_cycles.patron_name
                  )
                """,
                (to_db_timestamp(cutoff),),
            )
            cycles_pruned = cursor.rowcount
            ctx.add_affected_rows(pruned + cycles_pruned)
            self._after_commit(partial(self._metrics.record_snapshots_pruned, pruned))

        self._log.info(
            "snapshots_pruned",
            count=pruned,
            cycles=cycles_pruned,
            cutoff=to_db_timestamp(cutoff),
        )
        return pruned

    def prune_transitions_before(self, cutoff: datetime) -> int:
        """Delete transitions recorded before a cutoff.

        Args:
            cutoff: Exclusive upper bound on transitioned_at of deleted rows.

        Returns:
            Number of transition rows deleted.
        """
        with self._transaction("prune_transitions") as ctx:
            conn = self._ensure_connected()
            cursor = conn.execute(
                "DELETE FROM item_transitions WHERE transitioned_at < ?",
                (to_db_timestamp(cutoff),),
            )
            pruned = cursor.rowcount
            ctx.add_affected_rows(pruned)
            self._after_commit(
                partial(self._metrics.record_transitions_pruned, pruned)
            )

        self._log.info(
            "transitions_pruned", count=pruned, cutoff=to_db_timestamp(cutoff)
        )
        return pruned

    # ===== Stats =====

    def get_stats(self) -> dict[str, int]:
        """Get row counts for the tracking tables and the patron count.

        Returns:
            Dictionary mapping table name (and "patrons") to a count.
        """
        stats: dict[str, int] = {}

        for table in ("item_snapshots", "item_transitions", "scrape_cycles"):
            rows = self._query("get_stats", f"SELECT COUNT(*) FROM {table}")  # noqa: S608
            stats[table] = rows[0][0]

        rows = self._query(
            "get_stats", "SELECT COUNT(DISTINCT patron_name) FROM scrape_cycles"
        )
        stats["patrons"] = rows[0][0]
        return stats

    def get_schema_version(self) -> int:
        """Get current schema version.

        Returns:
            Current schema version number.
        """
        conn = self._ensure_connected()
        migration_mgr = MigrationManager(conn)
        return migration_mgr.get_current_version()
