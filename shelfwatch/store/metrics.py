"""Metrics collection for the tracking store."""

from dataclasses import dataclass, field
from typing import Protocol


class MetricsRecorder(Protocol):
    """Protocol for metrics recording.

    Each store owns its recorder; nothing here is shared between stores.
    """

    def record_snapshots(self, count: int) -> None:
        """Record snapshot rows written."""
        ...

    def record_transition(self, is_expected: bool) -> None:
        """Record one transition row written."""
        ...

    def record_tx_duration(self, duration_ms: float) -> None:
        """Record transaction duration in milliseconds."""
        ...

    def record_snapshots_pruned(self, count: int) -> None:
        """Record snapshot rows removed by retention."""
        ...

    def record_transitions_pruned(self, count: int) -> None:
        """Record transition rows removed by retention."""
        ...


@dataclass
class NullMetricsRecorder:
    """No-op metrics recorder for testing."""

    def record_snapshots(self, count: int) -> None:  # noqa: ARG002
        """No-op."""

    def record_transition(self, is_expected: bool) -> None:  # noqa: ARG002
        """No-op."""

    def record_tx_duration(self, duration_ms: float) -> None:  # noqa: ARG002
        """No-op."""

    def record_snapshots_pruned(self, count: int) -> None:  # noqa: ARG002
        """No-op."""

    def record_transitions_pruned(self, count: int) -> None:  # noqa: ARG002
        """No-op."""


@dataclass
class StoreMetrics:
    """Counters for tracking store operations.

    Attributes:
        snapshots_written_total: Snapshot rows appended.
        transitions_expected_total: Expected transition rows appended.
        transitions_unexpected_total: Unexpected transition rows appended.
        db_tx_duration_ms: Cumulative transaction duration in milliseconds.
        db_tx_count: Number of committed transactions.
        snapshots_pruned_total: Snapshot rows removed by retention.
        transitions_pruned_total: Transition rows removed by retention.
    """

    snapshots_written_total: int = 0
    transitions_expected_total: int = 0
    transitions_unexpected_total: int = 0
    db_tx_duration_ms: float = 0.0
    db_tx_count: int = 0
    snapshots_pruned_total: int = 0
    transitions_pruned_total: int = 0

    def record_snapshots(self, count: int) -> None:
        """Record snapshot rows written.

        Args:
            count: Number of rows.
        """
        self.snapshots_written_total += count

    def record_transition(self, is_expected: bool) -> None:
        """Record one transition row written.

        Args:
            is_expected: Classification of the transition.
        """
        if is_expected:
            self.transitions_expected_total += 1
        else:
            self.transitions_unexpected_total += 1

    def record_tx_duration(self, duration_ms: float) -> None:
        """Record transaction duration.

        Args:
            duration_ms: Duration in milliseconds.
        """
        self.db_tx_duration_ms += duration_ms
        self.db_tx_count += 1

    def record_snapshots_pruned(self, count: int) -> None:
        """Record pruned snapshot rows."""
        self.snapshots_pruned_total += count

    def record_transitions_pruned(self, count: int) -> None:
        """Record pruned transition rows."""
        self.transitions_pruned_total += count

    def to_dict(self) -> dict[str, float | int]:
        """Convert metrics to dictionary.

        Returns:
            Dictionary of metric name to value.
        """
        return {
            "snapshots_written_total": self.snapshots_written_total,
            "transitions_expected_total": self.transitions_expected_total,
            "transitions_unexpected_total": self.transitions_unexpected_total,
            "db_tx_duration_ms": self.db_tx_duration_ms,
            "db_tx_count": self.db_tx_count,
            "snapshots_pruned_total": self.snapshots_pruned_total,
            "transitions_pruned_total": self.transitions_pruned_total,
        }

    @property
    def avg_tx_duration_ms(self) -> float:
        """Calculate average transaction duration.

        Returns:
            Average duration in milliseconds.
        """
        if self.db_tx_count == 0:
            return 0.0
        return self.db_tx_duration_ms / self.db_tx_count


@dataclass
class TransactionContext:
    """Context for a single transaction with timing.

    Attributes:
        tx_id: Unique transaction identifier.
        start_time_ns: Start time in nanoseconds.
        operation: The operation being performed.
    """

    tx_id: str
    start_time_ns: int
    operation: str
    affected_rows: int = field(default=0)

    def add_affected_rows(self, rows: int) -> None:
        """Add to the affected row count.

        Args:
            rows: Number of rows affected.
        """
        self.affected_rows += rows
