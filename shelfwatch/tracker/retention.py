"""Explicit retention for snapshot and transition history."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import Field

from shelfwatch.data_model.base import StrictBaseModel
from shelfwatch.data_model.timestamps import ensure_utc, to_db_timestamp
from shelfwatch.store.store import TrackingStore
from shelfwatch.tracker.constants import COMPONENT_RETENTION


logger = structlog.get_logger()


class RetentionPolicy(StrictBaseModel):
    """How many days of history to keep; None keeps everything."""

    snapshot_days: int | None = Field(default=None, ge=1)
    transition_days: int | None = Field(default=None, ge=1)

    @property
    def is_noop(self) -> bool:
        """Whether the policy keeps all history."""
        return self.snapshot_days is None and self.transition_days is None


@dataclass(frozen=True)
class RetentionResult:
    """Rows removed by one retention pass."""

    snapshots_pruned: int = 0
    transitions_pruned: int = 0
    snapshot_cutoff: datetime | None = None
    transition_cutoff: datetime | None = None

    @property
    def total_pruned(self) -> int:
        """Total rows removed."""
        return self.snapshots_pruned + self.transitions_pruned


def apply_retention(
    store: TrackingStore,
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> RetentionResult:
    """Prune history older than the policy allows.

    A patron's most recent cycle is never pruned, whatever its age.

    Args:
        store: Connected tracking store.
        policy: Retention policy.
        now: Reference time (current UTC time if None).

    Returns:
        Counts of pruned rows and the cutoffs used.
    """
    log = logger.bind(component=COMPONENT_RETENTION)
    reference = ensure_utc(now) if now is not None else datetime.now(UTC)

    if policy.is_noop:
        log.info("retention_skipped", reason="no_policy")
        return RetentionResult()

    snapshot_cutoff = None
    transition_cutoff = None
    snapshots_pruned = 0
    transitions_pruned = 0

    with store.atomic("apply_retention"):
        if policy.snapshot_days is not None:
            snapshot_cutoff = reference - timedelta(days=policy.snapshot_days)
            snapshots_pruned = store.prune_snapshots_before(snapshot_cutoff)
        if policy.transition_days is not None:
            transition_cutoff = reference - timedelta(days=policy.transition_days)
            transitions_pruned = store.prune_transitions_before(transition_cutoff)

    result = RetentionResult(
        snapshots_pruned=snapshots_pruned,
        transitions_pruned=transitions_pruned,
        snapshot_cutoff=snapshot_cutoff,
        transition_cutoff=transition_cutoff,
    )
    log.info(
        "retention_applied",
        snapshots_pruned=snapshots_pruned,
        transitions_pruned=transitions_pruned,
        snapshot_cutoff=to_db_timestamp(snapshot_cutoff) if snapshot_cutoff else None,
        transition_cutoff=(
            to_db_timestamp(transition_cutoff) if transition_cutoff else None
        ),
    )
    return result
