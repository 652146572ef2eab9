"""Transition detection between a patron's adjacent scrape cycles."""

from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog

from shelfwatch.data_model.enums import ItemState, TransitionKind
from shelfwatch.data_model.items import (
    CheckoutRecord,
    CycleResult,
    HoldRecord,
    ItemSnapshot,
    ItemTransition,
    coerce_records,
)
from shelfwatch.data_model.timestamps import ensure_utc
from shelfwatch.observability.logging import bind_patron_context, clear_patron_context
from shelfwatch.store.store import TrackingStore
from shelfwatch.tracker.classifier import TransitionClassifier
from shelfwatch.tracker.constants import COMPONENT_DETECTOR


logger = structlog.get_logger()

InboundItem = CheckoutRecord | HoldRecord | Mapping[str, Any]


def _state_value(state: ItemState | None) -> str | None:
    return state.value if state is not None else None


def index_previous(snapshots: Sequence[ItemSnapshot]) -> dict[str, ItemSnapshot]:
    """Index a previous cycle by item_id.

    If a cycle holds several rows for one item_id, the row with the lowest
    id wins.

    Args:
        snapshots: Rows of one cycle.

    Returns:
        Mapping of item_id to snapshot, in ascending row-id order.
    """
    indexed: dict[str, ItemSnapshot] = {}
    for snapshot in sorted(snapshots, key=lambda s: (s.id is None, s.id or 0)):
        if snapshot.item_id in indexed:
            logger.warning(
                "duplicate_item_in_cycle",
                component=COMPONENT_DETECTOR,
                item_id=snapshot.item_id,
                kept_row_id=indexed[snapshot.item_id].id,
                dropped_row_id=snapshot.id,
            )
            continue
        indexed[snapshot.item_id] = snapshot
    return indexed


def index_current(
    records: Sequence[CheckoutRecord | HoldRecord],
) -> dict[str, CheckoutRecord | HoldRecord]:
    """Index the current batch by item_id; the last record for an id wins."""
    indexed: dict[str, CheckoutRecord | HoldRecord] = {}
    for record in records:
        if record.item_id in indexed:
            logger.warning(
                "duplicate_item_in_batch",
                component=COMPONENT_DETECTOR,
                item_id=record.item_id,
            )
        indexed[record.item_id] = record
    return indexed


class TransitionDetector:
    """Computes and records classified transitions for one patron at a time.

    Detection compares the current batch only against the patron's most
    recent cycle older than the current timestamp. A patron with no such
    cycle gets no transitions; the first cycle only establishes a baseline.
    """

    def __init__(
        self,
        store: TrackingStore,
        classifier: TransitionClassifier | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            store: Connected tracking store.
            classifier: Classifier to label changes (default settings if None).
        """
        self._store = store
        self._classifier = classifier or TransitionClassifier()
        self._log = logger.bind(component=COMPONENT_DETECTOR)

    @property
    def classifier(self) -> TransitionClassifier:
        """Get the classifier."""
        return self._classifier

    def compute_transitions(
        self,
        previous: Sequence[ItemSnapshot],
        current: Sequence[CheckoutRecord | HoldRecord],
        patron: str,
        timestamp: datetime,
    ) -> list[ItemTransition]:
        """Diff two cycles and classify every change, without writing.

        Args:
            previous: Rows of the previous cycle.
            current: Records of the current cycle.
            patron: Patron both cycles belong to.
            timestamp: Current cycle timestamp.

        Returns:
            Disappearances and state changes in previous-cycle order, then
            appearances in current-batch order.
        """
        previous_by_id = index_previous(previous)
        current_by_id = index_current(
            [record for record in current if record.patron_name == patron]
        )
        transitions: list[ItemTransition] = []

        for item_id, before in previous_by_id.items():
            now = current_by_id.get(item_id)

            if now is None:
                outcome = self._classifier.classify_disappearance(before)
                transitions.append(
                    ItemTransition(
                        item_id=item_id,
                        patron_name=patron,
                        title=before.title,
                        from_state=before.state,
                        to_state=None,
                        transition_kind=TransitionKind.DISAPPEARED,
                        is_expected=outcome.is_expected,
                        notes=outcome.notes,
                        transitioned_at=timestamp,
                    )
                )
            elif now.state != before.state:
                outcome = self._classifier.classify_state_change(
                    before.state, now.state
                )
                transitions.append(
                    ItemTransition(
                        item_id=item_id,
                        patron_name=patron,
                        title=before.title,
                        from_state=before.state,
                        to_state=now.state,
                        transition_kind=TransitionKind.STATE_CHANGE,
                        is_expected=outcome.is_expected,
                        notes=outcome.notes,
                        transitioned_at=timestamp,
                    )
                )

        for item_id, now in current_by_id.items():
            if item_id in previous_by_id:
                continue
            outcome = self._classifier.classify_appearance()
            transitions.append(
                ItemTransition(
                    item_id=item_id,
                    patron_name=patron,
                    title=now.title,
                    from_state=None,
                    to_state=now.state,
                    transition_kind=TransitionKind.APPEARED,
                    is_expected=outcome.is_expected,
                    notes=outcome.notes,
                    transitioned_at=timestamp,
                )
            )

        return transitions

    def detect_transitions(
        self,
        current_items: Iterable[InboundItem],
        patron: str,
        timestamp: datetime,
    ) -> list[ItemTransition]:
        """Detect, classify and record transitions for one patron's cycle.

        Args:
            current_items: Records observed in the current cycle.
            patron: Patron name.
            timestamp: Current cycle timestamp.

        Returns:
            The stored transitions; empty when there is no previous cycle.
        """
        records = coerce_records(current_items)
        previous = self._store.get_previous_snapshots(patron, before=timestamp)
        return self._record_transitions(previous, records, patron, timestamp)

    def _record_transitions(
        self,
        previous: Sequence[ItemSnapshot],
        records: Sequence[CheckoutRecord | HoldRecord],
        patron: str,
        timestamp: datetime,
    ) -> list[ItemTransition]:
        log = self._log.bind(patron=patron)
        if not previous:
            log.info("baseline_cycle", items=len(records))
            return []

        transitions = self.compute_transitions(previous, records, patron, timestamp)
        stored = self._store.record_transitions(transitions)

        for transition in stored:
            log_method = log.info if transition.is_expected else log.warning
            log_method(
                "transition_detected",
                item_id=transition.item_id,
                kind=transition.transition_kind.value,
                from_state=_state_value(transition.from_state),
                to_state=_state_value(transition.to_state),
                is_expected=transition.is_expected,
                notes=transition.notes,
            )

        return stored

    def process_cycle(
        self,
        current_items: Iterable[InboundItem],
        patron: str,
        timestamp: datetime | None = None,
    ) -> CycleResult:
        """Record a patron's cycle and its transitions as one atomic unit.

        The snapshot write, the previous-cycle read and the transition write
        share one immediate transaction, so no other writer interleaves and
        readers see either none or all of the cycle. An empty batch is still
        recorded as a cycle and becomes the baseline for the next one, so a
        vanished item is reported once.

        Args:
            current_items: Records observed in the current cycle.
            patron: Patron name.
            timestamp: Cycle timestamp (now, UTC, if omitted).

        Returns:
            Summary of what was recorded.

        Raises:
            DuplicateCycleError: If the patron already has a cycle at this
                timestamp; the repeated cycle is rejected without writes.
        """
        scraped_at = ensure_utc(timestamp) if timestamp else datetime.now(UTC)
        records = coerce_records(current_items)

        bind_patron_context(patron)
        try:
            with self._store.atomic("process_cycle"):
                snapshots = self._store.record_snapshot(records, patron, scraped_at)
                previous = self._store.get_previous_snapshots(
                    patron, before=scraped_at
                )
                transitions = self._record_transitions(
                    previous, records, patron, scraped_at
                )
        finally:
            clear_patron_context()

        result = CycleResult(
            patron_name=patron,
            scraped_at=scraped_at,
            snapshots_recorded=len(snapshots),
            baseline_only=not previous,
            transitions=tuple(transitions),
        )

        self._log.info(
            "cycle_processed",
            patron=patron,
            snapshots=result.snapshots_recorded,
            transitions=len(result.transitions),
            unexpected=len(result.unexpected),
            baseline_only=result.baseline_only,
        )
        return result
