"""Read-only reports over recorded transitions and snapshots."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from shelfwatch.data_model.items import ItemTransition, MissingItem, MissingItemsEvent
from shelfwatch.data_model.timestamps import ensure_utc
from shelfwatch.store.store import TrackingStore
from shelfwatch.tracker.constants import (
    COMPONENT_REPORTS,
    DEFAULT_MISSING_DAYS_BACK,
    DEFAULT_RECENT_ITEMS_DAYS_BACK,
    DEFAULT_UNEXPECTED_DAYS_BACK,
)


logger = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TransitionReports:
    """Windowed queries used by alerting and reporting consumers.

    Every window is measured back from ``now``, which can be pinned to a
    fixed datetime (or a factory) for deterministic results.
    """

    def __init__(
        self,
        store: TrackingStore,
        now: datetime | Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize reports.

        Args:
            store: Connected tracking store.
            now: Fixed reference time or factory (current UTC time if None).
        """
        self._store = store
        self._now = now
        self._log = logger.bind(component=COMPONENT_REPORTS)

    def now(self) -> datetime:
        """Get the reference time windows are measured from."""
        if self._now is None:
            return _utc_now()
        if isinstance(self._now, datetime):
            return ensure_utc(self._now)
        return ensure_utc(self._now())

    def _window_start(self, days_back: int) -> datetime:
        if days_back < 0:
            msg = f"days_back must be non-negative, got {days_back}"
            raise ValueError(msg)
        return self.now() - timedelta(days=days_back)

    def get_unexpected_transitions(
        self, days_back: int = DEFAULT_UNEXPECTED_DAYS_BACK
    ) -> list[ItemTransition]:
        """Get transitions classified as unexpected within a window.

        Args:
            days_back: Window length in days.

        Returns:
            Transitions, newest first.
        """
        since = self._window_start(days_back)
        transitions = self._store.list_unexpected_transitions(since)
        self._log.debug(
            "unexpected_transitions_listed",
            days_back=days_back,
            count=len(transitions),
        )
        return transitions

    def get_missing_items_report(
        self, days_back: int = DEFAULT_MISSING_DAYS_BACK
    ) -> list[MissingItemsEvent]:
        """Group unexpected disappearances into per-cycle events.

        One event is produced per (patron, transitioned_at) pair.

        Args:
            days_back: Window length in days.

        Returns:
            Events, newest cycle first; items in recording order.
        """
        since = self._window_start(days_back)
        grouped: dict[tuple[str, datetime], list[MissingItem]] = {}

        for transition in self._store.list_unexpected_disappearances(since):
            key = (transition.patron_name, transition.transitioned_at)
            grouped.setdefault(key, []).append(
                MissingItem(
                    title=transition.title,
                    item_id=transition.item_id,
                    from_state=transition.from_state,
                    notes=transition.notes,
                )
            )

        events = [
            MissingItemsEvent(
                timestamp=transitioned_at,
                patron_name=patron,
                missing_items=items,
                total_missing=len(items),
            )
            for (patron, transitioned_at), items in grouped.items()
        ]

        self._log.debug(
            "missing_items_report_built",
            days_back=days_back,
            events=len(events),
        )
        return events

    def get_recent_item_ids(
        self, days_back: int = DEFAULT_RECENT_ITEMS_DAYS_BACK
    ) -> list[str]:
        """Get ids of items observed within a window.

        Args:
            days_back: Window length in days.

        Returns:
            Sorted distinct item ids.
        """
        return self._store.list_item_ids_seen_since(self._window_start(days_back))
