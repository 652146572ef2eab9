"""Classification of detected item changes as expected or unexpected.

Disappearances are judged by an ordered rule list; the first rule whose
predicate matches decides the outcome, and an item no rule explains is
reported as unexpected. Order matters and is part of the behavior:

1. checkout_near_due     checkout due within NEAR_DUE_DAYS (or overdue)
2. checkout_overdue      checkout past its due date
3. digital_checkout      digital checkout auto-returned by the provider
4. digital_hold_ready    digital hold vanished while ready (unexpected)
5. hold_ready            hold vanished while ready for pickup (unexpected)
6. hold_waiting          waiting hold cancelled or expired
7. hold_paused           paused hold cancelled
8. hold_transit          in-transit hold cancelled
   default               unexpected

Rule 1 accepts any ``d <= near_due_days``, so it also catches overdue
checkouts; rule 2 only fires when ``near_due_days`` is negative.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import ClassVar

import structlog
from dateutil import parser as date_parser

from shelfwatch.data_model.enums import ItemKind, ItemState
from shelfwatch.data_model.items import Classification, ItemSnapshot
from shelfwatch.tracker.constants import (
    COMPONENT_CLASSIFIER,
    DIGITAL_FORMAT_MARKERS,
    NEAR_DUE_DAYS,
    NEW_ITEM_NOTE,
)


logger = structlog.get_logger()


@dataclass(frozen=True)
class DisappearanceContext:
    """Facts about a vanished item that disappearance rules test against.

    Attributes:
        previous: Last snapshot of the item before it vanished.
        days_until_due: Whole days from today to the due date; None if the
            item is not a checkout or its due date is missing or unparseable.
        near_due_days: Threshold for the near-due rule.
    """

    previous: ItemSnapshot
    days_until_due: int | None
    near_due_days: int = NEAR_DUE_DAYS

    @property
    def is_checkout(self) -> bool:
        """Whether the item was a checkout."""
        return self.previous.item_kind == ItemKind.CHECKOUT

    @property
    def is_digital(self) -> bool:
        """Whether the item's format marks it as digital."""
        item_format = self.previous.format or ""
        return any(marker in item_format for marker in DIGITAL_FORMAT_MARKERS)

    @property
    def from_state(self) -> ItemState:
        """State the item was last seen in."""
        return self.previous.state


Outcome = Callable[[DisappearanceContext], Classification]


@dataclass(frozen=True)
class DisappearanceRule:
    """One (predicate, outcome) pair in the disappearance cascade."""

    name: str
    applies: Callable[[DisappearanceContext], bool]
    outcome: Outcome


def _due_within_threshold(ctx: DisappearanceContext) -> bool:
    days = ctx.days_until_due
    return ctx.is_checkout and days is not None and days <= ctx.near_due_days


def _overdue(ctx: DisappearanceContext) -> bool:
    days = ctx.days_until_due
    return ctx.is_checkout and days is not None and days < 0


def _returned_near_due(ctx: DisappearanceContext) -> Classification:
    return Classification(
        is_expected=True,
        notes=f"Item returned near due date ({ctx.days_until_due} days until due)",
        rule="checkout_near_due",
    )


def _returned_overdue(ctx: DisappearanceContext) -> Classification:
    overdue_days = -(ctx.days_until_due or 0)
    return Classification(
        is_expected=True,
        notes=f"Item returned after due date ({overdue_days} days overdue)",
        rule="checkout_overdue",
    )


def _fixed(name: str, is_expected: bool, notes: str) -> Outcome:
    outcome = Classification(is_expected=is_expected, notes=notes, rule=name)
    return lambda _ctx: outcome


def _prior_state_rule(
    name: str, state: ItemState, is_expected: bool, notes: str
) -> DisappearanceRule:
    return DisappearanceRule(
        name=name,
        applies=lambda ctx: ctx.from_state == state,
        outcome=_fixed(name, is_expected, notes),
    )


DISAPPEARANCE_RULES: tuple[DisappearanceRule, ...] = (
    DisappearanceRule(
        name="checkout_near_due",
        applies=_due_within_threshold,
        outcome=_returned_near_due,
    ),
    DisappearanceRule(
        name="checkout_overdue",
        applies=_overdue,
        outcome=_returned_overdue,
    ),
    DisappearanceRule(
        name="digital_checkout",
        applies=lambda ctx: ctx.is_digital and ctx.is_checkout,
        outcome=_fixed(
            "digital_checkout", True, "Digital item auto-returned on due date"
        ),
    ),
    DisappearanceRule(
        name="digital_hold_ready",
        applies=lambda ctx: ctx.is_digital and ctx.from_state == ItemState.HOLD_READY,
        outcome=_fixed(
            "digital_hold_ready",
            False,
            "Digital hold disappeared while ready for checkout",
        ),
    ),
    _prior_state_rule(
        "hold_ready",
        ItemState.HOLD_READY,
        False,
        "Hold disappeared while ready for pickup",
    ),
    _prior_state_rule(
        "hold_waiting",
        ItemState.HOLD_WAITING,
        True,
        "Hold cancelled or expired while waiting",
    ),
    _prior_state_rule(
        "hold_paused", ItemState.HOLD_PAUSED, True, "Paused hold cancelled"
    ),
    _prior_state_rule(
        "hold_transit", ItemState.HOLD_TRANSIT, True, "Hold in transit cancelled"
    ),
)

DEFAULT_DISAPPEARANCE = Classification(
    is_expected=False,
    notes="Item disappeared unexpectedly",
    rule="default",
)


def parse_due_date(value: str | None) -> date | None:
    """Parse a provider-rendered due date.

    Args:
        value: Date text such as "Oct 21, 2026" or "2026-10-21".

    Returns:
        The calendar date, or None if missing or unparseable.
    """
    if not value or not value.strip():
        return None
    try:
        return date_parser.parse(value).date()
    except (ValueError, TypeError, OverflowError):
        return None


class TransitionClassifier:
    """Labels detected changes as expected or unexpected with a rationale.

    The classifier is pure apart from the notion of "today", which can be
    pinned for deterministic results.
    """

    EXPECTED_PROGRESSIONS: ClassVar[dict[ItemState, frozenset[ItemState]]] = {
        ItemState.HOLD_WAITING: frozenset(
            {ItemState.HOLD_TRANSIT, ItemState.HOLD_READY, ItemState.HOLD_PAUSED}
        ),
        ItemState.HOLD_TRANSIT: frozenset({ItemState.HOLD_READY}),
        ItemState.HOLD_READY: frozenset({ItemState.CHECKED_OUT}),
        ItemState.HOLD_PAUSED: frozenset({ItemState.HOLD_WAITING}),
    }

    def __init__(
        self,
        today: date | Callable[[], date] | None = None,
        near_due_days: int = NEAR_DUE_DAYS,
        rules: tuple[DisappearanceRule, ...] = DISAPPEARANCE_RULES,
    ) -> None:
        """Initialize the classifier.

        Args:
            today: Fixed date or date factory; defaults to the local date.
            near_due_days: Threshold for the near-due checkout rule.
            rules: Ordered disappearance rules.
        """
        self._today = today
        self._near_due_days = near_due_days
        self._rules = rules
        self._log = logger.bind(component=COMPONENT_CLASSIFIER)

    @property
    def rules(self) -> tuple[DisappearanceRule, ...]:
        """The ordered disappearance rules."""
        return self._rules

    def today(self) -> date:
        """Get the date disappearances are judged against."""
        if self._today is None:
            return date.today()
        if isinstance(self._today, date):
            return self._today
        return self._today()

    def days_until_due(self, previous: ItemSnapshot) -> int | None:
        """Whole days from today until a checkout's due date.

        Args:
            previous: Last snapshot of the item.

        Returns:
            Day count (negative when overdue), or None when not applicable.
        """
        if previous.item_kind != ItemKind.CHECKOUT:
            return None

        due = parse_due_date(previous.due_date)
        if due is None:
            if previous.due_date:
                self._log.debug(
                    "due_date_unparseable",
                    item_id=previous.item_id,
                    due_date=previous.due_date,
                )
            return None
        return (due - self.today()).days

    def classify_disappearance(self, previous: ItemSnapshot) -> Classification:
        """Classify an item that was present last cycle and is gone now.

        Args:
            previous: Last snapshot of the item.

        Returns:
            Outcome of the first matching rule, or the default.
        """
        ctx = DisappearanceContext(
            previous=previous,
            days_until_due=self.days_until_due(previous),
            near_due_days=self._near_due_days,
        )
        for rule in self._rules:
            if rule.applies(ctx):
                return rule.outcome(ctx)
        return DEFAULT_DISAPPEARANCE

    def is_expected_progression(
        self, from_state: ItemState, to_state: ItemState
    ) -> bool:
        """Check whether a state change follows the normal lifecycle."""
        return to_state in self.EXPECTED_PROGRESSIONS.get(from_state, frozenset())

    def classify_state_change(
        self, from_state: ItemState, to_state: ItemState
    ) -> Classification:
        """Classify an item seen in both cycles with a different state.

        Args:
            from_state: State in the previous cycle.
            to_state: State in the current cycle.

        Returns:
            Expected for a listed progression, unexpected otherwise.
        """
        arrow = f"{from_state.value} → {to_state.value}"
        if self.is_expected_progression(from_state, to_state):
            return Classification(
                is_expected=True,
                notes=f"Normal state progression: {arrow}",
                rule="progression_table",
            )
        return Classification(
            is_expected=False,
            notes=f"Unexpected state change: {arrow}",
            rule="progression_table",
        )

    def classify_appearance(self) -> Classification:
        """Classify a first sighting; always expected."""
        return Classification(is_expected=True, notes=NEW_ITEM_NOTE, rule="appeared")
