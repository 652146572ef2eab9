"""Item observation and transition models.

Inbound scraper records form a tagged union on ``item_kind``; stored rows
(snapshots and transitions) are frozen and never mutated after insert.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, Field, TypeAdapter, field_validator, model_validator

from shelfwatch.data_model.base import InboundRecordModel, StrictBaseModel
from shelfwatch.data_model.enums import ItemKind, ItemState, TransitionKind
from shelfwatch.data_model.status import normalize_hold_status
from shelfwatch.data_model.timestamps import ensure_utc


class _RecordFields(InboundRecordModel):
    """Fields common to checkout and hold records."""

    item_id: Annotated[str, Field(min_length=1, description="Item fingerprint")]
    patron_name: Annotated[str, Field(min_length=1, description="Patron name")]
    title: Annotated[str, Field(description="Item title")]
    subtitle: str | None = None
    author: str | None = None
    # Scrapers emit the format under "type" (e.g. "eBook", "Book").
    format: str | None = Field(
        default=None,
        validation_alias=AliasChoices("format", "type"),
    )


class CheckoutRecord(_RecordFields):
    """A borrowed item as observed on the checkouts page."""

    item_kind: Literal["checkout"] = "checkout"
    due_date: str | None = Field(
        default=None, description="Due date as rendered by the provider"
    )

    @property
    def kind(self) -> ItemKind:
        """Item kind."""
        return ItemKind.CHECKOUT

    @property
    def state(self) -> ItemState:
        """Checkouts are always checked out."""
        return ItemState.CHECKED_OUT


class HoldRecord(_RecordFields):
    """A hold request as observed on the holds page."""

    item_kind: Literal["hold"] = "hold"
    status: str | None = Field(default=None, description="Provider status text")
    checkout_by: str | None = None
    expires_on: str | None = None
    queue_position: int | None = Field(default=None, ge=0)

    @property
    def kind(self) -> ItemKind:
        """Item kind."""
        return ItemKind.HOLD

    @property
    def state(self) -> ItemState:
        """State derived from the provider status text."""
        return normalize_hold_status(self.status)


ItemRecord = Annotated[CheckoutRecord | HoldRecord, Field(discriminator="item_kind")]

_RECORDS_ADAPTER: TypeAdapter[list[ItemRecord]] = TypeAdapter(list[ItemRecord])


def coerce_records(
    items: Iterable[CheckoutRecord | HoldRecord | Mapping[str, Any]],
) -> list[CheckoutRecord | HoldRecord]:
    """Validate a mixed batch of record models and plain mappings.

    Mappings must carry ``item_kind`` ("checkout" or "hold").

    Args:
        items: Records as models or mappings.

    Returns:
        List of validated records, in input order.

    Raises:
        pydantic.ValidationError: If any record is malformed.
    """
    return _RECORDS_ADAPTER.validate_python(
        [
            item if isinstance(item, (CheckoutRecord, HoldRecord)) else dict(item)
            for item in items
        ]
    )


class ItemSnapshot(StrictBaseModel):
    """One stored observation of an item in one scrape cycle."""

    id: int | None = Field(default=None, description="Row id (None before insert)")
    item_id: Annotated[str, Field(min_length=1)]
    patron_name: Annotated[str, Field(min_length=1)]
    title: str | None = None
    subtitle: str | None = None
    author: str | None = None
    item_kind: ItemKind
    format: str | None = None
    state: ItemState
    due_date: str | None = None
    checkout_by: str | None = None
    expires_on: str | None = None
    queue_position: int | None = None
    scraped_at: datetime = Field(description="Cycle timestamp shared by the batch")
    created_at: datetime | None = Field(default=None, description="Insert time")

    @field_validator("scraped_at", "created_at", mode="after")
    @classmethod
    def normalize_timestamp(cls, v: datetime | None) -> datetime | None:
        """Store all timestamps as aware UTC."""
        return ensure_utc(v) if v is not None else None

    @classmethod
    def from_record(
        cls,
        record: CheckoutRecord | HoldRecord,
        scraped_at: datetime,
    ) -> "ItemSnapshot":
        """Build an unsaved snapshot from an inbound record.

        Args:
            record: Validated scraper record.
            scraped_at: Cycle timestamp.

        Returns:
            Snapshot with derived state and no row id.
        """
        hold_fields: dict[str, Any] = {}
        if isinstance(record, HoldRecord):
            hold_fields = {
                "checkout_by": record.checkout_by,
                "expires_on": record.expires_on,
                "queue_position": record.queue_position,
            }

        return cls(
            item_id=record.item_id,
            patron_name=record.patron_name,
            title=record.title,
            subtitle=record.subtitle,
            author=record.author,
            item_kind=record.kind,
            format=record.format,
            state=record.state,
            due_date=record.due_date if isinstance(record, CheckoutRecord) else None,
            scraped_at=scraped_at,
            **hold_fields,
        )


class Classification(StrictBaseModel):
    """Outcome of classifying one detected change."""

    is_expected: bool
    notes: Annotated[str, Field(min_length=1, description="Human-readable rationale")]
    rule: str | None = Field(default=None, description="Name of the rule that matched")


class ItemTransition(StrictBaseModel):
    """One classified change for one item between two adjacent cycles."""

    id: int | None = Field(default=None, description="Row id (None before insert)")
    item_id: Annotated[str, Field(min_length=1)]
    patron_name: Annotated[str, Field(min_length=1)]
    title: str | None = None
    from_state: ItemState | None = None
    to_state: ItemState | None = None
    transition_kind: TransitionKind
    is_expected: bool
    notes: Annotated[str, Field(min_length=1)]
    transitioned_at: datetime
    created_at: datetime | None = None

    @field_validator("transitioned_at", "created_at", mode="after")
    @classmethod
    def normalize_timestamp(cls, v: datetime | None) -> datetime | None:
        """Store all timestamps as aware UTC."""
        return ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def check_states_match_kind(self) -> "ItemTransition":
        """Validate which side of the change carries a state."""
        kind = self.transition_kind
        if kind == TransitionKind.APPEARED and (
            self.from_state is not None or self.to_state is None
        ):
            msg = "appeared transitions have only a to_state"
            raise ValueError(msg)
        if kind == TransitionKind.DISAPPEARED and (
            self.from_state is None or self.to_state is not None
        ):
            msg = "disappeared transitions have only a from_state"
            raise ValueError(msg)
        if kind == TransitionKind.STATE_CHANGE and (
            self.from_state is None
            or self.to_state is None
            or self.from_state == self.to_state
        ):
            msg = "state_change transitions need two different states"
            raise ValueError(msg)
        return self


class MissingItem(StrictBaseModel):
    """An item that vanished unexpectedly, as listed in a missing-items event."""

    title: str | None
    item_id: str
    from_state: ItemState | None
    notes: str


class MissingItemsEvent(StrictBaseModel):
    """Unexpected disappearances for one patron in one scrape cycle."""

    timestamp: datetime
    patron_name: str
    missing_items: list[MissingItem]
    total_missing: int = Field(ge=0)


class CycleResult(StrictBaseModel):
    """Summary of one processed scrape cycle for one patron."""

    patron_name: str
    scraped_at: datetime
    snapshots_recorded: int = Field(ge=0)
    baseline_only: bool = Field(
        description="True when no previous cycle existed to compare against"
    )
    transitions: tuple[ItemTransition, ...] = ()

    @property
    def unexpected(self) -> list[ItemTransition]:
        """Transitions classified as unexpected."""
        return [t for t in self.transitions if not t.is_expected]

    @property
    def counts_by_kind(self) -> dict[TransitionKind, int]:
        """Number of transitions per kind (kinds with none are omitted)."""
        counts: dict[TransitionKind, int] = {}
        for transition in self.transitions:
            counts[transition.transition_kind] = (
                counts.get(transition.transition_kind, 0) + 1
            )
        return counts
