"""Unit tests for item records and stored models."""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from shelfwatch.data_model.enums import ItemKind, ItemState, TransitionKind
from shelfwatch.data_model.items import (
    CheckoutRecord,
    CycleResult,
    HoldRecord,
    ItemSnapshot,
    ItemTransition,
    coerce_records,
)
from tests.helpers.time import FIXED_NOW


class TestInboundRecords:
    """Tests for checkout and hold records."""

    def test_checkout_state_is_checked_out(self) -> None:
        """Test a checkout is always checked out."""
        record = CheckoutRecord(item_id="c1", patron_name="Alice", title="Dune")
        assert record.state == ItemState.CHECKED_OUT
        assert record.kind == ItemKind.CHECKOUT

    def test_hold_state_from_status(self) -> None:
        """Test a hold derives its state from the status text."""
        record = HoldRecord(
            item_id="h1", patron_name="Alice", title="Dune", status="Ready"
        )
        assert record.state == ItemState.HOLD_READY
        assert record.kind == ItemKind.HOLD

    def test_type_key_populates_format(self) -> None:
        """Test the scraper's "type" key is accepted for the format."""
        records = coerce_records(
            [
                {
                    "item_kind": "checkout",
                    "item_id": "c1",
                    "patron_name": "Alice",
                    "title": "Dune",
                    "type": "eBook",
                }
            ]
        )
        assert records[0].format == "eBook"

    def test_unknown_keys_ignored(self) -> None:
        """Test extra scraper fields do not fail validation."""
        records = coerce_records(
            [
                {
                    "item_kind": "hold",
                    "item_id": "h1",
                    "patron_name": "Alice",
                    "title": "Dune",
                    "cover_url": "https://example.org/c.jpg",
                }
            ]
        )
        assert isinstance(records[0], HoldRecord)

    def test_coerce_mixed_batch_keeps_order(self) -> None:
        """Test models and mappings can be mixed and order is kept."""
        checkout = CheckoutRecord(item_id="c1", patron_name="Alice", title="A")
        records = coerce_records(
            [
                checkout,
                {
                    "item_kind": "hold",
                    "item_id": "h1",
                    "patron_name": "Alice",
                    "title": "B",
                },
            ]
        )
        assert [r.item_id for r in records] == ["c1", "h1"]
        assert records[0] == checkout

    def test_missing_item_kind_rejected(self) -> None:
        """Test mappings must declare their kind."""
        with pytest.raises(ValidationError):
            coerce_records([{"item_id": "x", "patron_name": "Alice", "title": "A"}])

    def test_empty_item_id_rejected(self) -> None:
        """Test item_id must be non-empty."""
        with pytest.raises(ValidationError):
            CheckoutRecord(item_id="", patron_name="Alice", title="A")

    def test_negative_queue_position_rejected(self) -> None:
        """Test queue position cannot be negative."""
        with pytest.raises(ValidationError):
            HoldRecord(item_id="h1", patron_name="Alice", title="A", queue_position=-1)

    def test_records_are_frozen(self) -> None:
        """Test inbound records are immutable."""
        record = CheckoutRecord(item_id="c1", patron_name="Alice", title="A")
        with pytest.raises(ValidationError):
            record.title = "B"  # type: ignore[misc]


class TestItemSnapshot:
    """Tests for ItemSnapshot."""

    def test_from_checkout(self) -> None:
        """Test a checkout snapshot keeps its due date."""
        record = CheckoutRecord(
            item_id="c1",
            patron_name="Alice",
            title="Dune",
            due_date="Oct 21, 2026",
            format="Book",
        )
        snapshot = ItemSnapshot.from_record(record, scraped_at=FIXED_NOW)

        assert snapshot.id is None
        assert snapshot.item_kind == ItemKind.CHECKOUT
        assert snapshot.state == ItemState.CHECKED_OUT
        assert snapshot.due_date == "Oct 21, 2026"
        assert snapshot.queue_position is None

    def test_from_hold(self) -> None:
        """Test a hold snapshot keeps hold-only fields."""
        record = HoldRecord(
            item_id="h1",
            patron_name="Alice",
            title="Dune",
            status="In transit",
            queue_position=2,
            expires_on="Nov 1, 2026",
        )
        snapshot = ItemSnapshot.from_record(record, scraped_at=FIXED_NOW)

        assert snapshot.state == ItemState.HOLD_TRANSIT
        assert snapshot.queue_position == 2
        assert snapshot.expires_on == "Nov 1, 2026"
        assert snapshot.due_date is None

    def test_naive_timestamp_taken_as_utc(self) -> None:
        """Test naive cycle timestamps are treated as UTC."""
        record = CheckoutRecord(item_id="c1", patron_name="Alice", title="A")
        snapshot = ItemSnapshot.from_record(record, scraped_at=datetime(2026, 1, 1))
        assert snapshot.scraped_at == datetime(2026, 1, 1, tzinfo=UTC)

    def test_offset_timestamp_converted_to_utc(self) -> None:
        """Test aware timestamps are converted to UTC."""
        record = CheckoutRecord(item_id="c1", patron_name="Alice", title="A")
        local = datetime(2026, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=9)))
        snapshot = ItemSnapshot.from_record(record, scraped_at=local)
        assert snapshot.scraped_at.utcoffset() == timedelta(0)
        assert snapshot.scraped_at == datetime(2026, 1, 1, 0, 0, tzinfo=UTC)


class TestItemTransition:
    """Tests for ItemTransition state validation."""

    def _make(self, **overrides: object) -> ItemTransition:
        data: dict[str, object] = {
            "item_id": "abc",
            "patron_name": "Alice",
            "title": "Dune",
            "transition_kind": TransitionKind.DISAPPEARED,
            "from_state": ItemState.HOLD_READY,
            "to_state": None,
            "is_expected": False,
            "notes": "Hold disappeared while ready for pickup",
            "transitioned_at": FIXED_NOW,
        }
        data.update(overrides)
        return ItemTransition.model_validate(data)

    def test_valid_disappearance(self) -> None:
        """Test a disappearance with only a from_state is valid."""
        transition = self._make()
        assert transition.to_state is None

    def test_disappearance_with_to_state_rejected(self) -> None:
        """Test a disappearance cannot carry a to_state."""
        with pytest.raises(ValidationError):
            self._make(to_state=ItemState.CHECKED_OUT)

    def test_appearance_needs_only_to_state(self) -> None:
        """Test an appearance has a to_state and no from_state."""
        transition = self._make(
            transition_kind=TransitionKind.APPEARED,
            from_state=None,
            to_state=ItemState.HOLD_WAITING,
            is_expected=True,
            notes="New item",
        )
        assert transition.from_state is None

        with pytest.raises(ValidationError):
            self._make(
                transition_kind=TransitionKind.APPEARED,
                from_state=ItemState.HOLD_WAITING,
                to_state=ItemState.HOLD_READY,
            )

    def test_state_change_needs_two_different_states(self) -> None:
        """Test a state change must actually change state."""
        with pytest.raises(ValidationError):
            self._make(
                transition_kind=TransitionKind.STATE_CHANGE,
                from_state=ItemState.HOLD_READY,
                to_state=ItemState.HOLD_READY,
            )

    def test_empty_notes_rejected(self) -> None:
        """Test every transition carries a rationale."""
        with pytest.raises(ValidationError):
            self._make(notes="")


class TestCycleResult:
    """Tests for CycleResult helpers."""

    def test_unexpected_and_counts(self) -> None:
        """Test unexpected filtering and per-kind counts."""
        gone = ItemTransition(
            item_id="a",
            patron_name="Alice",
            transition_kind=TransitionKind.DISAPPEARED,
            from_state=ItemState.HOLD_READY,
            is_expected=False,
            notes="Hold disappeared while ready for pickup",
            transitioned_at=FIXED_NOW,
        )
        new = ItemTransition(
            item_id="b",
            patron_name="Alice",
            transition_kind=TransitionKind.APPEARED,
            to_state=ItemState.CHECKED_OUT,
            is_expected=True,
            notes="New item",
            transitioned_at=FIXED_NOW,
        )
        result = CycleResult(
            patron_name="Alice",
            scraped_at=FIXED_NOW,
            snapshots_recorded=1,
            baseline_only=False,
            transitions=(gone, new),
        )

        assert result.unexpected == [gone]
        assert result.counts_by_kind == {
            TransitionKind.DISAPPEARED: 1,
            TransitionKind.APPEARED: 1,
        }
