"""Domain models for observed library items.

This module provides:
- Lifecycle, kind and transition enums
- The checkout/hold inbound record union
- Immutable snapshot and transition records
- Status normalization and item fingerprinting
"""

from shelfwatch.data_model.base import InboundRecordModel, StrictBaseModel
from shelfwatch.data_model.enums import ItemKind, ItemState, TransitionKind
from shelfwatch.data_model.fingerprint import compute_item_id
from shelfwatch.data_model.items import (
    CheckoutRecord,
    Classification,
    CycleResult,
    HoldRecord,
    ItemRecord,
    ItemSnapshot,
    ItemTransition,
    MissingItem,
    MissingItemsEvent,
    coerce_records,
)
from shelfwatch.data_model.status import normalize_hold_status
from shelfwatch.data_model.timestamps import (
    ensure_utc,
    from_db_timestamp,
    to_db_timestamp,
)


__all__ = [
    # Base models
    "InboundRecordModel",
    "StrictBaseModel",
    # Enums
    "ItemKind",
    "ItemState",
    "TransitionKind",
    # Records
    "CheckoutRecord",
    "Classification",
    "CycleResult",
    "HoldRecord",
    "ItemRecord",
    "ItemSnapshot",
    "ItemTransition",
    "MissingItem",
    "MissingItemsEvent",
    "coerce_records",
    # Normalization
    "compute_item_id",
    "normalize_hold_status",
    # Timestamps
    "ensure_utc",
    "from_db_timestamp",
    "to_db_timestamp",
]
