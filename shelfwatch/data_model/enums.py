"""Enumerations shared by stored and inbound item models."""

from enum import Enum


class ItemState(str, Enum):
    """Lifecycle state of an observed item.

    An item that was not observed in a cycle has no state at all; it is
    never represented by a member of this enum.
    """

    CHECKED_OUT = "checked_out"
    HOLD_WAITING = "hold_waiting"
    HOLD_TRANSIT = "hold_transit"
    HOLD_READY = "hold_ready"
    HOLD_PAUSED = "hold_paused"


class ItemKind(str, Enum):
    """Which account list the item was observed on."""

    CHECKOUT = "checkout"
    HOLD = "hold"


class TransitionKind(str, Enum):
    """Kind of change detected between two adjacent cycles.

    - APPEARED: Present now, absent in the previous cycle
    - DISAPPEARED: Present in the previous cycle, absent now
    - STATE_CHANGE: Present in both with a different state
    """

    APPEARED = "appeared"
    DISAPPEARED = "disappeared"
    STATE_CHANGE = "state_change"
