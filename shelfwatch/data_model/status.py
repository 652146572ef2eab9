"""Normalization of provider hold status text into lifecycle states."""

from shelfwatch.data_model.enums import ItemState


READY_STATUSES = frozenset({"ready", "available"})
PAUSED_STATUSES = frozenset({"paused"})
TRANSIT_MARKERS = ("transit", "shipping")


def normalize_hold_status(status: str | None) -> ItemState:
    """Map a hold's status text to a lifecycle state.

    Matching is case-insensitive on the trimmed text. "ready"/"available"
    and "paused" must match exactly, so "Not ready" stays a waiting hold;
    "transit" and "shipping" match anywhere in the text.

    Args:
        status: Status text as rendered by the library site, or None.

    Returns:
        The derived hold state; unknown or missing text is HOLD_WAITING.

    Examples:
        >>> normalize_hold_status("  Ready ")
        <ItemState.HOLD_READY: 'hold_ready'>
        >>> normalize_hold_status("In transit to branch")
        <ItemState.HOLD_TRANSIT: 'hold_transit'>
        >>> normalize_hold_status("#3 on 5 copies")
        <ItemState.HOLD_WAITING: 'hold_waiting'>
    """
    normalized = (status or "").strip().lower()

    if normalized in READY_STATUSES:
        return ItemState.HOLD_READY
    if normalized in PAUSED_STATUSES:
        return ItemState.HOLD_PAUSED
    if any(marker in normalized for marker in TRANSIT_MARKERS):
        return ItemState.HOLD_TRANSIT
    return ItemState.HOLD_WAITING
