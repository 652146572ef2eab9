"""Factories for scraper records used across tests."""

from shelfwatch.data_model.items import CheckoutRecord, HoldRecord


def checkout(
    item_id: str,
    patron: str = "Alice",
    title: str | None = None,
    due_date: str | None = None,
    item_format: str = "Book",
) -> CheckoutRecord:
    """Build a checkout record."""
    return CheckoutRecord(
        item_id=item_id,
        patron_name=patron,
        title=title or f"Title {item_id}",
        due_date=due_date,
        format=item_format,
    )


def hold(
    item_id: str,
    status: str | None = None,
    patron: str = "Alice",
    title: str | None = None,
    item_format: str = "Book",
) -> HoldRecord:
    """Build a hold record."""
    return HoldRecord(
        item_id=item_id,
        patron_name=patron,
        title=title or f"Title {item_id}",
        status=status,
        format=item_format,
    )
