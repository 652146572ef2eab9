"""Deterministic item identity.

The fingerprint only covers title, author and patron. Two physical copies of
the same title by the same author, borrowed or held by the same patron, get
the same item_id and are tracked as one item. Changing the scheme would
re-key every stored snapshot, so the collision is kept and documented.
"""

import hashlib


ITEM_ID_LENGTH = 11


def compute_item_id(
    title: str | None,
    author: str | None,
    patron_name: str | None,
) -> str:
    """Compute the item fingerprint used across scrape cycles.

    Args:
        title: Item title.
        author: Item author (None is treated as empty).
        patron_name: Patron the item belongs to.

    Returns:
        First 11 hex characters of the MD5 of "title-author-patron", lower-cased.
    """
    text = f"{title or ''}-{author or ''}-{patron_name or ''}".lower()
    return hashlib.md5(text.encode("utf-8")).hexdigest()[:ITEM_ID_LENGTH]  # noqa: S324
