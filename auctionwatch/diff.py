"""Classification of freshly fetched listings against stored state."""

from __future__ import annotations

from typing import Optional

from .models import Classification, Listing, ListingRecord, NewItem, PriceChanged, Unchanged


def classify(incoming: Listing, existing: Optional[ListingRecord]) -> Classification:
    """Decide whether ``incoming`` is new, re-priced, or already known.

    A non-positive incoming price is treated as missing data and never
    reported as a change.
    """
    if existing is None:
        return NewItem()
    if incoming.price > 0 and incoming.price != existing.price:
        return PriceChanged(old_price=existing.price, new_price=incoming.price)
    return Unchanged()
