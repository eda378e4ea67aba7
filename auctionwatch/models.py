"""Core data models for Auction Watch."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

KEYWORD_MODES = ("AND", "OR")


@dataclass(frozen=True)
class MonitorConfig:
    """A saved description of what to poll, how often, and how to filter it."""

    name: str
    url: str
    keywords: Sequence[str] = ()
    keyword_mode: str = "OR"
    interval_minutes: int = 5
    active: bool = True
    id: int = 0

    def __post_init__(self) -> None:
        if self.interval_minutes < 1:
            raise ValueError(
                f"interval_minutes must be at least 1 (got {self.interval_minutes})"
            )
        mode = (self.keyword_mode or "").strip().upper()
        if mode not in KEYWORD_MODES:
            raise ValueError(f"Unknown keyword mode: {self.keyword_mode!r}")
        object.__setattr__(self, "keyword_mode", mode)
        object.__setattr__(self, "keywords", tuple(self.keywords))


@dataclass(frozen=True)
class Listing:
    """Represents an offer as returned by the listing source."""

    offer_id: str
    title: str
    url: str
    price: float = 0.0
    description: str = ""
    offer_description: str = ""
    image_url: Optional[str] = None
    lot_number: Optional[int] = None
    end_date: Optional[str] = None
    visits: Optional[int] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    location: Optional[str] = None
    seller: Optional[str] = None
    auction_name: Optional[str] = None
    auctioneer: Optional[str] = None


@dataclass
class ListingRecord:
    """Represents a persisted listing from the database."""

    offer_id: str
    title: str
    description: str
    price: float
    url: str
    monitor_id: int
    image_url: Optional[str] = None
    lot_number: Optional[int] = None
    end_date: Optional[str] = None
    visits: Optional[int] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    location: Optional[str] = None
    seller: Optional[str] = None
    auction_name: Optional[str] = None
    auctioneer: Optional[str] = None
    archived: bool = False
    created_at: str = ""
    updated_at: str = ""
    id: int = 0


@dataclass(frozen=True)
class PriceHistoryEntry:
    """One observed price change of a listing."""

    listing_id: int
    old_price: float
    new_price: float
    changed_at: str = ""
    id: int = 0


@dataclass(frozen=True)
class NotificationSubscription:
    """Telegram credentials plus the per-event toggles."""

    bot_token: str
    chat_id: str
    notify_new_items: bool = True
    notify_price_changes: bool = True


@dataclass(frozen=True)
class NewItem:
    """Offer id not seen before."""


@dataclass(frozen=True)
class PriceChanged:
    """Known offer whose price moved."""

    old_price: float
    new_price: float


@dataclass(frozen=True)
class Unchanged:
    """Known offer with nothing to report."""


Classification = Union[NewItem, PriceChanged, Unchanged]


@dataclass
class RunSummary:
    """Aggregated result returned by a monitoring cycle."""

    executed_at: str
    monitor_id: int
    monitor_name: str
    fetched: int = 0
    matched: int = 0
    new_items: List[ListingRecord] = field(default_factory=list)
    price_changes: List[Tuple[ListingRecord, float, float]] = field(
        default_factory=list
    )
    failed: int = 0
    status: str = "success"


@dataclass
class PreviewResult:
    """What a monitor would pick up right now, without persisting anything."""

    total_found: int
    matched: int
    listings: List[Listing]
