"""Auction Watch package initialization."""

from .db import Database
from .diff import classify
from .keywords import build_search_text, filter_listings, matches, validate_keywords
from .models import (
    Listing,
    ListingRecord,
    MonitorConfig,
    NewItem,
    NotificationSubscription,
    PreviewResult,
    PriceChanged,
    PriceHistoryEntry,
    RunSummary,
    Unchanged,
)
from .notifications import NotificationDispatcher, TelegramChannel
from .runner import MonitorRunner
from .scheduler import MonitorScheduler
from .source import SuperbidClient

__all__ = [
    "Database",
    "Listing",
    "ListingRecord",
    "MonitorConfig",
    "MonitorRunner",
    "MonitorScheduler",
    "NewItem",
    "NotificationDispatcher",
    "NotificationSubscription",
    "PreviewResult",
    "PriceChanged",
    "PriceHistoryEntry",
    "RunSummary",
    "SuperbidClient",
    "TelegramChannel",
    "Unchanged",
    "build_search_text",
    "classify",
    "filter_listings",
    "matches",
    "validate_keywords",
]
