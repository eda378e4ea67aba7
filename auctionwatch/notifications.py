"""Notification helpers for delivering listing events to Telegram."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

import requests

from .models import ListingRecord, NotificationSubscription

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
CURRENCY = "R$"
SEND_WORKERS = 4
# Characters that must be backslash-escaped in Telegram MarkdownV2 text.
MARKDOWN_V2_SPECIAL = set("\\_*[]()~`>#+-=|{}.!")


class Channel(Protocol):
    """Protocol defining the outbound channel contract."""

    def send(self, destination: str, text: str) -> bool:
        ...


class SubscriptionStore(Protocol):

    def get_subscription(self) -> Optional[NotificationSubscription]:
        ...


@dataclass
class TelegramChannel:
    """Send messages through the Telegram Bot API."""

    bot_token: str
    timeout: int = 10
    parse_mode: str = "MarkdownV2"

    def send(self, destination: str, text: str) -> bool:
        response = requests.post(
            f"{TELEGRAM_API_BASE}/bot{self.bot_token}/sendMessage",
            json={
                "chat_id": destination,
                "text": text,
                "parse_mode": self.parse_mode,
                "disable_web_page_preview": False,
            },
            timeout=self.timeout,
        )
        payload = response.json()
        if not payload.get("ok"):
            logger.warning("Telegram rejected message: %s",
                           payload.get("description"))
            return False
        return True

    @classmethod
    def from_subscription(cls, subscription: NotificationSubscription) -> "TelegramChannel":
        return cls(bot_token=subscription.bot_token)


@dataclass
class NotificationDispatcher:
    """Renders listing events and hands them to the subscriber's channel.

    Sending is fire-and-forget: a missing subscription or disabled toggle is
    a silent no-op and delivery errors are logged, never raised. Sends run
    on the dispatcher's own threads, apart from offer fetches.
    """

    store: SubscriptionStore
    channel_factory: Callable[[NotificationSubscription], Channel] = field(
        default=TelegramChannel.from_subscription
    )
    executor: ThreadPoolExecutor = field(
        default_factory=lambda: ThreadPoolExecutor(
            max_workers=SEND_WORKERS, thread_name_prefix="auctionwatch-notify"
        ),
        repr=False,
    )

    async def notify_new_item(self, record: ListingRecord) -> bool:
        subscription = await self._subscription()
        if subscription is None or not subscription.notify_new_items:
            return False
        return await self._deliver(subscription, format_new_item(record))

    async def notify_price_change(
        self,
        record: ListingRecord,
        old_price: float,
        new_price: float,
    ) -> bool:
        subscription = await self._subscription()
        if subscription is None or not subscription.notify_price_changes:
            return False
        message = format_price_change(record, old_price, new_price)
        return await self._deliver(subscription, message)

    async def _subscription(self) -> Optional[NotificationSubscription]:
        try:
            return await self._in_executor(self.store.get_subscription)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to load notification subscription")
            return None

    async def _deliver(self, subscription: NotificationSubscription, text: str) -> bool:
        try:
            channel = self.channel_factory(subscription)
            delivered = await self._in_executor(channel.send, subscription.chat_id, text)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to deliver notification to %s", subscription.chat_id)
            return False
        if delivered:
            logger.info("Notification delivered to %s", subscription.chat_id)
        return bool(delivered)

    async def _in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    def close(self) -> None:
        self.executor.shutdown(wait=False)


def escape_markdown(text: str) -> str:
    """Escape user-supplied text for Telegram MarkdownV2."""
    return "".join(f"\\{char}" if char in MARKDOWN_V2_SPECIAL else char for char in text)


def format_price(value: float) -> str:
    return f"{CURRENCY} {value:,.2f}"


def format_new_item(record: ListingRecord) -> str:
    """Render the message for a newly discovered listing."""
    lines = [
        f"🆕 {_bold('NEW ITEM FOUND')}",
        "",
        _bold(record.title),
        "",
        escape_markdown(f"💰 Price: {format_price(record.price)}"),
    ]
    if record.lot_number is not None:
        lines.append(escape_markdown(f"🎯 Lot: {record.lot_number}"))
    if record.category:
        category = record.category
        if record.sub_category:
            category = f"{category} > {record.sub_category}"
        lines.append(escape_markdown(f"🏷️ {category}"))
    if record.location:
        lines.append(escape_markdown(f"📍 {record.location}"))
    if record.seller:
        lines.append(escape_markdown(f"🏢 {record.seller}"))
    if record.auction_name:
        lines.append(escape_markdown(f"📋 Auction: {record.auction_name}"))
    if record.end_date:
        lines.append(escape_markdown(f"⏰ Ends: {record.end_date}"))
    if record.visits is not None:
        lines.append(escape_markdown(f"👁️ Visits: {record.visits}"))
    lines.extend(["", _link(record.url)])
    return "\n".join(lines)


def format_price_change(record: ListingRecord, old_price: float, new_price: float) -> str:
    """Render the message for a listing whose price moved."""
    delta = new_price - old_price
    marker = "📈" if delta > 0 else "📉"
    variation = f"📊 Change: {format_price(delta)}"
    if old_price > 0:
        variation += f" ({delta / old_price * 100:.1f}%)"

    lines: List[str] = [
        f"{marker} {_bold('PRICE CHANGE')}",
        "",
        _bold(record.title),
        "",
        escape_markdown(f"💰 From: {format_price(old_price)}"),
        escape_markdown(f"💰 To: {format_price(new_price)}"),
        escape_markdown(variation),
    ]
    if record.lot_number is not None:
        lines.append(escape_markdown(f"🎯 Lot: {record.lot_number}"))
    lines.extend(["", _link(record.url)])
    return "\n".join(lines)


def _bold(text: str) -> str:
    return f"*{escape_markdown(text)}*"


def _link(url: str) -> str:
    return escape_markdown(f"🔗 {url}")


__all__ = [
    "Channel",
    "NotificationDispatcher",
    "TelegramChannel",
    "escape_markdown",
    "format_new_item",
    "format_price_change",
]
