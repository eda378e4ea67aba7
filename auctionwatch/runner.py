"""Core execution workflow for a single monitor cycle."""

from __future__ import annotations

import asyncio
import datetime as dt
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from .db import Database
from .diff import classify
from .keywords import filter_listings
from .models import (
    Listing,
    ListingRecord,
    MonitorConfig,
    NewItem,
    PreviewResult,
    PriceChanged,
    RunSummary,
)
from .notifications import NotificationDispatcher
from .source import SuperbidClient

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 20
STORAGE_WORKERS = 4


def _storage_pool() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(
        max_workers=STORAGE_WORKERS, thread_name_prefix="auctionwatch-storage"
    )


@dataclass
class MonitorRunner:
    """Coordinates fetch, filter, classify, persist and notify steps.

    Each monitor fetches on its own single-thread executor, so a source that
    never answers holds up only that monitor. SQLite work shares a separate
    storage pool that fetches can never occupy.
    """

    database: Database
    dispatcher: NotificationDispatcher
    source: Callable[[str], List[Listing]] = field(
        default_factory=lambda: SuperbidClient().fetch
    )
    storage_executor: ThreadPoolExecutor = field(default_factory=_storage_pool, repr=False)
    _fetch_executors: Dict[int, ThreadPoolExecutor] = field(
        default_factory=dict, init=False, repr=False
    )

    async def run(self, config: MonitorConfig) -> RunSummary:
        """Execute one monitoring cycle; errors are logged, never raised."""
        executed_at = dt.datetime.now(dt.timezone.utc).isoformat()
        summary = RunSummary(
            executed_at=executed_at,
            monitor_id=config.id,
            monitor_name=config.name,
        )
        logger.info("Starting cycle for monitor %s (%s)", config.name, config.url)

        try:
            listings = await self._fetch(config)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Fetch failed for monitor %s", config.name)
            summary.status = "error"
            await self._record_run(summary, f"fetch_failed: {exc}")
            return summary

        matched = filter_listings(listings, config.keywords, config.keyword_mode)
        summary.fetched = len(listings)
        summary.matched = len(matched)
        logger.info(
            "Monitor %s: %d of %d offers passed the keyword filter",
            config.name,
            len(matched),
            len(listings),
        )

        for listing in matched:
            try:
                await self._process_listing(config, listing, summary)
            except Exception:  # noqa: BLE001
                summary.failed += 1
                logger.exception(
                    "Storage failure for offer %s in monitor %s; skipping",
                    listing.offer_id,
                    config.name,
                )

        await self._record_run(summary, _format_note(summary))
        return summary

    async def preview(self, config: MonitorConfig, limit: int = PREVIEW_LIMIT) -> PreviewResult:
        """Show what the monitor would match right now without side effects."""
        listings = await self._fetch(config)
        matched = filter_listings(listings, config.keywords, config.keyword_mode)
        return PreviewResult(
            total_found=len(listings),
            matched=len(matched),
            listings=matched[:limit],
        )

    def close(self) -> None:
        """Release worker threads; fetches still in flight are abandoned."""
        for executor in self._fetch_executors.values():
            executor.shutdown(wait=False, cancel_futures=True)
        self._fetch_executors.clear()
        self.storage_executor.shutdown(wait=False)
        self.dispatcher.close()

    async def _fetch(self, config: MonitorConfig) -> List[Listing]:
        executor = self._fetch_executors.get(config.id)
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"auctionwatch-fetch-{config.id}"
            )
            self._fetch_executors[config.id] = executor
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, self.source, config.url)

    async def _storage(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.storage_executor, functools.partial(func, *args, **kwargs)
        )

    async def _process_listing(
        self,
        config: MonitorConfig,
        listing: Listing,
        summary: RunSummary,
    ) -> None:
        # Re-read per item: another monitor may have stored this offer meanwhile.
        existing = await self._storage(self.database.find_listing_by_offer_id, listing.offer_id)
        outcome = classify(listing, existing)

        if isinstance(outcome, NewItem):
            record = _build_record(listing, config.id)
            record.id = await self._storage(self.database.create_listing, record)
            summary.new_items.append(record)
            logger.info("New item %s: %s (id %d)", listing.offer_id, record.title, record.id)
            await self.dispatcher.notify_new_item(record)

        elif isinstance(outcome, PriceChanged):
            await self._storage(
                self.database.apply_price_change,
                existing.id,
                outcome.old_price,
                outcome.new_price,
            )
            existing.price = outcome.new_price
            summary.price_changes.append((existing, outcome.old_price, outcome.new_price))
            logger.info(
                "Price change for %s: %.2f -> %.2f",
                existing.title,
                outcome.old_price,
                outcome.new_price,
            )
            await self.dispatcher.notify_price_change(
                existing, outcome.old_price, outcome.new_price
            )

    async def _record_run(self, summary: RunSummary, note: str) -> None:
        try:
            await self._storage(
                self.database.add_run,
                executed_at=summary.executed_at,
                status=summary.status,
                notes=note,
                monitor_id=summary.monitor_id,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record run for monitor %s", summary.monitor_name)


def _build_record(listing: Listing, monitor_id: int) -> ListingRecord:
    return ListingRecord(
        offer_id=listing.offer_id,
        title=listing.title,
        description=listing.offer_description or listing.description,
        price=listing.price,
        url=listing.url,
        monitor_id=monitor_id,
        image_url=listing.image_url,
        lot_number=listing.lot_number,
        end_date=listing.end_date,
        visits=listing.visits,
        category=listing.category,
        sub_category=listing.sub_category,
        location=listing.location,
        seller=listing.seller,
        auction_name=listing.auction_name,
        auctioneer=listing.auctioneer,
    )


def _format_note(summary: RunSummary) -> str:
    """Render a concise run note summarizing the cycle outcome."""
    return (
        f"offers(fetched={summary.fetched} / matched={summary.matched}) "
        f"new(+{len(summary.new_items)}) "
        f"price_changes({len(summary.price_changes)}) "
        f"failed({summary.failed})"
    )
