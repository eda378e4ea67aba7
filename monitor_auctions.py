"""CLI entrypoint for the Auction Watch agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

from auctionwatch.db import Database, resolve_sqlite_path
from auctionwatch.models import MonitorConfig, NotificationSubscription
from auctionwatch.notifications import NotificationDispatcher
from auctionwatch.runner import MonitorRunner
from auctionwatch.scheduler import RECONCILE_INTERVAL_SECONDS, MonitorScheduler
from auctionwatch.source import SuperbidClient

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _optional_float(value: str | None) -> float | None:
    return float(value) if value else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Auction Watch monitoring agent")
    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--init", action="store_true", help="initialize storage and exit")
    actions.add_argument("--serve", action="store_true", help="run the scheduler until interrupted")
    actions.add_argument("--run-now", type=int, metavar="ID", help="execute one cycle for a monitor")
    actions.add_argument(
        "--preview",
        type=int,
        metavar="ID",
        help="show what a monitor would match without persisting anything",
    )
    actions.add_argument("--add-monitor", action="store_true", help="create a monitor")
    actions.add_argument(
        "--edit-monitor",
        type=int,
        metavar="ID",
        help="change the given monitor options of an existing monitor",
    )
    actions.add_argument("--activate", type=int, metavar="ID", help="re-activate a monitor")
    actions.add_argument("--deactivate", type=int, metavar="ID", help="deactivate a monitor")
    actions.add_argument("--delete-monitor", type=int, metavar="ID", help="delete a monitor")
    actions.add_argument("--list", action="store_true", help="list configured monitors")
    actions.add_argument("--listings", action="store_true", help="list tracked listings")
    actions.add_argument("--archive", type=int, metavar="ID", help="archive a tracked listing")
    actions.add_argument("--unarchive", type=int, metavar="ID", help="restore an archived listing")
    actions.add_argument("--history", type=int, metavar="ID", help="show price history of a listing")
    actions.add_argument(
        "--set-telegram",
        action="store_true",
        help="store Telegram credentials for notifications",
    )
    actions.add_argument("--export", type=Path, metavar="PATH", help="export tracked listings to xlsx")

    monitor = parser.add_argument_group("monitor options")
    monitor.add_argument("--name")
    monitor.add_argument("--url")
    monitor.add_argument(
        "--keyword",
        action="append",
        default=[],
        help="keyword line; 'a+b' requires both, 'a~b' either (repeatable)",
    )
    monitor.add_argument(
        "--clear-keywords",
        action="store_true",
        help="with --edit-monitor, drop all keyword lines",
    )
    monitor.add_argument(
        "--mode", choices=["AND", "OR"], help="how keyword lines combine (default OR)"
    )
    monitor.add_argument("--interval", type=int, help="poll interval in minutes (default 5)")

    listings = parser.add_argument_group("listing options")
    listings.add_argument(
        "--archived",
        action="store_true",
        help="with --listings or --export, use archived listings",
    )

    telegram = parser.add_argument_group("telegram options")
    telegram.add_argument("--bot-token", default=os.getenv("TELEGRAM_BOT_TOKEN"))
    telegram.add_argument("--chat-id", default=os.getenv("TELEGRAM_CHAT_ID"))
    telegram.add_argument("--no-new-items", action="store_true", help="mute new item alerts")
    telegram.add_argument("--no-price-changes", action="store_true", help="mute price change alerts")

    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL", "sqlite:///auction_monitor.db"),
        help="database location (overrides DATABASE_URL env var)",
    )
    parser.add_argument(
        "--reconcile-interval",
        type=float,
        default=float(os.getenv("RECONCILE_INTERVAL", RECONCILE_INTERVAL_SECONDS)),
        help="seconds between reconciliation passes",
    )
    parser.add_argument(
        "--fetch-timeout",
        type=float,
        default=_optional_float(os.getenv("FETCH_TIMEOUT")),
        help="HTTP timeout for offer fetches (default: transport default)",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def _monitor_options(args: argparse.Namespace) -> dict:
    """Collect only the monitor options given on the command line."""
    options = {}
    if args.name:
        options["name"] = args.name
    if args.url:
        options["url"] = args.url
    if args.keyword or args.clear_keywords:
        options["keywords"] = args.keyword
    if args.mode:
        options["keyword_mode"] = args.mode
    if args.interval is not None:
        options["interval_minutes"] = args.interval
    return options


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    database = Database(path=resolve_sqlite_path(args.database_url))
    database.initialize()
    if args.init:
        logger.info("Initialized database at %s", database.path)
        return 0

    client = SuperbidClient(timeout=args.fetch_timeout)
    runner = MonitorRunner(
        database=database,
        dispatcher=NotificationDispatcher(store=database),
        source=client.fetch,
    )
    try:
        return _dispatch(parser, args, database, runner)
    finally:
        runner.close()
        client.close()


def _dispatch(
    parser: argparse.ArgumentParser,
    args: argparse.Namespace,
    database: Database,
    runner: MonitorRunner,
) -> int:
    scheduler = MonitorScheduler(
        store=database,
        runner=runner,
        reconcile_interval=args.reconcile_interval,
    )

    if args.serve:
        try:
            asyncio.run(scheduler.serve())
        except KeyboardInterrupt:
            logger.info("Interrupted; scheduler stopped")
        return 0

    if args.run_now is not None:
        summary = asyncio.run(scheduler.run_now(args.run_now))
        if summary is None:
            logger.error("Monitor %d not found", args.run_now)
            return 1
        logger.info(
            "Monitor %s: %d new item(s), %d price change(s), %d failure(s)",
            summary.monitor_name,
            len(summary.new_items),
            len(summary.price_changes),
            summary.failed,
        )
        return 0

    if args.preview is not None:
        config = database.get_monitor(args.preview)
        if config is None:
            logger.error("Monitor %d not found", args.preview)
            return 1
        result = asyncio.run(runner.preview(config))
        logger.info(
            "Found %d matching offers out of %d (showing up to %d)",
            result.matched,
            result.total_found,
            len(result.listings),
        )
        for listing in result.listings:
            logger.info("%s | %s | %.2f | %s", listing.offer_id, listing.title, listing.price, listing.url)
        return 0

    if args.add_monitor:
        if not args.name or not args.url:
            parser.error("--add-monitor requires --name and --url")
        try:
            monitor_id = database.save_monitor(MonitorConfig(**_monitor_options(args)))
        except ValueError as exc:
            parser.error(str(exc))
        logger.info("Created monitor %d (%s)", monitor_id, args.name)
        return 0

    if args.edit_monitor is not None:
        config = database.get_monitor(args.edit_monitor)
        if config is None:
            logger.error("Monitor %d not found", args.edit_monitor)
            return 1
        options = _monitor_options(args)
        if not options:
            parser.error("--edit-monitor needs at least one monitor option to change")
        try:
            database.save_monitor(replace(config, **options))
        except ValueError as exc:
            parser.error(str(exc))
        logger.info("Updated monitor %d (%s)", config.id, ", ".join(sorted(options)))
        return 0

    if args.activate is not None or args.deactivate is not None:
        monitor_id = args.activate if args.activate is not None else args.deactivate
        active = args.activate is not None
        if not database.set_monitor_active(monitor_id, active):
            logger.error("Monitor %d not found", monitor_id)
            return 1
        logger.info("%s monitor %d", "Activated" if active else "Deactivated", monitor_id)
        return 0

    if args.delete_monitor is not None:
        if not database.delete_monitor(args.delete_monitor):
            logger.error("Monitor %d not found", args.delete_monitor)
            return 1
        logger.info("Deleted monitor %d", args.delete_monitor)
        return 0

    if args.list:
        for config in database.list_monitors():
            logger.info(
                "%d | %s | %s | every %d min | %s %s | %s",
                config.id,
                config.name,
                "active" if config.active else "inactive",
                config.interval_minutes,
                config.keyword_mode,
                list(config.keywords),
                config.url,
            )
        return 0

    if args.listings:
        records = database.fetch_listings(archived=args.archived)
        logger.info("%d %s listing(s)", len(records), "archived" if args.archived else "tracked")
        for record in records:
            logger.info(
                "%d | %s | %s | %.2f | monitor %d | %s",
                record.id,
                record.offer_id,
                record.title,
                record.price,
                record.monitor_id,
                record.url,
            )
        return 0

    if args.archive is not None or args.unarchive is not None:
        listing_id = args.archive if args.archive is not None else args.unarchive
        archived = args.archive is not None
        if not database.archive_listing(listing_id, archived):
            logger.error("Listing %d not found", listing_id)
            return 1
        logger.info("%s listing %d", "Archived" if archived else "Restored", listing_id)
        return 0

    if args.history is not None:
        record = database.get_listing(args.history)
        if record is None:
            logger.error("Listing %d not found", args.history)
            return 1
        history = database.price_history(record.id)
        logger.info("%d price change(s) for %s", len(history), record.title)
        for entry in history:
            logger.info("%s | %.2f -> %.2f", entry.changed_at, entry.old_price, entry.new_price)
        return 0

    if args.set_telegram:
        if not args.bot_token or not args.chat_id:
            parser.error("--set-telegram requires --bot-token and --chat-id")
        database.save_subscription(
            NotificationSubscription(
                bot_token=args.bot_token,
                chat_id=args.chat_id,
                notify_new_items=not args.no_new_items,
                notify_price_changes=not args.no_price_changes,
            )
        )
        logger.info("Saved Telegram subscription for chat %s", args.chat_id)
        return 0

    if args.export:
        database.export_listings_to_xlsx(args.export, archived=args.archived)
        view = "archived" if args.archived else "tracked"
        logger.info("Exported %s listings to %s", view, args.export)
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
