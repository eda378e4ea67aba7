"""SQLite-backed persistence helpers."""

from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from openpyxl import Workbook

from .keywords import validate_keywords
from .models import ListingRecord, MonitorConfig, NotificationSubscription, PriceHistoryEntry

logger = logging.getLogger(__name__)

SQLITE_PREFIX = "sqlite://"

LISTING_COLUMNS = (
    "id",
    "offer_id",
    "title",
    "description",
    "price",
    "url",
    "monitor_id",
    "image_url",
    "lot_number",
    "end_date",
    "visits",
    "category",
    "sub_category",
    "location",
    "seller",
    "auction_name",
    "auctioneer",
    "archived",
    "created_at",
    "updated_at",
)

EXPORT_COLUMNS = (
    "offer_id",
    "title",
    "price",
    "lot_number",
    "category",
    "sub_category",
    "location",
    "seller",
    "auction_name",
    "end_date",
    "visits",
    "url",
    "monitor_id",
    "created_at",
    "updated_at",
)


def resolve_sqlite_path(database_url: str) -> Path:
    """Translate a DATABASE_URL into a filesystem path."""
    if not database_url:
        raise ValueError("DATABASE_URL must not be empty")

    if database_url.startswith(SQLITE_PREFIX):
        raw_path = database_url[len(SQLITE_PREFIX) :]
        # Allow sqlite:///path/to/file and sqlite://path/to/file styles.
        if raw_path.startswith("/"):
            raw_path = raw_path[1:]
        path = Path(raw_path)
    else:
        path = Path(database_url)

    if not path.is_absolute():
        path = Path.cwd() / path

    return path.expanduser().resolve()


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


@dataclass
class Database:
    """Thin wrapper around sqlite3 for monitors, listings and run history.

    Every call opens its own connection, so methods may be invoked from
    worker threads concurrently.
    """

    path: Path

    def connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path, timeout=30)

    def initialize(self) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS monitor_configs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    keywords TEXT NOT NULL DEFAULT '[]',
                    keyword_mode TEXT NOT NULL DEFAULT 'OR',
                    interval_minutes INTEGER NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS listings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    offer_id TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    price REAL NOT NULL,
                    url TEXT NOT NULL,
                    monitor_id INTEGER NOT NULL,
                    image_url TEXT,
                    lot_number INTEGER,
                    end_date TEXT,
                    visits INTEGER,
                    category TEXT,
                    sub_category TEXT,
                    location TEXT,
                    seller TEXT,
                    auction_name TEXT,
                    auctioneer TEXT,
                    archived INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(monitor_id) REFERENCES monitor_configs(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS price_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    listing_id INTEGER NOT NULL,
                    old_price REAL NOT NULL,
                    new_price REAL NOT NULL,
                    changed_at TEXT NOT NULL,
                    FOREIGN KEY(listing_id) REFERENCES listings(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notification_subscription (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    bot_token TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    notify_new_items INTEGER NOT NULL DEFAULT 1,
                    notify_price_changes INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    monitor_id INTEGER,
                    executed_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    notes TEXT
                )
                """
            )
            conn.commit()

    # Monitor configurations

    def save_monitor(self, config: MonitorConfig) -> int:
        """Insert a new monitor (id 0) or update an existing one."""
        problem = validate_keywords(config.keywords)
        if problem:
            raise ValueError(f"Invalid keywords for monitor {config.name!r}: {problem}")

        values = (
            config.name,
            config.url,
            json.dumps(list(config.keywords), ensure_ascii=False),
            config.keyword_mode,
            config.interval_minutes,
            int(config.active),
        )
        with self.connect() as conn:
            if config.id:
                cursor = conn.execute(
                    """
                    UPDATE monitor_configs
                    SET name = ?, url = ?, keywords = ?, keyword_mode = ?,
                        interval_minutes = ?, active = ?
                    WHERE id = ?
                    """,
                    values + (config.id,),
                )
                if cursor.rowcount == 0:
                    raise KeyError(f"Monitor {config.id} does not exist")
                monitor_id = config.id
            else:
                cursor = conn.execute(
                    """
                    INSERT INTO monitor_configs (name, url, keywords, keyword_mode, interval_minutes, active)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                monitor_id = int(cursor.lastrowid)
            conn.commit()
        return monitor_id

    def set_monitor_active(self, monitor_id: int, active: bool) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "UPDATE monitor_configs SET active = ? WHERE id = ?",
                (int(active), monitor_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def delete_monitor(self, monitor_id: int) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM monitor_configs WHERE id = ?", (monitor_id,)
            )
            conn.commit()
            return cursor.rowcount > 0

    def get_monitor(self, monitor_id: int) -> Optional[MonitorConfig]:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT id, name, url, keywords, keyword_mode, interval_minutes, active
                FROM monitor_configs WHERE id = ?
                """,
                (monitor_id,),
            ).fetchone()
        return _load_monitor(row) if row else None

    def list_monitors(self, active_only: bool = False) -> List[MonitorConfig]:
        """Return stored monitors by id; rows that fail validation are skipped."""
        query = """
            SELECT id, name, url, keywords, keyword_mode, interval_minutes, active
            FROM monitor_configs
        """
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY id"

        with self.connect() as conn:
            rows = conn.execute(query).fetchall()
        configs = (_load_monitor(row) for row in rows)
        return [config for config in configs if config is not None]

    def list_active_monitors(self) -> List[MonitorConfig]:
        return self.list_monitors(active_only=True)

    # Listings

    def find_listing_by_offer_id(self, offer_id: str) -> Optional[ListingRecord]:
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT {', '.join(LISTING_COLUMNS)} FROM listings WHERE offer_id = ?",
                (offer_id,),
            ).fetchone()
        return _row_to_listing(row) if row else None

    def create_listing(self, record: ListingRecord) -> int:
        """Persist a newly observed listing and return its id."""
        timestamp = _now()
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO listings (
                    offer_id, title, description, price, url, monitor_id, image_url,
                    lot_number, end_date, visits, category, sub_category, location,
                    seller, auction_name, auctioneer, archived, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.offer_id,
                    record.title,
                    record.description,
                    record.price,
                    record.url,
                    record.monitor_id,
                    record.image_url,
                    record.lot_number,
                    record.end_date,
                    record.visits,
                    record.category,
                    record.sub_category,
                    record.location,
                    record.seller,
                    record.auction_name,
                    record.auctioneer,
                    int(record.archived),
                    record.created_at or timestamp,
                    record.updated_at or timestamp,
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def apply_price_change(
        self,
        listing_id: int,
        old_price: float,
        new_price: float,
    ) -> Optional[int]:
        """Store the new price and its history entry in one transaction.

        Returns the history entry id, or ``None`` when the listing is gone.
        """
        changed_at = _now()
        with self.connect() as conn:
            cursor = conn.execute(
                "UPDATE listings SET price = ?, updated_at = ? WHERE id = ?",
                (new_price, changed_at, listing_id),
            )
            if cursor.rowcount == 0:
                return None
            cursor = conn.execute(
                """
                INSERT INTO price_history (listing_id, old_price, new_price, changed_at)
                VALUES (?, ?, ?, ?)
                """,
                (listing_id, old_price, new_price, changed_at),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def get_listing(self, listing_id: int) -> Optional[ListingRecord]:
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT {', '.join(LISTING_COLUMNS)} FROM listings WHERE id = ?",
                (listing_id,),
            ).fetchone()
        return _row_to_listing(row) if row else None

    def archive_listing(self, listing_id: int, archived: bool = True) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "UPDATE listings SET archived = ?, updated_at = ? WHERE id = ?",
                (int(archived), _now(), listing_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def fetch_listings(self, archived: bool = False) -> List[ListingRecord]:
        """Return listings with the given archive flag, most recently updated first."""
        with self.connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {', '.join(LISTING_COLUMNS)} FROM listings
                WHERE archived = ?
                ORDER BY updated_at DESC, id DESC
                """,
                (int(archived),),
            )
            return [_row_to_listing(row) for row in cursor.fetchall()]

    # Price history

    def price_history(self, listing_id: int) -> List[PriceHistoryEntry]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, listing_id, old_price, new_price, changed_at
                FROM price_history WHERE listing_id = ?
                ORDER BY id DESC
                """,
                (listing_id,),
            )
            return [
                PriceHistoryEntry(
                    id=row[0],
                    listing_id=row[1],
                    old_price=row[2],
                    new_price=row[3],
                    changed_at=row[4],
                )
                for row in cursor.fetchall()
            ]

    # Notification subscription

    def get_subscription(self) -> Optional[NotificationSubscription]:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT bot_token, chat_id, notify_new_items, notify_price_changes
                FROM notification_subscription WHERE id = 1
                """
            ).fetchone()
        if not row:
            return None
        return NotificationSubscription(
            bot_token=row[0],
            chat_id=row[1],
            notify_new_items=bool(row[2]),
            notify_price_changes=bool(row[3]),
        )

    def save_subscription(self, subscription: NotificationSubscription) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO notification_subscription (id, bot_token, chat_id, notify_new_items, notify_price_changes)
                VALUES (1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    bot_token=excluded.bot_token,
                    chat_id=excluded.chat_id,
                    notify_new_items=excluded.notify_new_items,
                    notify_price_changes=excluded.notify_price_changes
                """,
                (
                    subscription.bot_token,
                    subscription.chat_id,
                    int(subscription.notify_new_items),
                    int(subscription.notify_price_changes),
                ),
            )
            conn.commit()

    # Run log

    def add_run(
        self,
        executed_at: str,
        status: str,
        notes: str | None,
        monitor_id: int | None = None,
    ) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO runs (monitor_id, executed_at, status, notes) VALUES (?, ?, ?, ?)",
                (monitor_id, executed_at, status, notes),
            )
            conn.commit()

    def recent_runs(
        self, limit: int = 10
    ) -> Iterable[Tuple[Optional[int], str, str, str | None]]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT monitor_id, executed_at, status, notes
                FROM runs ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            yield from cursor.fetchall()

    def export_listings_to_xlsx(self, path: Path, archived: bool = False) -> None:
        """Write the tracked listings to a spreadsheet."""
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = "archived" if archived else "listings"
        worksheet.append(list(EXPORT_COLUMNS))
        for record in self.fetch_listings(archived=archived):
            worksheet.append([getattr(record, column) for column in EXPORT_COLUMNS])

        path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(path)


def _row_to_monitor(row: tuple) -> MonitorConfig:
    return MonitorConfig(
        id=row[0],
        name=row[1],
        url=row[2],
        keywords=json.loads(row[3] or "[]"),
        keyword_mode=row[4],
        interval_minutes=int(row[5]),
        active=bool(row[6]),
    )


def _load_monitor(row: tuple) -> Optional[MonitorConfig]:
    try:
        return _row_to_monitor(row)
    except (TypeError, ValueError) as exc:
        logger.warning("Skipping invalid monitor %s: %s", row[0], exc)
        return None


def _row_to_listing(row: tuple) -> ListingRecord:
    values = dict(zip(LISTING_COLUMNS, row))
    values["archived"] = bool(values["archived"])
    return ListingRecord(**values)
