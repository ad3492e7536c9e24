"""SQLite delivery store for RSS Feed Mailer.

The store keeps one row per subscribed feed and one row per item that has
already been mailed. A synchronization run holds a single write
transaction (``BEGIN IMMEDIATE``) for its whole duration, so a second run
against the same file waits for the busy timeout and then fails with
``StoreTimeout`` instead of interleaving with the first.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from rssfeed_mailer.errors import (
    InvariantViolation,
    StoreAlreadyExists,
    StoreDecodeError,
    StoreError,
    StoreNotFound,
    StoreTimeout,
)
from rssfeed_mailer.models import DeliveredItem, Feed

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1.0

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feeds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT UNIQUE NOT NULL,
    link TEXT NOT NULL,
    last_build_date TEXT
);

CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    guid TEXT NOT NULL,
    published_at TEXT NOT NULL,
    UNIQUE(feed_id, guid)
);

CREATE INDEX IF NOT EXISTS idx_items_feed_id ON items(feed_id);
CREATE INDEX IF NOT EXISTS idx_items_published_at ON items(published_at);
"""


class Database:
    """SQLite database manager for feeds and delivered items."""

    def __init__(self, db_path: str, timeout: float = DEFAULT_TIMEOUT):
        self.db_path = db_path
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._in_transaction = False

    def connect(self) -> None:
        """Open the database connection.

        Transactions are managed explicitly, so the connection runs in
        autocommit mode and ``transaction()`` issues BEGIN/COMMIT itself.
        """
        self._conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    # --- Transactions ---

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Hold the single write lock for the duration of the block.

        Rows written before an exception are still committed, because each
        delivery record stands for a message that was already sent. Only a
        SQLite failure rolls the block back.

        Raises:
            StoreTimeout: If another writer holds the lock past the timeout.
        """
        if self._in_transaction:
            raise RuntimeError("A write transaction is already open")

        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise StoreTimeout(
                    f"Timed out waiting for database lock after {self.timeout}s "
                    f"(path: {self.db_path!r})"
                ) from e
            raise StoreError(
                f"Failed to begin transaction (path: {self.db_path!r}): {e}"
            ) from e

        self._in_transaction = True
        try:
            yield self
        except sqlite3.Error:
            # SQLite may already have rolled back on its own
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        except BaseException:
            if self.conn.in_transaction:
                self.conn.execute("COMMIT")
            raise
        else:
            self.conn.execute("COMMIT")
        finally:
            self._in_transaction = False

    # --- Feed operations ---

    def list_feeds(self) -> list[str]:
        """Return all feed URLs in the order they were added."""
        rows = self.conn.execute("SELECT url FROM feeds ORDER BY id").fetchall()
        return [r["url"] for r in rows]

    def get_feed(self, url: str) -> Feed | None:
        """Look up a feed by its URL."""
        row = self.conn.execute(
            "SELECT * FROM feeds WHERE url = ?", (url,)
        ).fetchone()
        return _row_to_feed(row) if row else None

    def add_feed(self, url: str) -> Feed:
        """Subscribe to a feed URL and return the stored feed.

        Raises:
            InvariantViolation: If the feed already exists.
        """
        with self.transaction():
            if self.get_feed(url) is not None:
                raise InvariantViolation(f"Feed already exists in database (feed: {url!r})")
            cursor = self.conn.execute(
                "INSERT INTO feeds (url, link) VALUES (?, ?)", (url, url)
            )
        logger.info("Added feed %s", url)
        return Feed(id=cursor.lastrowid, url=url, link=url)

    def remove_feed(self, url: str) -> None:
        """Delete a feed and its delivery records (cascade).

        Raises:
            InvariantViolation: If the feed does not exist.
        """
        with self.transaction():
            cursor = self.conn.execute("DELETE FROM feeds WHERE url = ?", (url,))
            if cursor.rowcount == 0:
                raise InvariantViolation(f"Feed does not exist in database (feed: {url!r})")
        logger.info("Removed feed %s", url)

    # --- Item operations ---

    def is_delivered(self, feed_url: str, guid: str) -> bool:
        """Check whether an item has already been mailed for a feed.

        The stored record is decoded, so a corrupt row fails loudly instead
        of being treated as new and mailed again.
        """
        feed_id = self._feed_id(feed_url)
        row = self.conn.execute(
            "SELECT published_at FROM items WHERE feed_id = ? AND guid = ?",
            (feed_id, guid),
        ).fetchone()
        if row is None:
            return False
        _decode_dt(row["published_at"], feed_url, guid)
        return True

    def mark_delivered(self, feed_url: str, guid: str, published_at: datetime) -> None:
        """Record that an item was mailed.

        Raises:
            InvariantViolation: If the feed does not exist or the item was
                already recorded.
        """
        feed_id = self._feed_id(feed_url)
        try:
            self.conn.execute(
                "INSERT INTO items (feed_id, guid, published_at) VALUES (?, ?, ?)",
                (feed_id, guid, _dt_to_str(published_at)),
            )
        except sqlite3.IntegrityError as e:
            raise InvariantViolation(
                f"Item already recorded (feed: {feed_url!r}, guid: {guid!r})"
            ) from e

    def get_delivered_items(self, feed_url: str) -> list[DeliveredItem]:
        """Return the delivery records of a feed, oldest first."""
        feed_id = self._feed_id(feed_url)
        rows = self.conn.execute(
            "SELECT * FROM items WHERE feed_id = ? ORDER BY id", (feed_id,)
        ).fetchall()
        return [_row_to_item(r, feed_url) for r in rows]

    def reap_items(
        self,
        cutoff: datetime,
        keep: set[tuple[str, str]] | None = None,
        feed_urls: list[str] | None = None,
    ) -> int:
        """Delete delivery records published before ``cutoff``.

        Records whose (feed URL, guid) pair is in ``keep`` survive regardless
        of age. When ``feed_urls`` is given only those feeds are swept.
        Returns the number of deleted records.
        """
        keep = keep or set()
        rows = self.conn.execute(
            """SELECT items.id, items.guid, items.published_at, feeds.url
               FROM items JOIN feeds ON items.feed_id = feeds.id"""
        ).fetchall()

        doomed = []
        for r in rows:
            if feed_urls is not None and r["url"] not in feed_urls:
                continue
            if (r["url"], r["guid"]) in keep:
                continue
            published_at = _decode_dt(r["published_at"], r["url"], r["guid"])
            if published_at < cutoff:
                logger.debug("Reap: %s (%s)", r["url"], r["guid"])
                doomed.append((r["id"],))

        self.conn.executemany("DELETE FROM items WHERE id = ?", doomed)
        return len(doomed)

    def _feed_id(self, feed_url: str) -> int:
        row = self.conn.execute(
            "SELECT id FROM feeds WHERE url = ?", (feed_url,)
        ).fetchone()
        if row is None:
            raise InvariantViolation(f"Feed does not exist in database (feed: {feed_url!r})")
        return row["id"]


def open_database(db_path: str, timeout: float = DEFAULT_TIMEOUT) -> Database:
    """Open an existing delivery store.

    Raises:
        StoreNotFound: If there is no database at ``db_path``.
        StoreDecodeError: If the file is not a delivery store.
    """
    if not os.path.exists(db_path):
        raise StoreNotFound(f"Database does not exist (path: {db_path!r})")

    db = Database(db_path, timeout)
    try:
        db.connect()
        row = db.conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'feeds'"
        ).fetchone()
    except sqlite3.DatabaseError as e:
        db.close()
        raise StoreDecodeError(f"Database is corrupt (path: {db_path!r}): {e}") from e
    if row is None:
        db.close()
        raise StoreDecodeError(f"Master feed table does not exist (path: {db_path!r})")
    return db


def create_database(db_path: str, timeout: float = DEFAULT_TIMEOUT) -> Database:
    """Create a new, empty delivery store.

    Raises:
        StoreAlreadyExists: If a file already exists at ``db_path``.
    """
    if os.path.exists(db_path):
        raise StoreAlreadyExists(f"Database already exists (path: {db_path!r})")

    db = Database(db_path, timeout)
    db.connect()
    try:
        db.conn.execute("PRAGMA journal_mode=WAL")
        db.conn.executescript(SCHEMA_SQL)
    except sqlite3.Error as e:
        db.close()
        raise StoreError(f"Failed to initialize database (path: {db_path!r}): {e}") from e
    logger.info("Created database %s", db_path)
    return db


# --- Helper functions ---


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to a UTC-aware datetime."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _decode_dt(s: str | None, feed_url: str, guid: str) -> datetime:
    try:
        dt = _str_to_dt(s)
    except (TypeError, ValueError) as e:
        raise StoreDecodeError(
            f"Could not decode database feed item (feed: {feed_url!r}, guid: {guid!r}): {e}"
        ) from e
    if dt is None:
        raise StoreDecodeError(
            f"Database feed item has no publish date (feed: {feed_url!r}, guid: {guid!r})"
        )
    return dt


def _row_to_feed(row: sqlite3.Row) -> Feed:
    """Convert a database row to a Feed dataclass."""
    return Feed(
        id=row["id"],
        url=row["url"],
        link=row["link"],
        last_build_date=_str_to_dt(row["last_build_date"]),
    )


def _row_to_item(row: sqlite3.Row, feed_url: str) -> DeliveredItem:
    """Convert a database row to a DeliveredItem dataclass."""
    return DeliveredItem(
        id=row["id"],
        feed_id=row["feed_id"],
        guid=row["guid"],
        published_at=_decode_dt(row["published_at"], feed_url, row["guid"]),
    )
