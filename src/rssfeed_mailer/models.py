"""Data models for RSS Feed Mailer."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Feed:
    """Represents a subscribed RSS/Atom source, keyed by its URL."""

    url: str
    link: str
    last_build_date: datetime | None = None
    id: int | None = None


@dataclass
class DeliveredItem:
    """Record of an item that has already been mailed."""

    feed_id: int
    guid: str
    published_at: datetime
    id: int | None = None


@dataclass
class FetchedItem:
    """A single entry parsed from a feed document during one run."""

    title: str
    link: str | None = None
    guid: str | None = None
    description: str | None = None
    published_at: datetime | None = None

    @property
    def identity(self) -> str | None:
        return item_identity(self.guid, self.link)


@dataclass
class ParsedFeed:
    """Result of parsing an RSS/Atom feed."""

    title: str
    link: str | None
    items: list[FetchedItem]
    last_build_date: datetime | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class FetchResult:
    """Outcome of fetching one feed: either a parsed feed or an error."""

    feed_url: str
    feed: ParsedFeed | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def item_identity(guid: str | None, link: str | None) -> str | None:
    """Return the key an item is deduplicated by.

    The GUID wins when present; otherwise the item's link is used. Stored
    delivery records depend on this order, so it must not change.
    """
    if guid:
        return guid
    return link or None
