"""RSS/Atom feed fetching and parsing using httpx and feedparser."""

import calendar
from datetime import datetime, timezone
from time import struct_time
from urllib.parse import urlparse

import feedparser
import httpx

from rssfeed_mailer import __version__
from rssfeed_mailer.errors import RssMailerError
from rssfeed_mailer.models import FetchedItem, ParsedFeed, item_identity

USER_AGENT = f"rssfeed-mailer/{__version__} +https://pypi.org/project/feedparser/"
DEFAULT_FETCH_TIMEOUT = 60.0


class FeedParseError(RssMailerError):
    """Raised when a feed cannot be fetched or parsed."""


def fetch_and_parse(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> ParsedFeed:
    """Fetch and parse an RSS or Atom feed from a URL.

    Args:
        url: The feed URL to fetch and parse.
        timeout: Seconds allowed for connecting and for each read.

    Returns:
        ParsedFeed with feed metadata and items in document order.

    Raises:
        FeedParseError: If the URL is invalid, unreachable, or not a valid feed.
    """
    _validate_url(url)

    try:
        response = httpx.get(
            url,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
    except httpx.TimeoutException as e:
        raise FeedParseError(f"Timed out after {timeout}s") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise FeedParseError(f"Could not reach URL: {e}") from e

    if response.status_code in (401, 403):
        raise FeedParseError(
            "Feed requires authentication. Ensure the URL is publicly accessible."
        )

    if response.status_code >= 400:
        raise FeedParseError(f"Could not reach URL: HTTP {response.status_code}")

    parsed = feedparser.parse(
        response.content,
        response_headers={"content-type": response.headers.get("content-type", "")},
    )
    return parse_document(parsed)


def parse_document(parsed) -> ParsedFeed:
    """Turn a feedparser result into a ParsedFeed."""
    if not parsed.get("version") and not parsed.feed.get("title"):
        if parsed.get("bozo") and parsed.get("bozo_exception"):
            raise FeedParseError(
                f"URL does not point to a valid RSS or Atom feed: {parsed.bozo_exception}"
            )
        raise FeedParseError("URL does not point to a valid RSS or Atom feed")

    warnings: list[str] = []
    if parsed.get("bozo"):
        warnings.append(
            f"Feed has formatting issues: {parsed.get('bozo_exception')}"
        )

    return ParsedFeed(
        title=parsed.feed.get("title") or "Untitled Feed",
        link=parsed.feed.get("link"),
        last_build_date=_parse_date(parsed.feed),
        items=_extract_items(parsed.entries, warnings),
        warnings=warnings,
    )


def _validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
        if not result.scheme or not result.netloc:
            raise FeedParseError("Invalid URL format")
        if result.scheme not in ("http", "https"):
            raise FeedParseError("Invalid URL format: only http and https are supported")
    except ValueError:
        raise FeedParseError("Invalid URL format")


def _extract_items(entries: list, warnings: list[str]) -> list[FetchedItem]:
    """Extract items from feedparser entries, keeping document order."""
    items = []
    for entry in entries:
        # feedparser exposes both the RSS <guid> and the Atom <id> as "id"
        guid = entry.get("id") or None
        link = entry.get("link") or None
        if item_identity(guid, link) is None:
            warnings.append(
                f"Skipping entry with no identifier: {entry.get('title', 'unknown')}"
            )
            continue

        items.append(
            FetchedItem(
                guid=guid,
                link=link,
                title=entry.get("title") or "Untitled",
                description=entry.get("summary") or entry.get("description") or "",
                published_at=_parse_date(entry),
            )
        )
    return items


def _parse_date(entry: dict) -> datetime | None:
    """Parse publication date from a feedparser entry as UTC."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, (struct_time, tuple)):
            try:
                return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
            except (ValueError, OverflowError, TypeError):
                continue
    return None
