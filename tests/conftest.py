"""Shared test fixtures for RSS Feed Mailer tests."""

import threading
from datetime import datetime, timezone

import pytest

from rssfeed_mailer.config import Config
from rssfeed_mailer.database import create_database
from rssfeed_mailer.errors import TransportError
from rssfeed_mailer.feed_parser import FeedParseError
from rssfeed_mailer.models import FetchedItem, ParsedFeed


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Thu, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Thu, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Third Article</title>
      <link>https://example.com/article-3</link>
      <description>No guid on this one</description>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <updated>2026-02-13T10:00:00Z</updated>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_EMPTY_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Quiet Feed</title>
    <link>https://example.com/quiet</link>
    <description>Nothing here yet</description>
  </channel>
</rss>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""

FEED_URL = "https://example.com/rss"
OTHER_FEED_URL = "https://other.example.org/atom.xml"


def make_item(guid, title=None, link=None, published_at=None) -> FetchedItem:
    return FetchedItem(
        guid=guid,
        title=title or f"Item {guid or link}",
        link=link if link is not None else f"https://example.com/{guid}",
        description=f"<p>Body of {guid or link}</p>",
        published_at=published_at,
    )


def make_feed(*items, title="Test Feed") -> ParsedFeed:
    return ParsedFeed(title=title, link="https://example.com", items=list(items))


class FakeFetcher:
    """Stand-in for fetch_and_parse, serving canned documents per URL.

    A value that is an exception is raised instead of returned.
    """

    def __init__(self, documents: dict):
        self.documents = dict(documents)
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, url: str) -> ParsedFeed:
        with self._lock:
            self.calls.append(url)
        doc = self.documents.get(url)
        if doc is None:
            raise FeedParseError("Could not reach URL: HTTP 404")
        if isinstance(doc, Exception):
            raise doc
        return doc


class RecordingSession:
    """Notifier session that records sends, optionally failing on a subject."""

    def __init__(self, fail_on: str | None = None):
        self.fail_on = fail_on
        self.sent = []
        self.closed = False

    def send(self, notification, recipient):
        if self.fail_on is not None and notification.subject == self.fail_on:
            raise TransportError(f"Failed to send message (subject: {notification.subject!r})")
        self.sent.append((notification, recipient))

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    @property
    def subjects(self) -> list[str]:
        return [n.subject for n, _ in self.sent]


@pytest.fixture
def tmp_db_path(tmp_path):
    """Provide a path where no database exists yet."""
    return str(tmp_path / "test.db")


@pytest.fixture
def db(tmp_db_path):
    """A fresh delivery store with one subscribed feed."""
    database = create_database(tmp_db_path, timeout=0.2)
    database.add_feed(FEED_URL)
    yield database
    database.close()


@pytest.fixture
def config(tmp_db_path):
    return Config(
        db_path=tmp_db_path,
        store_open_timeout=0.2,
        fetch_concurrency=4,
        fetch_timeout=5,
        recipient="reader@example.com",
        smtp_server="smtp.example.com:587",
        smtp_user="feeds@example.com",
        smtp_password="hunter2",
    )


@pytest.fixture
def old_date():
    return datetime(2015, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_empty_rss_xml():
    """Sample RSS 2.0 XML with a channel but no items."""
    return SAMPLE_EMPTY_RSS_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML
