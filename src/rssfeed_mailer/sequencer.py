"""Deduplication and ordered delivery of fetched feed items."""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Protocol

from rssfeed_mailer.database import Database
from rssfeed_mailer.errors import InvariantViolation
from rssfeed_mailer.models import FetchResult
from rssfeed_mailer.notifier import Notification, render_notification


class Session(Protocol):
    def send(self, notification: Notification, recipient: str) -> None: ...

    def close(self) -> None: ...


@dataclass
class SyncReport:
    """What one run did."""

    sent: int = 0
    skipped: int = 0
    fetched_feeds: list[str] = field(default_factory=list)
    empty_feeds: list[str] = field(default_factory=list)
    failed_feeds: dict[str, str] = field(default_factory=dict)
    # (feed URL, item identity) of every item seen this run, new or old
    observed: set[tuple[str, str]] = field(default_factory=set)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sequencer:
    """Consume fetch results one at a time and mail every new item.

    All store access and all sends happen here, on one logical thread of
    control, so mails leave in a single deterministic order and the store
    only ever sees one writer. A send failure aborts the run; an item is
    recorded as delivered only after its send succeeded.
    """

    def __init__(
        self,
        db: Database,
        session: Session,
        recipient: str,
        sender: str,
        record: bool = True,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.session = session
        self.recipient = recipient
        self.sender = sender
        self.record = record
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.report = SyncReport()

    async def run(self, results: AsyncIterator[FetchResult]) -> SyncReport:
        """Process the result stream to the end, in the order received."""
        async with aclosing(results) as stream:
            async for result in stream:
                await self.process(result)
        return self.report

    async def process(self, result: FetchResult) -> None:
        """Deliver the new items of one fetch result."""
        url = result.feed_url
        if not result.ok:
            self.report.failed_feeds[url] = str(result.error)
            return

        if self.db.get_feed(url) is None:
            raise InvariantViolation(f"Feed does not exist in database (feed: {url!r})")

        feed = result.feed
        self.report.fetched_feeds.append(url)
        if not feed.items:
            self.logger.info("Got zero items for %s", url)
            self.report.empty_feeds.append(url)
            return

        for item in feed.items:
            guid = item.identity
            self.report.observed.add((url, guid))

            if self.db.is_delivered(url, guid):
                self.logger.debug("Skip: %s (%r)", url, item.title)
                self.report.skipped += 1
                continue

            self.logger.debug("Send: %s (%r)", url, item.title)
            notification = render_notification(feed, item, self.sender)
            await asyncio.to_thread(self.session.send, notification, self.recipient)

            if self.record:
                self.db.mark_delivered(url, guid, item.published_at or self.clock())
            self.report.sent += 1
