"""One synchronization run: fetch every feed, mail new items, record them."""

import functools
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from rssfeed_mailer.config import Config
from rssfeed_mailer.database import Database, open_database
from rssfeed_mailer.errors import InvariantViolation
from rssfeed_mailer.feed_parser import fetch_and_parse
from rssfeed_mailer.fetch_pool import FetchPool
from rssfeed_mailer.models import ParsedFeed
from rssfeed_mailer.notifier import Credentials, DryRunSession, connect
from rssfeed_mailer.sequencer import Sequencer, SyncReport

logger = logging.getLogger(__name__)

DRY_RUN_SENDER = "rssfeed-mailer@localhost"


async def run_sync(
    config: Config,
    feed_urls: list[str] | None = None,
    no_send: bool = False,
    fetcher: Callable[[str], ParsedFeed] | None = None,
    connector: Callable = connect,
    log: logging.Logger | None = None,
) -> SyncReport:
    """Fetch all (or the given) feeds and mail every item not yet delivered.

    The whole run holds the store's write transaction, so a concurrent run
    against the same database fails with StoreTimeout instead of racing.
    With ``no_send`` nothing is mailed and nothing is recorded.

    Raises:
        StoreError: If the store cannot be opened, locked or read.
        NotifierError: If the mail session cannot be opened or a send fails.
    """
    log = log or logger
    if fetcher is None:
        fetcher = functools.partial(fetch_and_parse, timeout=config.fetch_timeout)
    if not no_send:
        config.require_delivery_settings()

    with open_database(config.db_path, config.store_open_timeout) as db:
        with db.transaction():
            urls = _select_feeds(db, feed_urls)
            log.info("Fetching %d feeds with %d workers", len(urls), config.fetch_concurrency)

            pool = FetchPool(
                fetcher=fetcher,
                workers=config.fetch_concurrency,
                logger=log,
            )
            with _open_session(config, no_send, connector) as session:
                sequencer = Sequencer(
                    db,
                    session,
                    recipient=config.recipient or "",
                    sender=config.smtp_user or DRY_RUN_SENDER,
                    record=not no_send,
                    logger=log,
                )
                report = await sequencer.run(pool.results(urls))

        if config.retention_days and not no_send:
            reap(db, report, config.retention_days)

    log.info(
        "Run complete: %d sent, %d already delivered, %d feeds failed",
        report.sent,
        report.skipped,
        len(report.failed_feeds),
    )
    return report


def reap(
    db: Database,
    report: SyncReport,
    retention_days: int,
    now: datetime | None = None,
) -> int:
    """Delete old delivery records in a transaction of its own.

    Only feeds fetched in ``report``'s run are swept, and nothing observed
    in that run is deleted regardless of age.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    with db.transaction():
        count = db.reap_items(cutoff, keep=report.observed, feed_urls=report.fetched_feeds)
    logger.info("Reaped %d item records older than %d days", count, retention_days)
    return count


def _select_feeds(db: Database, feed_urls: list[str] | None) -> list[str]:
    all_urls = db.list_feeds()
    if not feed_urls:
        return all_urls

    known = set(all_urls)
    missing = [u for u in feed_urls if u not in known]
    if missing:
        raise InvariantViolation(
            f"Feed does not exist in database (feed: {', '.join(map(repr, missing))})"
        )
    wanted = set(feed_urls)
    return [u for u in all_urls if u in wanted]


def _open_session(config: Config, no_send: bool, connector: Callable):
    if no_send:
        return DryRunSession()
    return connector(
        config.smtp_server,
        Credentials(user=config.smtp_user, password=config.smtp_password),
    )
