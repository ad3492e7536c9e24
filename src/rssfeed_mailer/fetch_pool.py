"""Bounded-concurrency feed fetching for RSS Feed Mailer."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import AsyncIterator, Callable, Iterable

from rssfeed_mailer.feed_parser import FeedParseError, fetch_and_parse
from rssfeed_mailer.models import FetchResult, ParsedFeed

DEFAULT_WORKERS = 20

# Queue marker telling a worker (or the consumer) that no more work follows.
_DONE = object()


class FetchPool:
    """Fetch many feeds with at most ``workers`` requests in flight.

    A producer task pushes feed URLs into a bounded queue, ``workers`` tasks
    drain it, and a closer task ends the result stream once every worker
    has returned. Results are yielded in completion order. A failed fetch
    becomes a ``FetchResult`` carrying the error and never stops the others.
    Fetch timeouts belong to ``fetcher``: a worker stays busy until its
    fetch returns or raises.
    """

    def __init__(
        self,
        fetcher: Callable[[str], ParsedFeed] = fetch_and_parse,
        workers: int = DEFAULT_WORKERS,
        logger: logging.Logger | None = None,
    ):
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.fetcher = fetcher
        self.workers = workers
        self.logger = logger or logging.getLogger(__name__)

    async def results(self, feed_urls: Iterable[str]) -> AsyncIterator[FetchResult]:
        """Yield one FetchResult per URL as each fetch completes."""
        in_queue: asyncio.Queue = asyncio.Queue(maxsize=self.workers)
        out_queue: asyncio.Queue = asyncio.Queue()
        executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="feed-fetch"
        )

        async def produce() -> None:
            for url in feed_urls:
                await in_queue.put(url)
            for _ in range(self.workers):
                await in_queue.put(_DONE)

        async def work() -> None:
            while True:
                url = await in_queue.get()
                if url is _DONE:
                    return
                await out_queue.put(await self._fetch_one(url, executor))

        async def close(worker_tasks: list[asyncio.Task]) -> None:
            try:
                await asyncio.gather(*worker_tasks)
            finally:
                await out_queue.put(_DONE)

        worker_tasks = [asyncio.create_task(work()) for _ in range(self.workers)]
        tasks = [
            asyncio.create_task(produce()),
            *worker_tasks,
            asyncio.create_task(close(worker_tasks)),
        ]

        try:
            while True:
                result = await out_queue.get()
                if result is _DONE:
                    break
                yield result
            # Surface a crash in the producer or a worker instead of
            # silently ending the stream early.
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            executor.shutdown(wait=False, cancel_futures=True)

    async def _fetch_one(self, url: str, executor: ThreadPoolExecutor) -> FetchResult:
        """Fetch a single feed, converting any failure into a FetchResult."""
        self.logger.debug("Fetch: %s", url)
        loop = asyncio.get_running_loop()
        try:
            feed = await loop.run_in_executor(executor, self.fetcher, url)
        except FeedParseError as e:
            self.logger.warning("Failed to fetch %s: %s", url, e)
            return FetchResult(feed_url=url, error=e)
        except Exception as e:
            self.logger.warning("Failed to fetch %s (unexpected error): %s", url, e)
            return FetchResult(feed_url=url, error=e)

        for warning in feed.warnings:
            self.logger.debug("Feed %s: %s", url, warning)
        return FetchResult(feed_url=url, feed=feed)
