from collections import Counter
from enum import Enum
from typing import Awaitable, Callable, Optional, Set
from ..utils.files import batched, normalize_prefix
from .cache import CacheStore, read_through
from .listing import ListingFetcher
from .s3 import ListingCancelled
from .tasks import TaskTracker
import asyncio
import logging
import time

DEFAULT_PRELOAD_CONCURRENCY = 5
DEFAULT_LAZY_BATCH_SIZE = 3


class PreloadState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class PreloadOrchestrator:
    """Crawls the whole bucket from the root and fills the cache.

    Only one crawl runs at a time: while one is running, preload_all() hands
    out the same task to every caller.
    """

    def __init__(self, fetcher: ListingFetcher, cache: CacheStore,
                 concurrency: int = DEFAULT_PRELOAD_CONCURRENCY,
                 on_complete: Optional[Callable[[], Awaitable]] = None,
                 stop_event: Optional[asyncio.Event] = None):
        """Initialize the orchestrator.

        Args:
            fetcher (ListingFetcher): Lists one directory.
            cache (CacheStore): Receives every listed directory.
            concurrency (int, optional): Directories listed at the same time. Defaults to 5.
            on_complete (Callable, optional): Awaited after a crawl that was not interrupted, e.g. to persist the cache.
            stop_event (asyncio.Event, optional): When set, workers stop taking new directories.
        """
        self.fetcher = fetcher
        self.cache = cache
        self.concurrency = concurrency
        self.on_complete = on_complete
        self.stop_event = stop_event or asyncio.Event()
        self.state = PreloadState.IDLE
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.state is PreloadState.RUNNING

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def preload_all(self) -> asyncio.Task:
        """Start a crawl, or join the one in progress.

        Returns:
            asyncio.Task: Completes when the crawl is over, whatever its outcome.
        """
        if self.state is PreloadState.RUNNING and self._task is not None:
            return self._task
        self.state = PreloadState.RUNNING
        self._task = asyncio.create_task(self._run(), name="preload-all")
        return self._task

    async def _run(self):
        try:
            started = time.monotonic()
            counts = await self._crawl()
            elapsed = time.monotonic() - started
            if self.stop_event.is_set():
                logging.info(f"Preload interrupted after {counts['listed']} directories")
                return
            logging.info(
                f"Preload complete: {counts['listed']} directories, {counts['entries']} entries, "
                f"{counts['failed']} failures in {elapsed:.1f}s")
            if self.on_complete is not None:
                await self.on_complete()
        except Exception as e:
            logging.error(f"Preload failed: {e}", exc_info=e)
        finally:
            self.state = PreloadState.IDLE
            self._task = None

    async def _crawl(self) -> Counter:
        counts: Counter = Counter()
        queue: asyncio.Queue = asyncio.Queue()
        seen: Set[str] = {""}
        queue.put_nowait("")

        async def worker():
            while True:
                prefix = await queue.get()
                try:
                    if self.stop_event.is_set():
                        continue
                    try:
                        snapshot = await self.fetcher.fetch(prefix)
                    except ListingCancelled:
                        continue
                    except Exception as e:
                        counts["failed"] += 1
                        logging.warning(f"Could not preload '{prefix}': {e}")
                        continue
                    self.cache.put(prefix, snapshot)
                    counts["listed"] += 1
                    counts["entries"] += len(snapshot.entries)
                    for entry in snapshot.entries:
                        child = entry.key
                        if entry.is_directory and child not in seen:
                            seen.add(child)
                            queue.put_nowait(child)
                finally:
                    queue.task_done()

        workers = [asyncio.create_task(worker()) for _ in range(self.concurrency)]
        try:
            await queue.join()
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
        return counts


class SubfolderPreloader:
    """Lists the subfolders of a viewed directory in the background."""

    def __init__(self, fetcher: ListingFetcher, cache: CacheStore, tracker: TaskTracker,
                 batch_size: int = DEFAULT_LAZY_BATCH_SIZE):
        self.fetcher = fetcher
        self.cache = cache
        self.tracker = tracker
        self.batch_size = batch_size

    def preload_children(self, prefix: str):
        """Schedule the preload and return immediately. Failures are only logged."""
        prefix = normalize_prefix(prefix)
        self.tracker.submit(self._preload_children, prefix, name=f"preload-children:{prefix}")

    async def _preload_children(self, prefix: str):
        snapshot = await read_through(self.cache, self.fetcher, prefix)
        children = [entry.key for entry in snapshot.entries if entry.is_directory]
        for batch in batched(children, self.batch_size):
            if self.tracker.stop_event.is_set():
                return
            results = await asyncio.gather(
                *[read_through(self.cache, self.fetcher, child) for child in batch],
                return_exceptions=True)
            for child, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logging.warning(f"Could not preload '{child}': {result}")
        logging.debug(f"Preloaded {len(children)} subfolders of '{prefix}'")
