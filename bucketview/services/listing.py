from datetime import datetime, timezone
from typing import Callable, List, Optional
from ..models.files import DirectorySnapshot, Entry
from ..utils.files import DELIMITER
from .s3 import S3Service, ListingCancelled
import asyncio
import logging

DEFAULT_PAGE_SIZE = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ListingFetcher:
    """Assembles complete directory snapshots from paginated listings."""

    def __init__(self, s3_service: S3Service, page_size: int = DEFAULT_PAGE_SIZE,
                 stop_event: Optional[asyncio.Event] = None, clock: Callable[[], datetime] = utcnow):
        """Initialize the fetcher.

        Args:
            s3_service (S3Service): The object store client.
            page_size (int, optional): Keys requested per listing call. Defaults to 1000.
            stop_event (asyncio.Event, optional): When set, listings are abandoned between pages.
            clock (Callable, optional): Source of the current time.
        """
        self.s3_service = s3_service
        self.page_size = page_size
        self.stop_event = stop_event or asyncio.Event()
        self.clock = clock

    async def fetch(self, prefix: str) -> DirectorySnapshot:
        """List every folder and file directly under a prefix.

        Args:
            prefix (str): A normalized prefix, "" for the root.

        Raises:
            BackendError: When the store cannot be listed.
            ListingCancelled: When shutdown is requested before the last page.

        Returns:
            DirectorySnapshot: The complete listing, in the order the store returned it.
        """
        entries: List[Entry] = []
        token = None
        pages = 0
        while True:
            if self.stop_event.is_set():
                raise ListingCancelled(f"Listing of '{prefix}' cancelled after {pages} pages")
            page = await self.s3_service.list_page(prefix, DELIMITER, self.page_size, token)
            pages += 1
            now = self.clock()
            for folder in page.directories:
                if folder != prefix:
                    entries.append(Entry(key=folder, size=0, last_modified=now, is_directory=True))
            for obj in page.objects:
                if obj.key != prefix:
                    entries.append(Entry(key=obj.key, size=obj.size,
                                         last_modified=obj.last_modified or now, is_directory=False))
            token = page.next_token
            if not token:
                break
        logging.debug(f"Listed '{prefix}': {len(entries)} entries in {pages} pages")
        return DirectorySnapshot(entries=entries, fetched_at=self.clock(), complete=True)
