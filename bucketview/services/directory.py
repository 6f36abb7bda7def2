from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple
from ..config import Settings
from ..models.files import CacheStats, Entry, ObjectMetadata
from ..utils.files import DELIMITER, ancestor_prefixes, guess_mime_type, normalize_prefix
from .cache import CacheStore, read_through
from .listing import ListingFetcher, utcnow
from .persistence import CachePersistence
from .preload import PreloadOrchestrator, SubfolderPreloader
from .s3 import S3Service, NotFound
from .tasks import TaskTracker
import asyncio
import logging

class DirectoryService:
  """
  Hierarchical view over the bucket, served from the directory cache.
  This is what request handlers use for listings and for file operations.
  """

  def __init__(self, s3_service: S3Service, persistence: Optional[CachePersistence] = None,
               ttl: timedelta = timedelta(hours=24), page_size: int = 1000,
               preload_concurrency: int = 5, lazy_batch_size: int = 3,
               background_task_limit: int = 4, preload_on_startup: bool = True,
               shutdown_timeout: float = 10.0, clock: Callable[[], datetime] = utcnow):
    """Initialize the service and its cache components.

    Args:
        s3_service (S3Service): The object store client.
        persistence (CachePersistence, optional): Where the cache is saved between restarts. Defaults to None (not persisted).
        ttl (timedelta, optional): Maximum age of a cached listing. Defaults to 24 hours.
        page_size (int, optional): Keys requested per listing call. Defaults to 1000.
        preload_concurrency (int, optional): Directories listed in parallel by the crawl. Defaults to 5.
        lazy_batch_size (int, optional): Subfolders listed in parallel when a directory is viewed. Defaults to 3.
        background_task_limit (int, optional): Background preload jobs running at the same time. Defaults to 4.
        preload_on_startup (bool, optional): Whether start() launches the crawl. Defaults to True.
        shutdown_timeout (float, optional): Seconds given to background work to drain. Defaults to 10.
        clock (Callable, optional): Source of the current time.
    """
    self.s3_service = s3_service
    self.persistence = persistence
    self.preload_on_startup = preload_on_startup
    self.shutdown_timeout = shutdown_timeout
    self.stop_event = asyncio.Event()
    self.cache = CacheStore(ttl=ttl, clock=clock)
    self.fetcher = ListingFetcher(s3_service, page_size=page_size, stop_event=self.stop_event, clock=clock)
    self.tracker = TaskTracker(limit=background_task_limit, stop_event=self.stop_event)
    self.orchestrator = PreloadOrchestrator(self.fetcher, self.cache,
                                            concurrency=preload_concurrency,
                                            on_complete=self.save_cache,
                                            stop_event=self.stop_event)
    self.preloader = SubfolderPreloader(self.fetcher, self.cache, self.tracker, batch_size=lazy_batch_size)

  @classmethod
  def from_settings(cls, settings: Settings) -> "DirectoryService":
    ttl = timedelta(seconds=settings.cache_ttl_seconds)
    s3_service = S3Service(s3_endpoint_url=settings.r2_endpoint,
                           s3_access_key_id=settings.r2_access_key_id,
                           s3_secret_access_key=settings.r2_secret_access_key,
                           region=settings.r2_region,
                           bucket=settings.r2_bucket_name)
    persistence = CachePersistence(settings.cache_file, ttl=ttl, key=settings.cache_encryption_key)
    return cls(s3_service, persistence=persistence, ttl=ttl,
               page_size=settings.list_page_size,
               preload_concurrency=settings.preload_concurrency,
               lazy_batch_size=settings.lazy_preload_batch_size,
               background_task_limit=settings.background_task_limit,
               preload_on_startup=settings.preload_on_startup,
               shutdown_timeout=settings.shutdown_timeout)

  #
  # Lifecycle
  #

  async def start(self):
    """Restore the persisted cache, connect to the store and start the crawl in the background."""
    if self.persistence is not None:
      restored = await asyncio.to_thread(self.persistence.load)
      if restored:
        self.cache.seed(restored)
    await self.s3_service.start()
    if self.preload_on_startup:
      self.startup_preload()

  async def shutdown(self):
    """Stop issuing backend calls, let in-flight work drain, flush the cache and disconnect."""
    self.stop_event.set()
    await self.tracker.shutdown(timeout=self.shutdown_timeout)
    task = self.orchestrator.task
    if task is not None:
      done, pending = await asyncio.wait([task], timeout=self.shutdown_timeout)
      for pending_task in pending:
        pending_task.cancel()
      await asyncio.gather(*pending, return_exceptions=True)
    if len(self.cache):
      await self.save_cache()
    await self.s3_service.close()

  async def save_cache(self) -> bool:
    if self.persistence is None:
      return False
    return await asyncio.to_thread(self.persistence.save, self.cache.snapshot())

  #
  # Listings
  #

  async def list_directory(self, prefix: str = "", force_refresh: bool = False) -> List[Entry]:
    """List the folders and files directly under a prefix.

    Args:
        prefix (str, optional): The folder to list. Defaults to "" (root).
        force_refresh (bool, optional): Fetch from the store even if the cache is valid. Defaults to False.

    Raises:
        BackendError: When the listing cannot be fetched. No stale listing is served instead.

    Returns:
        List[Entry]: Copies of the cached entries, in the order the store returned them.
    """
    snapshot = await read_through(self.cache, self.fetcher, prefix, force_refresh=force_refresh)
    return [entry.model_copy() for entry in snapshot.entries]

  def notify_viewed(self, prefix: str):
    """Preload the subfolders of a directory the user is looking at, without waiting."""
    self.preloader.preload_children(prefix)

  def startup_preload(self) -> asyncio.Task:
    return self.orchestrator.preload_all()

  def cache_stats(self) -> CacheStats:
    return self.cache.stats()

  def invalidate(self, prefix: Optional[str] = None):
    self.cache.invalidate(prefix)

  #
  # File operations
  #

  async def get_metadata(self, key: str) -> ObjectMetadata:
    return await self.s3_service.head_object(key)

  async def download(self, key: str) -> Tuple[bytes, str]:
    """Get the content of a file and the mime type to serve it with.

    Args:
        key (str): The file key.

    Raises:
        NotFound: When the key does not exist.

    Returns:
        Tuple[bytes, str]: File content and mime type, guessed from the extension if the store has none.
    """
    content, content_type = await self.s3_service.get_object(key)
    return content, content_type or guess_mime_type(key)

  async def upload(self, folder: str, filename: str, data: bytes, content_type: Optional[str] = None) -> str:
    """Upload a file into a folder.

    Args:
        folder (str): The destination folder, "" for the root.
        filename (str): The file name.
        data (bytes): The file content.
        content_type (str, optional): The mime type to store.

    Raises:
        ValueError: When the file name is empty.

    Returns:
        str: The key of the uploaded file.
    """
    if not filename:
      raise ValueError("File name is required")
    key = normalize_prefix(folder) + filename
    await self.s3_service.put_object(key, data, content_type)
    self._invalidate_parents(key)
    return key

  async def replace(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
    """Overwrite an existing file.

    Raises:
        NotFound: When the key does not exist.
    """
    if not await self.s3_service.object_exists(key):
      raise NotFound(f"Object {key} not found")
    await self.s3_service.put_object(key, data, content_type)
    self._invalidate_parents(key)
    return key

  async def delete(self, key: str) -> str:
    await self.s3_service.delete_object(key)
    self._invalidate_parents(key)
    return key

  def _invalidate_parents(self, key: str):
    prefixes = ancestor_prefixes(key)
    if key.endswith(DELIMITER):
      prefixes.insert(0, normalize_prefix(key))
    self.cache.invalidate_many(prefixes)
    logging.debug(f"Invalidated {len(prefixes)} cached listings after change to {key}")
