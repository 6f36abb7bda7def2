from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Optional
from ..models.files import CacheStats, DirectorySnapshot
from ..utils.files import normalize_prefix
from .listing import ListingFetcher, utcnow
import logging

DEFAULT_TTL = timedelta(hours=24)

class CacheStore:
  """
  In-memory cache of directory snapshots, keyed by normalized prefix.
  Snapshots are only ever replaced as a whole, so readers never see a partial listing.
  """

  def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Callable[[], datetime] = utcnow):
    """Initialize an empty cache.

    Args:
        ttl (timedelta, optional): Maximum age of a valid snapshot. Defaults to 24 hours.
        clock (Callable, optional): Source of the current time.
    """
    self.ttl = ttl
    self.clock = clock
    self._directories: Dict[str, DirectorySnapshot] = {}

  def is_valid(self, snapshot: DirectorySnapshot) -> bool:
    return self.clock() - snapshot.fetched_at < self.ttl

  def get(self, prefix: str) -> Optional[DirectorySnapshot]:
    """Get the snapshot of a prefix if it is still valid.

    Args:
        prefix (str): The folder prefix.

    Returns:
        DirectorySnapshot: The cached snapshot, None if absent or expired.
    """
    snapshot = self._directories.get(normalize_prefix(prefix))
    if snapshot is None or not self.is_valid(snapshot):
      return None
    return snapshot

  def put(self, prefix: str, snapshot: DirectorySnapshot):
    self._directories[normalize_prefix(prefix)] = snapshot

  def seed(self, directories: Dict[str, DirectorySnapshot]):
    """Load snapshots restored from durable storage."""
    for prefix, snapshot in directories.items():
      self.put(prefix, snapshot)
    logging.info(f"Cache seeded with {len(directories)} directories")

  def invalidate(self, prefix: Optional[str] = None):
    """Drop one prefix, or the whole cache when no prefix is given."""
    if prefix is None:
      self._directories.clear()
    else:
      self._directories.pop(normalize_prefix(prefix), None)

  def invalidate_many(self, prefixes: Iterable[str]):
    for prefix in prefixes:
      self.invalidate(prefix)

  def snapshot(self) -> Dict[str, DirectorySnapshot]:
    return dict(self._directories)

  def stats(self) -> CacheStats:
    directories = list(self._directories.values())
    if not directories:
      return CacheStats()
    oldest = min(snapshot.fetched_at for snapshot in directories)
    return CacheStats(
      cached_directories=len(directories),
      total_cached_entries=sum(len(snapshot.entries) for snapshot in directories),
      oldest_entry_age=(self.clock() - oldest).total_seconds())

  def __len__(self) -> int:
    return len(self._directories)

  def __contains__(self, prefix: str) -> bool:
    return normalize_prefix(prefix) in self._directories


async def read_through(cache: CacheStore, fetcher: ListingFetcher, prefix: str,
                       force_refresh: bool = False) -> DirectorySnapshot:
  """Serve a prefix from the cache, fetching and storing it on a miss.

  Args:
      cache (CacheStore): The cache to read and fill.
      fetcher (ListingFetcher): Lists the prefix on a miss.
      prefix (str): The folder prefix.
      force_refresh (bool, optional): Skip the cache lookup. Defaults to False.

  Returns:
      DirectorySnapshot: A valid snapshot of the prefix.
  """
  prefix = normalize_prefix(prefix)
  if not force_refresh:
    snapshot = cache.get(prefix)
    if snapshot is not None:
      return snapshot
  snapshot = await fetcher.fetch(prefix)
  cache.put(prefix, snapshot)
  return snapshot
