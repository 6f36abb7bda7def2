from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional, Union
from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError
from ..models.files import CacheRecord, DirectorySnapshot
from .cache import DEFAULT_TTL
from .listing import utcnow
import logging
import os
import tempfile


class PersistenceError(Exception):
  """Exception raised when the persisted cache cannot be read or written."""
  pass


class CachePersistence:
  """
  Saves the whole directory cache as one JSON document and restores the entries
  that are still valid. Errors are logged, never raised: the cache is only an optimization.
  """

  def __init__(self, path: Union[str, Path], ttl: timedelta = DEFAULT_TTL, key: Optional[Union[str, bytes]] = None,
               clock: Callable[[], datetime] = utcnow):
    """Initialize the persistence layer.

    Args:
        path (str): The file holding the cache.
        ttl (timedelta, optional): Entries older than this are dropped on load. Defaults to 24 hours.
        key (bytes, optional): The Fernet encryption key. Defaults to None (plain JSON).
        clock (Callable, optional): Source of the current time.
    """
    self.path = Path(path)
    self.ttl = ttl
    self.clock = clock
    self.fernet = Fernet(key) if key else None

  def save(self, directories: Dict[str, DirectorySnapshot]) -> bool:
    """Replace the persisted cache with the given snapshots.

    The document is written to a temporary file next to the target, then moved
    over it, so an interrupted save leaves the previous document intact.

    Args:
        directories (Dict[str, DirectorySnapshot]): The snapshots, by prefix.

    Returns:
        bool: True if the cache was written, False otherwise.
    """
    try:
      self._write_record(CacheRecord(saved_at=self.clock(), directories=directories))
    except PersistenceError as e:
      logging.error(f"Could not save directory cache to {self.path}: {e}")
      return False
    logging.info(f"Directory cache saved: {len(directories)} directories to {self.path}")
    return True

  def load(self) -> Dict[str, DirectorySnapshot]:
    """Read the persisted cache, keeping only the entries younger than the TTL.

    Returns:
        Dict[str, DirectorySnapshot]: The valid snapshots, empty if nothing could be read.
    """
    if not self.path.exists():
      return {}
    try:
      record = self._read_record()
    except PersistenceError as e:
      logging.error(f"Could not load directory cache from {self.path}: {e}")
      return {}
    now = self.clock()
    valid = {
      prefix: snapshot
      for prefix, snapshot in record.directories.items()
      if now - snapshot.fetched_at < self.ttl
    }
    logging.info(f"Restored {len(valid)} of {len(record.directories)} cached directories from {self.path}")
    return valid

  def encrypt_content(self, content: bytes) -> bytes:
    if not self.fernet:
      return content
    return self.fernet.encrypt(content)

  def decrypt_content(self, encrypted_content: bytes) -> bytes:
    if not self.fernet:
      return encrypted_content
    return self.fernet.decrypt(encrypted_content)

  def _write_record(self, record: CacheRecord):
    payload = self.encrypt_content(record.model_dump_json().encode("utf-8"))
    temp_path = None
    try:
      self.path.parent.mkdir(parents=True, exist_ok=True)
      fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
      with os.fdopen(fd, "wb") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
      os.replace(temp_path, self.path)
    except OSError as e:
      if temp_path is not None and os.path.exists(temp_path):
        os.unlink(temp_path)
      raise PersistenceError(str(e)) from e

  def _read_record(self) -> CacheRecord:
    try:
      with open(self.path, "rb") as f:
        content = f.read()
      return CacheRecord.model_validate_json(self.decrypt_content(content))
    except (OSError, InvalidToken, ValidationError, ValueError) as e:
      raise PersistenceError(f"{type(e).__name__}: {e}") from e
