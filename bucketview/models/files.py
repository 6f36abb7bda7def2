from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

class Entry(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

  key: str
  size: int = Field(default=0, ge=0)
  last_modified: datetime
  is_directory: bool = False

class DirectorySnapshot(BaseModel):
  entries: List[Entry] = Field(default_factory=list)
  fetched_at: datetime
  complete: bool = True

class ObjectSummary(BaseModel):
  key: str
  size: int = 0
  last_modified: Optional[datetime] = None

class ListPage(BaseModel):
  directories: List[str] = Field(default_factory=list)
  objects: List[ObjectSummary] = Field(default_factory=list)
  next_token: Optional[str] = None

class ObjectMetadata(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

  content_type: Optional[str] = None
  size: int = 0

class CacheStats(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

  cached_directories: int = 0
  total_cached_entries: int = 0
  # seconds since the oldest snapshot was fetched, None when the cache is empty
  oldest_entry_age: Optional[float] = None

class CacheRecord(BaseModel):
  version: int = 1
  saved_at: datetime
  directories: Dict[str, DirectorySnapshot] = Field(default_factory=dict)
