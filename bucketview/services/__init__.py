from ..models.files import Entry, DirectorySnapshot, CacheStats
from .s3 import S3Service, BackendError, BackendUnavailable, NotFound, ListingCancelled
from .listing import ListingFetcher
from .cache import CacheStore, read_through
from .tasks import TaskTracker
from .preload import PreloadOrchestrator, PreloadState, SubfolderPreloader
from .persistence import CachePersistence, PersistenceError
from .directory import DirectoryService
