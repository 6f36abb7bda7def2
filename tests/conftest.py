import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from bucketview.models.files import ListPage, ObjectSummary
from bucketview.services.s3 import S3Service


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def _list_bucket(objects: dict):
    """Build a list_page implementation answering like S3 for a fixed set of keys."""
    modified = datetime(2026, 1, 1, tzinfo=timezone.utc)

    async def list_page(prefix, delimiter="/", max_keys=1000, continuation_token=None):
        items = []
        seen_folders = set()
        for key in sorted(objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            if delimiter in rest:
                folder = prefix + rest.split(delimiter)[0] + delimiter
                if folder not in seen_folders:
                    seen_folders.add(folder)
                    items.append((folder, None))
            else:
                items.append((key, objects[key]))
        start = int(continuation_token or 0)
        page = items[start:start + max_keys]
        next_start = start + max_keys
        return ListPage(
            directories=[key for key, size in page if size is None],
            objects=[ObjectSummary(key=key, size=size, last_modified=modified) for key, size in page if size is not None],
            next_token=str(next_start) if next_start < len(items) else None)

    return list_page


@pytest.fixture
def clock():
    """A frozen clock starting on 2026-01-01."""
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def bucket_listing():
    """Factory of list_page side effects for a dict of key -> size."""
    return _list_bucket


@pytest.fixture
def bucket():
    """Root with folders a/ and b/ and one 10 bytes file."""
    return {
        "a/one.txt": 1,
        "a/deeper/two.txt": 2,
        "b/three.txt": 3,
        "readme.txt": 10,
    }


@pytest.fixture
def tree():
    """Root with 3 folders holding 2 folders each, files at the leaves."""
    keys = {}
    for i in range(3):
        for j in range(2):
            keys[f"d{i}/s{j}/file.txt"] = 100
    return keys


@pytest.fixture
def mock_s3_service(bucket):
    """Create a mock S3Service instance serving the bucket fixture."""
    service = MagicMock(spec=S3Service)
    service.s3_endpoint_url = "http://localhost:9000"
    service.bucket = "test-bucket"
    service.region = "auto"

    # Mock methods
    service.start = AsyncMock()
    service.close = AsyncMock()
    service.list_page = AsyncMock(side_effect=_list_bucket(bucket))
    service.get_object = AsyncMock(return_value=(b"content", None))
    service.head_object = AsyncMock()
    service.object_exists = AsyncMock(return_value=True)
    service.put_object = AsyncMock()
    service.delete_object = AsyncMock()

    return service
