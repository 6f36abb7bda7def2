from typing import Iterable, List, Optional, TypeVar
from fastapi.exceptions import HTTPException
from fastapi.datastructures import UploadFile
import mimetypes

T = TypeVar("T")

# 50 MB in binary
DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024

DELIMITER = "/"

# extensions the platform mimetypes table may not know about
fallback_mimetypes = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "json": "application/json",
    "xml": "application/xml",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
}


class FileChecker:
    """Rejects uploads larger than the configured limit before they reach the bucket.

    Used as a request dependency by the upload and replace routes.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_FILE_SIZE):
        self.max_size = max_size

    async def check_size(self, files: list[UploadFile]):
        for file in files:
            content = await file.read()
            self._check_content_size(file.filename, content)
            await file.seek(0)
        return files

    def _check_content_size(self, filename: Optional[str], content: bytes):
        file_size = len(content)
        if file_size > self.max_size:
            name = f"File {filename}" if filename else "File"
            detail = f"{name} of size {file_size} exceeds max size {self.max_size}"
            raise HTTPException(400, detail=detail)


def normalize_prefix(prefix: Optional[str]) -> str:
    """Make a prefix usable as a cache key and as a listing prefix.

    Keys are taken as they are: leading slashes and repeated slashes are part of
    the key in S3, so "a//" and "/" are folders of their own.

    Args:
        prefix (str): A folder path, possibly empty, with or without its trailing slash.

    Returns:
        str: "" for the root, otherwise the path ending with a slash.
    """
    if not prefix:
        return ""
    if prefix.endswith(DELIMITER):
        return prefix
    return prefix + DELIMITER


def ancestor_prefixes(key: str) -> List[str]:
    """Prefixes of all the folders containing a key, deepest first, root last.

    Args:
        key (str): An object key, or a folder key ending with a slash.

    Returns:
        List[str]: The folder prefixes whose listing includes the key or one of its parents.
    """
    prefixes = [key[:i + 1] for i, char in enumerate(key[:-1]) if char == DELIMITER]
    prefixes.reverse()
    prefixes.append("")
    return prefixes


def batched(items: Iterable[T], size: int) -> Iterable[List[T]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    batch = []
    for item in items:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


def guess_mime_type(file_name: str) -> str:
    """Guess the mime type from file name.

    Args:
        file_name (str): The file name.

    Returns:
        str: A standard mime type string.
    """
    mime_type, encoding = mimetypes.guess_type(file_name)
    if mime_type is None:
        ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
        mime_type = fallback_mimetypes.get(ext, "application/octet-stream")
    return mime_type
