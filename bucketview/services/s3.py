from typing import Dict, List, Optional, Tuple
from contextlib import AsyncExitStack, contextmanager
from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError
from ..models.files import ListPage, ObjectMetadata, ObjectSummary
import asyncio
import logging

# 5 MB, the smallest part size S3 accepts for multipart uploads
MULTIPART_CHUNK_SIZE = 5 * 1024 * 1024
# parts uploaded at the same time
MULTIPART_QUEUE_SIZE = 4

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class BackendError(Exception):
    """Exception raised when the object store cannot serve a request."""
    pass

class BackendUnavailable(BackendError):
    """Network, authentication or server failure talking to the object store."""
    pass

class NotFound(BackendError):
    """The requested key does not exist."""
    pass

class ListingCancelled(BackendError):
    """A listing was abandoned because the service is shutting down."""
    pass


class S3Service(object):

    def __init__(self, s3_endpoint_url: str, s3_access_key_id: str, s3_secret_access_key: str, region: str, bucket: str, with_checksums: bool = False):
        """Initiate the S3 service.

        Args:
            s3_endpoint_url (str): The endpoint URL of the S3 service.
            s3_access_key_id (str): The access key ID for S3 authentication.
            s3_secret_access_key (str): The secret access key for S3 authentication.
            region (str): The region of the bucket, "auto" for Cloudflare R2.
            bucket (str): The name of the S3 bucket.
            with_checksums (bool, optional): Whether to enable checksum handling. When False (default),
            checksum use is disabled for compatibility with S3-compatible services that do not support checksums.
        """
        self.s3_endpoint_url = s3_endpoint_url
        self.s3_access_key_id = s3_access_key_id
        self.s3_secret_access_key = s3_secret_access_key
        self.region = region
        self.bucket = bucket
        self.with_checksums = with_checksums
        self._client = None
        self._exit_stack: Optional[AsyncExitStack] = None

    async def start(self):
        """Open the client shared by all callers. Calling it twice is a no-op."""
        if self._client is not None:
            return
        self._exit_stack = AsyncExitStack()
        self._client = await self._exit_stack.enter_async_context(self._create_client())
        logging.info(f"Connected to object store {self.s3_endpoint_url}/{self.bucket}")

    async def close(self):
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
        self._exit_stack = None
        self._client = None

    @property
    def client(self):
        if self._client is None:
            raise BackendUnavailable("S3 client not started")
        return self._client

    async def list_page(self, prefix: str, delimiter: str = "/", max_keys: int = 1000, continuation_token: Optional[str] = None) -> ListPage:
        """List one page of the folders and files directly under a prefix.

        Args:
            prefix (str): The prefix to list, "" for the bucket root.
            delimiter (str, optional): The folder delimiter. Defaults to "/".
            max_keys (int, optional): Page size hint. Defaults to 1000.
            continuation_token (str, optional): Cursor returned by the previous page.

        Returns:
            ListPage: Common prefixes, objects and the cursor of the next page, if any.
        """
        params = {
            "Bucket": self.bucket,
            "Prefix": prefix,
            "Delimiter": delimiter,
            "MaxKeys": max_keys,
        }
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        with self._translate_errors(prefix):
            response = await self.client.list_objects_v2(**params)

        directories = [cp["Prefix"] for cp in response.get("CommonPrefixes", []) if cp.get("Prefix")]
        objects = [
            ObjectSummary(key=obj["Key"], size=obj.get("Size") or 0, last_modified=obj.get("LastModified"))
            for obj in response.get("Contents", [])
            if obj.get("Key")
        ]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated", True) else None
        return ListPage(directories=directories, objects=objects, next_token=next_token)

    async def get_object(self, key: str) -> Tuple[bytes, Optional[str]]:
        """Extract file content and mimetype from S3 storage

        Args:
            key (str): Key of the file in S3

        Raises:
            NotFound: When the key does not exist

        Returns:
            Tuple[bytes, str]: File content and mimetype, if the store has one
        """
        with self._translate_errors(key):
            response = await self.client.get_object(Bucket=self.bucket, Key=key)
            file_content = await response["Body"].read()
        return file_content, response.get("ContentType")

    async def head_object(self, key: str) -> ObjectMetadata:
        """Get the content type and size of a file.

        Args:
            key (str): Key of the file in S3

        Raises:
            NotFound: When the key does not exist

        Returns:
            ObjectMetadata: The file metadata
        """
        with self._translate_errors(key):
            response = await self.client.head_object(Bucket=self.bucket, Key=key)
        return ObjectMetadata(content_type=response.get("ContentType"), size=response.get("ContentLength") or 0)

    async def object_exists(self, key: str) -> bool:
        try:
            await self.head_object(key)
            return True
        except NotFound:
            return False

    async def put_object(self, key: str, data: bytes, content_type: Optional[str] = None):
        """Upload a file, using a multipart transfer for large payloads.

        Args:
            key (str): Destination key
            data (bytes): File content
            content_type (str, optional): Mime type stored with the object
        """
        extra = {"ContentType": content_type} if content_type else {}
        with self._translate_errors(key):
            if len(data) <= MULTIPART_CHUNK_SIZE:
                await self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
            else:
                await self._put_multipart(key, data, extra)
        logging.info(f"File uploaded path : {self.s3_endpoint_url}/{self.bucket}/{key}")

    async def delete_object(self, key: str):
        with self._translate_errors(key):
            await self.client.delete_object(Bucket=self.bucket, Key=key)
        logging.info(f"File deleted path : {self.s3_endpoint_url}/{self.bucket}/{key}")

    #
    # Private methods
    #

    async def _put_multipart(self, key: str, data: bytes, extra: Dict[str, str]):
        upload = await self.client.create_multipart_upload(Bucket=self.bucket, Key=key, **extra)
        upload_id = upload["UploadId"]
        semaphore = asyncio.Semaphore(MULTIPART_QUEUE_SIZE)

        async def upload_part(part_number: int, offset: int) -> Dict:
            async with semaphore:
                response = await self.client.upload_part(
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=data[offset:offset + MULTIPART_CHUNK_SIZE])
            return {"PartNumber": part_number, "ETag": response["ETag"]}

        try:
            parts: List[Dict] = await asyncio.gather(*[
                upload_part(number, offset)
                for number, offset in enumerate(range(0, len(data), MULTIPART_CHUNK_SIZE), start=1)
            ])
            await self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts})
        except BaseException:
            await self.client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
            raise

    @contextmanager
    def _translate_errors(self, key: str):
        """Turn botocore failures into NotFound or BackendUnavailable."""
        try:
            yield
        except ClientError as e:
            error = e.response.get("Error", {})
            if str(error.get("Code")) in NOT_FOUND_CODES:
                raise NotFound(f"Object {key} not found") from e
            raise BackendUnavailable(f"S3 request failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise BackendUnavailable(f"S3 request failed for {key}: {e}") from e

    def _create_client(self):
        """Create an S3 client using the provided credentials and endpoint URL.

        Returns:
            Any: The S3 client context manager.
        """
        settings = {
            'payload_signing_enabled': False,
            'use_accelerate_endpoint': False,
            'addressing_style': 'path'
        }
        extra = {}
        if not self.with_checksums:
            # Completely disable checksums for S3-compatible services that don't support them
            extra['request_checksum_calculation'] = 'when_required'
            extra['response_checksum_validation'] = 'when_required'
        config = AioConfig(
            s3=settings,
            signature_version='s3v4',
            **extra
        )

        session = get_session()
        return session.create_client(
            's3',
            region_name=self.region,
            endpoint_url=self.s3_endpoint_url or None,
            aws_secret_access_key=self.s3_secret_access_key,
            aws_access_key_id=self.s3_access_key_id,
            config=config)
