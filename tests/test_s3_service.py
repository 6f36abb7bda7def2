import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from botocore.exceptions import ClientError, EndpointConnectionError
from bucketview.services.s3 import (S3Service, BackendUnavailable, NotFound,
                                    MULTIPART_CHUNK_SIZE)


def client_error(code, operation="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": "error"}}, operation)


@pytest.fixture
def mock_client():
    """Create a mock aiobotocore S3 client."""
    client = MagicMock()
    client.list_objects_v2 = AsyncMock(return_value={"IsTruncated": False})
    client.get_object = AsyncMock()
    client.head_object = AsyncMock(return_value={"ContentType": "text/plain", "ContentLength": 12})
    client.put_object = AsyncMock()
    client.delete_object = AsyncMock()
    client.create_multipart_upload = AsyncMock(return_value={"UploadId": "upload-1"})
    client.upload_part = AsyncMock(side_effect=lambda **kwargs: {"ETag": f"etag-{kwargs['PartNumber']}"})
    client.complete_multipart_upload = AsyncMock()
    client.abort_multipart_upload = AsyncMock()
    return client


@pytest.fixture
def s3_service(mock_client):
    """Create an S3Service with the mocked client already connected."""
    service = S3Service(
        s3_endpoint_url="http://localhost:9000",
        s3_access_key_id="key",
        s3_secret_access_key="secret",
        region="auto",
        bucket="test-bucket")
    service._client = mock_client
    return service


class TestS3Service:
    """Test suite for S3Service."""

    def test_client_requires_start(self):
        service = S3Service("http://localhost:9000", "key", "secret", "auto", "test-bucket")
        with pytest.raises(BackendUnavailable):
            service.client

    @pytest.mark.asyncio
    async def test_list_page(self, s3_service, mock_client):
        """Test that common prefixes become directories and contents become objects."""
        modified = datetime(2026, 3, 1, tzinfo=timezone.utc)
        mock_client.list_objects_v2.return_value = {
            "CommonPrefixes": [{"Prefix": "docs/a/"}, {"Prefix": "docs/b/"}],
            "Contents": [{"Key": "docs/readme.md", "Size": 42, "LastModified": modified}],
            "IsTruncated": True,
            "NextContinuationToken": "next",
        }

        page = await s3_service.list_page("docs/")

        assert page.directories == ["docs/a/", "docs/b/"]
        assert [(o.key, o.size, o.last_modified) for o in page.objects] == [("docs/readme.md", 42, modified)]
        assert page.next_token == "next"
        mock_client.list_objects_v2.assert_awaited_once_with(
            Bucket="test-bucket", Prefix="docs/", Delimiter="/", MaxKeys=1000)

    @pytest.mark.asyncio
    async def test_list_page_with_token(self, s3_service, mock_client):
        page = await s3_service.list_page("", "/", 500, "token-2")

        assert page.next_token is None
        assert page.directories == []
        assert page.objects == []
        mock_client.list_objects_v2.assert_awaited_once_with(
            Bucket="test-bucket", Prefix="", Delimiter="/", MaxKeys=500, ContinuationToken="token-2")

    @pytest.mark.asyncio
    async def test_list_page_missing_size(self, s3_service, mock_client):
        mock_client.list_objects_v2.return_value = {"Contents": [{"Key": "empty.txt"}], "IsTruncated": False}
        page = await s3_service.list_page("")
        assert page.objects[0].size == 0
        assert page.objects[0].last_modified is None

    @pytest.mark.asyncio
    async def test_list_page_connection_error(self, s3_service, mock_client):
        mock_client.list_objects_v2.side_effect = EndpointConnectionError(endpoint_url="http://localhost:9000")
        with pytest.raises(BackendUnavailable):
            await s3_service.list_page("")

    @pytest.mark.asyncio
    async def test_list_page_access_denied(self, s3_service, mock_client):
        mock_client.list_objects_v2.side_effect = client_error("AccessDenied", "ListObjectsV2")
        with pytest.raises(BackendUnavailable):
            await s3_service.list_page("")

    @pytest.mark.asyncio
    async def test_get_object(self, s3_service, mock_client):
        body = MagicMock()
        body.read = AsyncMock(return_value=b"hello")
        mock_client.get_object.return_value = {"Body": body, "ContentType": "text/plain"}

        content, content_type = await s3_service.get_object("hello.txt")

        assert content == b"hello"
        assert content_type == "text/plain"
        mock_client.get_object.assert_awaited_once_with(Bucket="test-bucket", Key="hello.txt")

    @pytest.mark.asyncio
    async def test_get_missing_object(self, s3_service, mock_client):
        mock_client.get_object.side_effect = client_error("NoSuchKey")
        with pytest.raises(NotFound):
            await s3_service.get_object("missing.txt")

    @pytest.mark.asyncio
    async def test_head_object(self, s3_service):
        metadata = await s3_service.head_object("hello.txt")
        assert metadata.content_type == "text/plain"
        assert metadata.size == 12

    @pytest.mark.asyncio
    async def test_object_exists(self, s3_service, mock_client):
        assert await s3_service.object_exists("hello.txt") is True
        mock_client.head_object.side_effect = client_error("404", "HeadObject")
        assert await s3_service.object_exists("missing.txt") is False

    @pytest.mark.asyncio
    async def test_object_exists_propagates_backend_errors(self, s3_service, mock_client):
        mock_client.head_object.side_effect = client_error("500", "HeadObject")
        with pytest.raises(BackendUnavailable):
            await s3_service.object_exists("hello.txt")

    @pytest.mark.asyncio
    async def test_put_small_object(self, s3_service, mock_client):
        await s3_service.put_object("docs/hello.txt", b"hello", "text/plain")

        mock_client.put_object.assert_awaited_once_with(
            Bucket="test-bucket", Key="docs/hello.txt", Body=b"hello", ContentType="text/plain")
        mock_client.create_multipart_upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_put_without_content_type(self, s3_service, mock_client):
        await s3_service.put_object("hello.bin", b"\x00")
        mock_client.put_object.assert_awaited_once_with(Bucket="test-bucket", Key="hello.bin", Body=b"\x00")

    @pytest.mark.asyncio
    async def test_put_large_object_uses_multipart(self, s3_service, mock_client):
        """Test that payloads above 5 MB are sent in 5 MB parts."""
        data = b"x" * (MULTIPART_CHUNK_SIZE + 1)

        await s3_service.put_object("big.bin", data, "application/octet-stream")

        mock_client.put_object.assert_not_awaited()
        mock_client.create_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket", Key="big.bin", ContentType="application/octet-stream")
        assert mock_client.upload_part.await_count == 2
        sizes = sorted(len(call.kwargs["Body"]) for call in mock_client.upload_part.await_args_list)
        assert sizes == [1, MULTIPART_CHUNK_SIZE]
        mock_client.complete_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="big.bin",
            UploadId="upload-1",
            MultipartUpload={"Parts": [{"PartNumber": 1, "ETag": "etag-1"}, {"PartNumber": 2, "ETag": "etag-2"}]})
        mock_client.abort_multipart_upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_multipart_is_aborted(self, s3_service, mock_client):
        mock_client.upload_part.side_effect = client_error("InternalError", "UploadPart")

        with pytest.raises(BackendUnavailable):
            await s3_service.put_object("big.bin", b"x" * (MULTIPART_CHUNK_SIZE * 2))

        mock_client.abort_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket", Key="big.bin", UploadId="upload-1")
        mock_client.complete_multipart_upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_object(self, s3_service, mock_client):
        await s3_service.delete_object("old.txt")
        mock_client.delete_object.assert_awaited_once_with(Bucket="test-bucket", Key="old.txt")

    @pytest.mark.asyncio
    async def test_close(self, s3_service):
        await s3_service.close()
        with pytest.raises(BackendUnavailable):
            s3_service.client
