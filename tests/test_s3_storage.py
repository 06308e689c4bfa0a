"""Object storage tests against a stubbed S3 client."""

from uuid import uuid4

import pytest
from botocore.stub import Stubber

from swapmylook.services.exceptions import StorageError
from swapmylook.services.storage.s3_client import S3ObjectStorage, output_key


@pytest.fixture
def s3_storage() -> S3ObjectStorage:
    return S3ObjectStorage(
        bucket="swapmylook-assets",
        endpoint_url="https://s3.test",
        access_key_id="AKIATEST",
        secret_access_key="secret",
    )


@pytest.mark.asyncio
class TestS3ObjectStorage:
    async def test_put_uploads_with_content_type(self, s3_storage):
        with Stubber(s3_storage.s3) as stubber:
            stubber.add_response(
                "put_object",
                {},
                {
                    "Bucket": "swapmylook-assets",
                    "Key": "outputs/u/j.png",
                    "Body": b"data",
                    "ContentType": "image/png",
                },
            )

            await s3_storage.put(b"data", "outputs/u/j.png", "image/png")

            stubber.assert_no_pending_responses()

    async def test_put_failure_is_storage_error(self, s3_storage):
        with Stubber(s3_storage.s3) as stubber:
            stubber.add_client_error(
                "put_object", service_error_code="SlowDown", http_status_code=503
            )

            with pytest.raises(StorageError, match="Failed to upload"):
                await s3_storage.put(b"data", "outputs/u/j.png", "image/png")

    async def test_get_missing_key_is_storage_error(self, s3_storage):
        with Stubber(s3_storage.s3) as stubber:
            stubber.add_client_error(
                "get_object", service_error_code="NoSuchKey", http_status_code=404
            )

            with pytest.raises(StorageError, match="Failed to download"):
                await s3_storage.get("inputs/missing.png")

    async def test_signed_url_carries_expiry(self, s3_storage):
        url = await s3_storage.get_signed_url("outputs/u/j.png", ttl_seconds=600)

        assert "outputs/u/j.png" in url
        assert "X-Amz-Expires=600" in url


def test_output_key_layout():
    owner_id, job_id = uuid4(), uuid4()

    assert output_key(owner_id, job_id, ".png") == f"outputs/{owner_id}/{job_id}.png"
