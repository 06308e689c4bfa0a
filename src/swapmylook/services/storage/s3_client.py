"""S3-compatible object storage for input and output images."""

import asyncio

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from swapmylook.services.exceptions import StorageError

logger = structlog.get_logger()


class S3ObjectStorage:
    """Blob store backed by an S3 bucket (AWS, R2, MinIO).

    boto3 is synchronous, so every call runs in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str = "us-east-1",
    ):
        """Initialize the S3 client.

        Args:
            bucket: Bucket holding all assets
            endpoint_url: Custom endpoint for S3-compatible providers
            access_key_id: Access key (falls back to the default credential chain)
            secret_access_key: Secret key
            region: Bucket region
        """
        self.bucket = bucket
        self.s3 = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            region_name=region,
            config=Config(signature_version="s3v4"),
        )

    async def put(self, data: bytes, key: str, content_type: str) -> None:
        """Upload bytes under ``key``.

        Raises:
            StorageError: Upload failed
        """
        try:
            await asyncio.to_thread(
                self.s3.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {key}: {e}") from e
        logger.debug("storage.put", key=key, size_bytes=len(data))

    async def get(self, key: str) -> bytes:
        """Download the object stored under ``key``.

        Raises:
            StorageError: Download failed
        """

        def _read() -> bytes:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_read)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to download {key}: {e}") from e

    async def get_signed_url(self, key: str, ttl_seconds: int) -> str:
        """Presigned GET URL valid for ``ttl_seconds``.

        Raises:
            StorageError: Signing failed
        """
        try:
            return await asyncio.to_thread(
                self.s3.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign URL for {key}: {e}") from e


def create_object_storage(settings) -> S3ObjectStorage:
    """Build the storage client from application settings."""
    return S3ObjectStorage(
        bucket=settings.s3_bucket,
        endpoint_url=settings.s3_endpoint_url,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        region=settings.s3_region,
    )


def output_key(owner_id, job_id, extension: str) -> str:
    """Storage key for a job's generated image."""
    return f"outputs/{owner_id}/{job_id}{extension}"
