"""S3-compatible object storage client for source uploads and generated results."""

import asyncio

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from adforge.services.exceptions import StorageError


class S3Storage:
    """Private object storage accessed through short-lived signed URLs.

    boto3 is synchronous, so every call runs in the default thread pool.
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        region_name: str = "us-east-1",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        """Initialize storage client.

        Args:
            endpoint_url: Custom endpoint for S3-compatible services (None for AWS)
            region_name: Bucket region
            access_key_id: Access key (None to use the default credential chain)
            secret_access_key: Secret key (None to use the default credential chain)
            client: Pre-built boto3 S3 client (overrides the other arguments)
        """
        self.client = client or boto3.client(
            "s3",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region_name,
            endpoint_url=endpoint_url,
        )

    async def create_signed_url(self, bucket: str, key: str, expires_in: int = 300) -> str:
        """Create a temporary read URL for a private object.

        The object's existence is checked first because presigning alone never
        fails for a missing key.

        Args:
            bucket: Bucket name
            key: Object key
            expires_in: URL lifetime in seconds (default: 5 minutes)

        Returns:
            Presigned GET URL

        Raises:
            StorageError: If the object is missing or the storage call fails
        """

        def _sign() -> str:
            self.client.head_object(Bucket=bucket, Key=key)
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in,
            )

        try:
            return await asyncio.to_thread(_sign)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchKey", "NotFound"):
                raise StorageError(f"Object not found: {bucket}/{key}") from e
            raise StorageError(f"Failed to sign {bucket}/{key}: {code or e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Storage unavailable while signing {bucket}/{key}: {e}") from e

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Upload bytes with an explicit content type.

        PUT overwrites an existing object under the same key (upsert).

        Raises:
            StorageError: If the upload fails
        """

        def _put() -> None:
            self.client.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)

        try:
            await asyncio.to_thread(_put)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Upload failed for {bucket}/{key}: {e}") from e
