"""
S3 Storage Service

Object layout:
    s3://<S3_BUCKET>/<S3_PREFIX>/<uuid4 hex><ext>

The key is constructed server-side, never accepted from the client, so a
request cannot address another document's object.

Encryption:
  - When S3_KMS_KEY_ARN is set every PutObject carries SSE-KMS parameters.
  - Otherwise the bucket's default encryption applies.

S3_ENDPOINT_URL points the client at LocalStack / MinIO in development.
"""

from __future__ import annotations

import logging

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from docintel.core.config import settings
from docintel.core.errors import StorageError
from docintel.storage.base import ObjectStorage, StoredObject, build_key

logger = logging.getLogger(__name__)


class S3ObjectStorage(ObjectStorage):
    """Async S3 operations against a single bucket/prefix."""

    backend_name = "s3"

    def __init__(
        self,
        bucket: str | None = None,
        prefix: str | None = None,
        kms_key_arn: str | None = None,
    ) -> None:
        self._bucket = bucket or settings.s3_bucket
        self._prefix = prefix if prefix is not None else settings.s3_prefix
        self._kms_key_arn = settings.s3_kms_key_arn if kms_key_arn is None else kms_key_arn
        self._session = aioboto3.Session(
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
            region_name=settings.aws_region,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url or None,
            # In production: IAM role assumed via ECS task role / IRSA.
        )

    def _sse_params(self) -> dict:
        if not self._kms_key_arn:
            return {}
        return {
            "ServerSideEncryption": "aws:kms",
            "SSEKMSKeyId": self._kms_key_arn,
        }

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def put(self, filename: str, body: bytes, content_type: str) -> StoredObject:
        key = build_key(self._prefix, filename)

        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                    **self._sse_params(),
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 upload failed | bucket=%s key=%s error=%s", self._bucket, key, exc)
            raise StorageError(f"Failed to store document: {exc}") from exc

        logger.info("S3 upload ok | bucket=%s key=%s size=%d", self._bucket, key, len(body))
        return StoredObject(
            key=key,
            size_bytes=len(body),
            content_type=content_type,
            url=f"s3://{self._bucket}/{key}",
        )

    async def get(self, key: str) -> bytes:
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise StorageError(f"Stored object not found: {key}") from exc
                raise StorageError(f"Failed to read stored object {key}: {code}") from exc
            except BotoCoreError as exc:
                raise StorageError(f"Failed to read stored object {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        # DeleteObject on a missing key succeeds, so this is idempotent
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to delete stored object {key}: {exc}") from exc
        logger.warning("S3 hard delete | bucket=%s key=%s", self._bucket, key)
