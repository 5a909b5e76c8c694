"""
Unit Tests — Object storage backends
═════════════════════════════════════
Coverage:
  ✅ build_key: server-generated keys, sanitized extension only
  ✅ LocalObjectStorage: put/get/delete, missing objects, path escape
  ✅ S3ObjectStorage: SSE-KMS params, error mapping (aioboto3 mocked)
  ✅ get_storage: unknown backend rejected
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from botocore.exceptions import ClientError

from docintel.core.config import settings
from docintel.core.errors import StorageError
from docintel.storage.base import build_key
from docintel.storage.factory import get_storage
from docintel.storage.local import LocalObjectStorage


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "test"}}, "operation")


def _build_s3_mock() -> AsyncMock:
    """Build a mock S3 client context manager."""
    s3 = AsyncMock()
    s3.__aenter__ = AsyncMock(return_value=s3)
    s3.__aexit__  = AsyncMock(return_value=None)
    s3.put_object    = AsyncMock(return_value={"ETag": '"etag-123"'})
    s3.delete_object = AsyncMock(return_value={})
    return s3


# ─────────────────────────────────────────────────────────────────────────────
# Keys
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestBuildKey:

    def test_key_is_prefix_uuid_and_extension(self):
        key = build_key("documents", "Quarterly Report.PDF")
        prefix, name = key.split("/")
        assert prefix == "documents"
        assert name.endswith(".pdf")
        assert len(name) == 32 + len(".pdf")

    def test_client_path_never_reaches_the_key(self):
        key = build_key("documents/", "../../etc/passwd")
        assert key.startswith("documents/")
        assert ".." not in key and "etc" not in key

    def test_odd_extension_dropped(self):
        assert "." not in build_key("documents", "archive.tar;rm -rf").split("/", 1)[1]

    def test_keys_are_unique(self):
        assert build_key("p", "a.png") != build_key("p", "a.png")


# ─────────────────────────────────────────────────────────────────────────────
# Local filesystem
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestLocalObjectStorage:

    @pytest.fixture
    def storage(self, tmp_path) -> LocalObjectStorage:
        return LocalObjectStorage(root=tmp_path, prefix="documents")

    async def test_put_then_get_round_trip(self, storage, tmp_path, sample_pdf_bytes):
        stored = await storage.put("report.pdf", sample_pdf_bytes, "application/pdf")

        assert stored.key.startswith("documents/")
        assert stored.size_bytes == len(sample_pdf_bytes)
        assert stored.url.startswith("file://")
        assert (tmp_path / stored.key).read_bytes() == sample_pdf_bytes
        assert await storage.get(stored.key) == sample_pdf_bytes

    async def test_get_missing_raises_storage_error(self, storage):
        with pytest.raises(StorageError, match="not found"):
            await storage.get("documents/missing.pdf")

    async def test_delete_is_idempotent(self, storage, sample_pdf_bytes):
        stored = await storage.put("report.pdf", sample_pdf_bytes, "application/pdf")
        await storage.delete(stored.key)
        await storage.delete(stored.key)

        with pytest.raises(StorageError):
            await storage.get(stored.key)

    async def test_key_outside_root_rejected(self, storage):
        with pytest.raises(StorageError, match="escapes"):
            await storage.get("../outside.pdf")


# ─────────────────────────────────────────────────────────────────────────────
# S3 (aioboto3 mocked)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestS3ObjectStorage:

    async def test_put_sends_sse_kms_when_configured(self, sample_pdf_bytes):
        from docintel.storage.s3 import S3ObjectStorage

        s3_mock = _build_s3_mock()
        with patch("docintel.storage.s3.aioboto3.Session") as mock_session:
            mock_session.return_value.client.return_value = s3_mock
            storage = S3ObjectStorage(
                bucket="test-bucket",
                prefix="documents",
                kms_key_arn="arn:aws:kms:us-east-1:000000000000:key/test",
            )
            stored = await storage.put("scan.pdf", sample_pdf_bytes, "application/pdf")

        kwargs = s3_mock.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "test-bucket"
        assert kwargs["Key"] == stored.key
        assert kwargs["ContentType"] == "application/pdf"
        assert kwargs["ServerSideEncryption"] == "aws:kms"
        assert kwargs["SSEKMSKeyId"].endswith("key/test")
        assert stored.url == f"s3://test-bucket/{stored.key}"

    async def test_put_without_kms_uses_bucket_default(self, sample_pdf_bytes):
        from docintel.storage.s3 import S3ObjectStorage

        s3_mock = _build_s3_mock()
        with patch("docintel.storage.s3.aioboto3.Session") as mock_session:
            mock_session.return_value.client.return_value = s3_mock
            storage = S3ObjectStorage(bucket="test-bucket", prefix="documents", kms_key_arn="")
            await storage.put("scan.pdf", sample_pdf_bytes, "application/pdf")

        assert "ServerSideEncryption" not in s3_mock.put_object.call_args.kwargs

    async def test_put_client_error_becomes_storage_error(self, sample_pdf_bytes):
        from docintel.storage.s3 import S3ObjectStorage

        s3_mock = _build_s3_mock()
        s3_mock.put_object = AsyncMock(side_effect=_client_error("AccessDenied"))
        with patch("docintel.storage.s3.aioboto3.Session") as mock_session:
            mock_session.return_value.client.return_value = s3_mock
            storage = S3ObjectStorage(bucket="test-bucket", prefix="documents", kms_key_arn="")
            with pytest.raises(StorageError):
                await storage.put("scan.pdf", sample_pdf_bytes, "application/pdf")

    async def test_get_missing_key_becomes_storage_error(self):
        from docintel.storage.s3 import S3ObjectStorage

        s3_mock = _build_s3_mock()
        s3_mock.get_object = AsyncMock(side_effect=_client_error("NoSuchKey"))
        with patch("docintel.storage.s3.aioboto3.Session") as mock_session:
            mock_session.return_value.client.return_value = s3_mock
            storage = S3ObjectStorage(bucket="test-bucket", prefix="documents", kms_key_arn="")
            with pytest.raises(StorageError, match="not found"):
                await storage.get("documents/abc.pdf")


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
def test_unknown_storage_backend_rejected(monkeypatch):
    monkeypatch.setattr(settings, "storage_backend", "ftp")
    with pytest.raises(ValueError, match="Unknown storage backend"):
        get_storage.__wrapped__()
