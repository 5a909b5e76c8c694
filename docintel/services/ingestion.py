"""
Document Ingestion Service — the HTTP-facing half of the pipeline

Flow for every submission:
  1. Validate the input (URL shape, or upload size + detected MIME type)
  2. Registry: store bytes (uploads only) and insert the Document as queued
  3. Queue: enqueue process_document with the document id
  4. Return immediately; the caller answers 202 Accepted

Security / correctness:
  - MIME type is detected from file magic bytes, not the client's Content-Type header.
  - Unsupported uploads are rejected before anything is stored or queued.
  - Filenames are reduced to a safe basename; storage keys never contain them.

A queue failure after the row is written does not fail the request: the
document is recorded as queued. Only a deployment running
QUEUE_BACKEND=celery together with Celery beat re-publishes it (the
requeue_stale_documents task); with the in-process queue it stays queued
until it is registered again.
"""

from __future__ import annotations

import logging
from urllib.parse import unquote, urlparse

from fastapi import UploadFile

from docintel.core.config import settings
from docintel.core.errors import FileTooLarge, QueueUnavailable, UnsupportedMediaType, ValidationError
from docintel.models.documents import Document
from docintel.processing.mime import detect_mime_type, normalize_content_type, sanitize_filename
from docintel.schemas.documents import UPLOAD_CONTENT_TYPES, UPLOAD_FIELD_NAME, RegisterDocumentRequest
from docintel.services.registry import DocumentRegistry
from docintel.workers.jobs import JOB_PROCESS_DOCUMENT
from docintel.workers.queue import JobQueue

logger = logging.getLogger(__name__)

_READ_CHUNK = 1024 * 1024


def filename_from_url(url: str) -> str:
    path = unquote(urlparse(url).path)
    return sanitize_filename(path, default="document")


class IngestionService:
    """
    Stateless service object — one instance per request.
    All dependencies are injected (testable, no hidden globals).
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        queue: JobQueue,
        max_upload_bytes: int | None = None,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self._max_upload_bytes = max_upload_bytes or settings.max_upload_bytes

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def register_url(
        self,
        request: RegisterDocumentRequest,
        owner_id: str | None = None,
    ) -> Document:
        file_name = (
            sanitize_filename(request.file_name, default="document")
            if request.file_name
            else filename_from_url(request.file_url)
        )
        doc = await self._registry.register_url(
            request.file_url,
            file_name=file_name,
            content_type=normalize_content_type(request.file_type),
            size_bytes=request.file_size,
            project_id=request.project_id,
            owner_id=owner_id,
        )
        await self._enqueue(doc)
        return doc

    async def ingest_upload(
        self,
        file: UploadFile | None,
        project_id: str | None = None,
        owner_id: str | None = None,
    ) -> Document:
        body = await self._read_upload(file)

        # ---- Detect MIME type from magic bytes (never client header) ----
        detected_mime = detect_mime_type(body[:16])
        if detected_mime not in UPLOAD_CONTENT_TYPES:
            logger.info(
                "Upload rejected | file=%s detected=%s declared=%s",
                file.filename, detected_mime, file.content_type,
            )
            raise UnsupportedMediaType(detected_mime)

        safe_filename = sanitize_filename(file.filename or "upload")
        logger.info("Ingest start | file=%s size=%d mime=%s", safe_filename, len(body), detected_mime)

        doc = await self._registry.register_upload(
            body,
            file_name=safe_filename,
            content_type=detected_mime,
            project_id=project_id,
            owner_id=owner_id,
        )
        await self._enqueue(doc)
        return doc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _enqueue(self, doc: Document) -> None:
        try:
            handle = await self._queue.enqueue(JOB_PROCESS_DOCUMENT, {"document_id": doc.id})
        except QueueUnavailable as exc:
            # Non-fatal: the row stays queued for requeue_stale_documents (Celery beat only)
            logger.error("Failed to enqueue processing job | doc=%s error=%s", doc.id, exc)
            return
        logger.info("Processing job enqueued | doc=%s job_id=%s backend=%s", doc.id, handle.job_id, handle.backend)

    async def _read_upload(self, file: UploadFile | None) -> bytes:
        """
        Read the upload into memory with a hard size ceiling.
        Raises 400 if the file is missing or empty, 413 if too large.
        """
        if file is None or not file.filename:
            raise ValidationError(
                f"No file uploaded. Send the file in the '{UPLOAD_FIELD_NAME}' multipart field.",
                error_code="MISSING_FILE",
            )

        chunks: list[bytes] = []
        received = 0
        while True:
            chunk = await file.read(_READ_CHUNK)
            if not chunk:
                break
            received += len(chunk)
            if received > self._max_upload_bytes:
                raise FileTooLarge(received, self._max_upload_bytes)
            chunks.append(chunk)

        if not received:
            raise ValidationError("Uploaded file is empty.", error_code="MISSING_FILE")
        return b"".join(chunks)
