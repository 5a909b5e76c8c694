"""
Document Registry — the persistent record of each document's lifecycle.

Every read and write goes through its own short transaction opened from
the injected session factory, so the registry is safe to share between
request handlers, the in-process job runner and Celery tasks.

Id scheme:
    doc_<uuid4 hex>   (122 random bits)
    Insertion retries with a fresh id if the primary key already exists,
    bounded by MAX_ID_ATTEMPTS. Any other integrity failure propagates.

Status transitions (anything else raises InvalidStatusTransition):
    queued     → processing | failed
    processing → ready | failed
    failed     → processing         (queue retry of the same job)

The ready transition writes the DocumentData row in the same transaction,
so a ready document without data is never observable.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.core.errors import (
    DocumentDataNotFound,
    DocumentNotFound,
    InternalError,
    InvalidStatusTransition,
    StorageError,
)
from docintel.models.documents import ApiKey, Document, DocumentData, utcnow
from docintel.schemas.documents import DocumentStatus
from docintel.storage.base import ObjectStorage

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 5
DOCUMENT_ID_PREFIX = "doc_"

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.QUEUED:     frozenset({DocumentStatus.PROCESSING, DocumentStatus.FAILED}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.READY, DocumentStatus.FAILED}),
    DocumentStatus.FAILED:     frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.READY:      frozenset(),
}


def new_document_id() -> str:
    return f"{DOCUMENT_ID_PREFIX}{uuid.uuid4().hex}"


class DocumentRegistry:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ObjectStorage,
        id_factory: Callable[[], str] = new_document_id,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._id_factory = id_factory

    @property
    def storage(self) -> ObjectStorage:
        return self._storage

    @asynccontextmanager
    async def _scope(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_url(
        self,
        url: str,
        *,
        file_name: str,
        content_type: str | None = None,
        size_bytes: int | None = None,
        project_id: str | None = None,
        owner_id: str | None = None,
    ) -> Document:
        """Insert a queued document whose bytes live at a remote URL."""
        return await self._insert(
            source_url=url,
            storage_key=None,
            file_name=file_name,
            content_type=content_type,
            size_bytes=size_bytes,
            project_id=project_id,
            owner_id=owner_id,
        )

    async def register_upload(
        self,
        body: bytes,
        *,
        file_name: str,
        content_type: str,
        project_id: str | None = None,
        owner_id: str | None = None,
    ) -> Document:
        """
        Store the bytes, then insert a queued document pointing at them.
        The stored object is removed again if the row cannot be written.
        """
        stored = await self._storage.put(file_name, body, content_type)
        try:
            return await self._insert(
                source_url=None,
                storage_key=stored.key,
                file_name=file_name,
                content_type=content_type,
                size_bytes=stored.size_bytes,
                project_id=project_id,
                owner_id=owner_id,
            )
        except Exception:
            try:
                await self._storage.delete(stored.key)
            except StorageError as cleanup_exc:
                logger.warning("Orphaned upload | key=%s error=%s", stored.key, cleanup_exc)
            raise

    async def _insert(self, **fields: Any) -> Document:
        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            document_id = self._id_factory()
            try:
                async with self._scope() as session:
                    doc = Document(id=document_id, status=DocumentStatus.QUEUED.value, **fields)
                    session.add(doc)
                    await session.flush()
            except IntegrityError:
                if not await self._exists(document_id):
                    raise
                logger.warning(
                    "Document id collision | id=%s attempt=%d/%d",
                    document_id, attempt, MAX_ID_ATTEMPTS,
                )
                continue

            logger.info(
                "Document registered | id=%s source=%s file=%s",
                doc.id, "url" if doc.source_url else "upload", doc.file_name,
            )
            return doc

        raise InternalError(f"Could not allocate a unique document id after {MAX_ID_ATTEMPTS} attempts")

    async def _exists(self, document_id: str) -> bool:
        async with self._scope() as session:
            return await session.get(Document, document_id) is not None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, document_id: str) -> Document:
        async with self._scope() as session:
            doc = await session.get(Document, document_id)
        if doc is None:
            raise DocumentNotFound(document_id)
        return doc

    async def get_with_data(self, document_id: str) -> tuple[Document, Optional[DocumentData]]:
        async with self._scope() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                raise DocumentNotFound(document_id)
            data = await session.scalar(
                select(DocumentData).where(DocumentData.document_id == document_id)
            )
        return doc, data

    async def get_data(self, document_id: str) -> DocumentData:
        async with self._scope() as session:
            data = await session.scalar(
                select(DocumentData).where(DocumentData.document_id == document_id)
            )
        if data is None:
            raise DocumentDataNotFound(document_id)
        return data

    async def list_all(
        self,
        *,
        newest_first: bool = True,
        project_id: str | None = None,
    ) -> list[Document]:
        order = Document.created_at.desc() if newest_first else Document.created_at.asc()
        stmt = select(Document).order_by(order, Document.id)
        if project_id is not None:
            stmt = stmt.where(Document.project_id == project_id)
        async with self._scope() as session:
            return list((await session.scalars(stmt)).all())

    async def find_stale_queued(self, older_than: timedelta) -> list[str]:
        """Ids of documents still queued after older_than. Failed documents are never returned."""
        cutoff = utcnow() - older_than
        stmt = (
            select(Document.id)
            .where(Document.status == DocumentStatus.QUEUED.value, Document.updated_at < cutoff)
            .order_by(Document.created_at)
        )
        async with self._scope() as session:
            return list((await session.scalars(stmt)).all())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def touch(self, document_ids: list[str]) -> None:
        """Bump updated_at on still-queued documents (status is left alone)."""
        if not document_ids:
            return
        async with self._scope() as session:
            await session.execute(
                update(Document)
                .where(Document.id.in_(document_ids), Document.status == DocumentStatus.QUEUED.value)
                .values(updated_at=utcnow())
            )

    async def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error: str | None = None,
        *,
        data: dict[str, Any] | None = None,
    ) -> Document:
        """
        Apply one lifecycle transition.

        error is stored only for FAILED; any other target clears it.
        READY requires data, which is written as the DocumentData row.
        """
        status = DocumentStatus(status)
        if status is DocumentStatus.READY and data is None:
            raise ValueError("the ready transition requires extracted data")

        async with self._scope() as session:
            doc = await session.get(Document, document_id, with_for_update=True)
            if doc is None:
                raise DocumentNotFound(document_id)

            current = DocumentStatus(doc.status)
            if status not in ALLOWED_TRANSITIONS[current]:
                raise InvalidStatusTransition(document_id, current.value, status.value)

            now: datetime = utcnow()
            doc.status = status.value
            doc.error = (error or "Unknown error") if status is DocumentStatus.FAILED else None
            doc.updated_at = now

            if status is DocumentStatus.READY:
                doc.processed_at = now
                session.add(DocumentData(document_id=document_id, data=data))

        logger.info(
            "Document status | id=%s %s -> %s%s",
            document_id, current.value, status.value,
            f" error={doc.error!r}" if doc.error else "",
        )
        return doc

    async def mark_ready(self, document_id: str, data: dict[str, Any]) -> Document:
        return await self.update_status(document_id, DocumentStatus.READY, data=data)

    async def mark_failed(self, document_id: str, error: str) -> Document:
        return await self.update_status(document_id, DocumentStatus.FAILED, error)

    # ------------------------------------------------------------------
    # Administrative purge
    # ------------------------------------------------------------------

    async def purge(self, document_id: str) -> None:
        """
        Delete the document, its extracted data and its API keys in one
        transaction, then remove the stored upload. Usage records are kept.
        """
        async with self._scope() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                raise DocumentNotFound(document_id)
            storage_key = doc.storage_key

            await session.execute(delete(ApiKey).where(ApiKey.document_id == document_id))
            await session.execute(delete(DocumentData).where(DocumentData.document_id == document_id))
            await session.delete(doc)

        if storage_key:
            try:
                await self._storage.delete(storage_key)
            except StorageError as exc:
                logger.warning("Stored object not removed | id=%s key=%s error=%s", document_id, storage_key, exc)

        logger.warning("Document purged | id=%s", document_id)
