"""
API Key Ceremony & Verification

Key format:
    dik_<48 hex chars>      192 bits from secrets.token_hex

Issue:
  - Document must exist (DocumentNotFound) and be ready (DocumentNotReady).
  - Only the bcrypt hash (passlib CryptContext) is persisted.
  - The plaintext is returned to the caller once and never logged.

Verify:
  - Candidates without the dik_ shape are rejected without hashing.
  - Otherwise the candidate is checked against every non-revoked hash.
    bcrypt salts each hash, so there is no indexable value to look up;
    the cost is O(active keys) bcrypt verifications, all run in one
    worker thread so the event loop keeps serving requests.
  - First match wins. Revoked keys never match.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.core.config import settings
from docintel.core.errors import ApiKeyNotFound, DocumentNotReady
from docintel.models.documents import ApiKey, utcnow
from docintel.schemas.documents import DocumentStatus
from docintel.services.registry import DocumentRegistry

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "dik_"
_SECRET_BYTES = 24
_KEY_RE = re.compile(rf"^{API_KEY_PREFIX}[0-9a-f]{{{_SECRET_BYTES * 2}}}$")


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(_SECRET_BYTES)}"


def looks_like_api_key(candidate: str | None) -> bool:
    return bool(candidate) and _KEY_RE.match(candidate) is not None


@dataclass(frozen=True)
class IssuedKey:
    record:    ApiKey
    plaintext: str

    def __repr__(self) -> str:
        return f"IssuedKey(id={self.record.id!r}, document_id={self.record.document_id!r})"


@dataclass(frozen=True)
class VerifiedKey:
    key_id:      str
    document_id: str


class ApiKeyService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: DocumentRegistry,
        bcrypt_rounds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=bcrypt_rounds or settings.api_key_bcrypt_rounds,
        )

    @asynccontextmanager
    async def _scope(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    # ------------------------------------------------------------------
    # Issue / revoke / list
    # ------------------------------------------------------------------

    async def issue(self, document_id: str) -> IssuedKey:
        doc = await self._registry.get_by_id(document_id)
        if doc.status != DocumentStatus.READY.value:
            raise DocumentNotReady(document_id, doc.status)

        plaintext = generate_api_key()
        key_hash = await asyncio.to_thread(self._context.hash, plaintext)

        async with self._scope() as session:
            record = ApiKey(document_id=document_id, key_hash=key_hash)
            session.add(record)
            await session.flush()

        logger.info("API key issued | doc=%s key_id=%s", document_id, record.id)
        return IssuedKey(record=record, plaintext=plaintext)

    async def revoke(self, document_id: str, key_id: str) -> ApiKey:
        """Idempotent: revoking an already revoked key returns it unchanged."""
        async with self._scope() as session:
            record = await session.scalar(
                select(ApiKey).where(ApiKey.id == key_id, ApiKey.document_id == document_id)
            )
            if record is None:
                raise ApiKeyNotFound(f"API key '{key_id}' not found for document '{document_id}'")
            if not record.revoked:
                record.revoked = True
                record.revoked_at = utcnow()
                logger.info("API key revoked | doc=%s key_id=%s", document_id, key_id)
        return record

    async def list_keys(self, document_id: str) -> list[ApiKey]:
        await self._registry.get_by_id(document_id)
        async with self._scope() as session:
            rows = await session.scalars(
                select(ApiKey)
                .where(ApiKey.document_id == document_id)
                .order_by(ApiKey.created_at.desc(), ApiKey.id)
            )
            return list(rows.all())

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify(self, candidate: str | None) -> VerifiedKey | None:
        if not looks_like_api_key(candidate):
            return None

        async with self._scope() as session:
            rows = (
                await session.execute(
                    select(ApiKey.id, ApiKey.document_id, ApiKey.key_hash)
                    .where(ApiKey.revoked.is_(False))
                    .order_by(ApiKey.created_at)
                )
            ).all()

        match = await asyncio.to_thread(self._first_match, candidate, rows)
        if match is None:
            logger.info("API key rejected | active_keys=%d", len(rows))
        return match

    def _first_match(self, candidate: str, rows) -> VerifiedKey | None:
        for key_id, document_id, key_hash in rows:
            if self._context.verify(candidate, key_hash):
                return VerifiedKey(key_id=key_id, document_id=document_id)
        return None
