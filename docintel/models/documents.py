"""
SQLAlchemy ORM Models — Documents, extracted data, API keys, usage, projects

SQLAlchemy 2.x mapped classes for full async support. Column types are
the portable generic ones (String, Text, JSON) so the same models run on
PostgreSQL in production and SQLite in the test suite.

Ownership:
    Document is the root entity. DocumentData and ApiKey rows belong to one
    Document; the registry deletes them together on purge (there is no
    ON DELETE CASCADE to rely on under SQLite). ApiUsage references a
    document loosely: document_id may be NULL or point at a purged row.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Project model — projects
# ---------------------------------------------------------------------------

class Project(Base):
    """A user-owned grouping of documents. user_id comes from the identity provider."""

    __tablename__ = "projects"
    __table_args__ = (
        Index("idx_projects_user_id", "user_id", "created_at"),
    )

    id: Mapped[str]      = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str]    = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<Project id={self.id} user={self.user_id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Document model — documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    Tracks a single submitted file from registration → AI extraction.

    State machine (status column):
        queued     — registered, job handed to the queue
        processing — a worker is fetching bytes / waiting on the AI provider
        ready      — DocumentData row written; API keys may be issued
        failed     — extraction failed; see error

    Exactly one of source_url / storage_key is set: a document is either
    registered by URL or uploaded as bytes, never both.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'ready', 'failed')",
            name="documents_status_check",
        ),
        CheckConstraint(
            "status = 'failed' OR error IS NULL",
            name="documents_error_only_when_failed",
        ),
        CheckConstraint(
            "(source_url IS NULL) <> (storage_key IS NULL)",
            name="documents_single_source",
        ),
        Index("idx_documents_created_at", "created_at"),
        Index("idx_documents_status",     "status", "updated_at"),
        Index("idx_documents_project_id", "project_id"),
    )

    # doc_<32 hex>, generated by the registry
    id: Mapped[str] = mapped_column(String(40), primary_key=True)

    project_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
    )
    owner_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Source — remote URL or object key in the storage backend
    source_url: Mapped[Optional[str]]  = mapped_column(Text, nullable=True)
    storage_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    file_name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Sanitized display name supplied by the client or derived from the URL",
    )
    content_type: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="MIME type; detected from bytes for uploads, client-declared for URLs",
    )
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="queued")
    error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only when status='failed'",
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Document id={self.id} status={self.status} file={self.file_name!r}>"


# ---------------------------------------------------------------------------
# DocumentData model — document_data
# ---------------------------------------------------------------------------

class DocumentData(Base):
    """The parsed extraction output. Written once, when the document turns ready."""

    __tablename__ = "document_data"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    document_id: Mapped[str] = mapped_column(
        String(40),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# ApiKey model — api_keys
# ---------------------------------------------------------------------------

class ApiKey(Base):
    """
    A document-scoped retrieval credential.

    Only the bcrypt hash is stored; the plaintext leaves the process once,
    in the response to the issuing request. Revocation is one-way.
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        Index("idx_api_keys_document_id", "document_id"),
        Index("idx_api_keys_active",      "revoked"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    document_id: Mapped[str] = mapped_column(
        String(40),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    key_hash: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ApiKey id={self.id} document={self.document_id} revoked={self.revoked}>"


# ---------------------------------------------------------------------------
# ApiUsage model — api_usage
# ---------------------------------------------------------------------------

class ApiUsage(Base):
    """
    Append-only record of one retrieval attempt.

    No foreign key on document_id: a rejected key has no document, and
    usage history survives a document purge.
    """

    __tablename__ = "api_usage"
    __table_args__ = (
        Index("idx_api_usage_document_id", "document_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    document_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    endpoint: Mapped[str]    = mapped_column(Text, nullable=False)
    success: Mapped[bool]    = mapped_column(Boolean, nullable=False)
    latency_ms: Mapped[int]  = mapped_column(Integer, nullable=False)
    status_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<ApiUsage id={self.id} document={self.document_id} "
            f"endpoint={self.endpoint!r} success={self.success}>"
        )
