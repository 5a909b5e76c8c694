"""
Document pipeline — Pydantic Request/Response Schemas

Covers registration, upload, status polling, key management, usage and
data retrieval.

Design decisions:
  - Wire names are camelCase (documentId, fileName, ...) via an alias
    generator; Python attributes stay snake_case. The one exception is
    processing_id on the register response, which clients poll by that
    exact name.
  - Document ids are always server-generated; never client-supplied.
  - content_type on uploads is detected from the bytes, never trusted
    from the multipart Content-Type header.
  - Timestamps are timezone-aware UTC datetimes serialized as ISO-8601.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Allowed MIME types
# ---------------------------------------------------------------------------

# Accepted by POST /documents/upload (multipart field "document")
UPLOAD_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/png",
        "image/gif",
    }
)

# Accepted by the extraction worker (URL sources may also be WebP)
EXTRACTABLE_CONTENT_TYPES: frozenset[str] = UPLOAD_CONTENT_TYPES | {"image/webp"}

UPLOAD_FIELD_NAME = "document"


# ---------------------------------------------------------------------------
# Document lifecycle state machine
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    """
    Maps to documents.status.
    Transitions: queued → processing → ready | failed
    """
    QUEUED     = "queued"       # registered, job handed to the queue
    PROCESSING = "processing"   # worker fetching bytes / calling the AI provider
    READY      = "ready"        # DocumentData written
    FAILED     = "failed"       # see Document.error


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Registration — POST /documents/register, POST /documents/upload
# ---------------------------------------------------------------------------

class RegisterDocumentRequest(CamelModel):
    """Register a remotely hosted file by URL."""

    file_url:   str           = Field(
        ...,
        validation_alias=AliasChoices("fileUrl", "url", "file_url"),
        description="Absolute http(s) URL of the document",
    )
    file_name:  Optional[str] = Field(None, max_length=255)
    file_type:  Optional[str] = Field(None, description="Client-declared MIME type")
    file_size:  Optional[int] = Field(None, ge=0)
    project_id: Optional[str] = None

    @field_validator("file_url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an absolute http(s) URL")
        return value


class RegisterResponse(CamelModel):
    """HTTP 202 — the document is queued; poll /documents/{id}/status."""

    processing_id: str            = Field(..., alias="processing_id")
    document_id:   str
    status:        DocumentStatus = DocumentStatus.QUEUED


class UploadResponse(CamelModel):
    """HTTP 202 — the bytes are stored and the document is queued."""

    document_id:  str
    status:       DocumentStatus = DocumentStatus.QUEUED
    file_name:    str
    content_type: str
    size_bytes:   int


# ---------------------------------------------------------------------------
# Reads — GET /documents, /documents/{id}, /documents/{id}/status
# ---------------------------------------------------------------------------

class DocumentOut(CamelModel):
    id:           str
    project_id:   Optional[str] = None
    file_name:    str
    source_url:   Optional[str] = None
    storage_key:  Optional[str] = None
    content_type: Optional[str] = None
    size_bytes:   Optional[int] = None
    status:       DocumentStatus
    error:        Optional[str] = None
    created_at:   datetime
    updated_at:   datetime
    processed_at: Optional[datetime] = None


class DocumentDetail(DocumentOut):
    processing_result: Optional[dict[str, Any]] = Field(
        None, description="Extracted data, present once status is ready",
    )


class DocumentStatusOut(CamelModel):
    document_id: str
    status:      DocumentStatus
    error:       Optional[str] = None


# ---------------------------------------------------------------------------
# API keys — /documents/{id}/api-keys
# ---------------------------------------------------------------------------

class ApiKeyIssued(CamelModel):
    """HTTP 201 — the only response that ever carries the plaintext key."""

    api_key:     str
    key_id:      str
    document_id: str
    created_at:  datetime
    message:     str = "Store this key now; it cannot be shown again."


class ApiKeyOut(CamelModel):
    id:          str
    document_id: str
    created_at:  datetime
    revoked:     bool
    revoked_at:  Optional[datetime] = None


# ---------------------------------------------------------------------------
# Retrieval and usage — /v1/data, /documents/{id}/usage
# ---------------------------------------------------------------------------

class DataResponse(CamelModel):
    document_id: str
    data:        dict[str, Any]


class UsageSummary(CamelModel):
    document_id:        str
    total_calls:        int
    successful_calls:   int
    failed_calls:       int
    average_latency_ms: Optional[float] = None
    last_called_at:     Optional[datetime] = None


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error:      str        = Field(..., description="Human-readable message")
    error_code: str        = Field(..., description="Stable machine-readable code")
    request_id: str | None = Field(None, description="Trace ID for log correlation")
