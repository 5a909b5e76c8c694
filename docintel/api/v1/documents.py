"""
Document API Router
/api/documents/...

Implements:
  - Registration by URL (JSON body) and by multipart upload
  - Status polling and full document reads (with extracted data)
  - API-key ceremony: issue (plaintext shown once), list, revoke
  - Per-document usage summary

Request lifecycle for a submission:
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Validate input (URL shape / upload size + magic MIME) │
  │ 2. Optional projectId: caller must own the project       │
  │ 3. Store bytes (uploads only), insert Document=queued    │
  │ 4. Enqueue process_document → return 202 immediately    │
  └─────────────────────────────────────────────────────────┘

Heavy work (download, AI extraction) never runs inside the request; poll
GET /documents/{id}/status until the document is ready or failed.
"""

from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from docintel.api.dependencies import ApiKeys, Ingestion, Projects, Registry, Usage
from docintel.auth.identity import IdentityProvider, get_identity_provider
from docintel.core.config import settings
from docintel.models.documents import Document
from docintel.schemas.documents import (
    UPLOAD_FIELD_NAME,
    ApiKeyIssued,
    ApiKeyOut,
    DocumentDetail,
    DocumentOut,
    DocumentStatusOut,
    ErrorResponse,
    RegisterDocumentRequest,
    RegisterResponse,
    UploadResponse,
    UsageSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)


async def _resolve_owner(
    request: Request,
    project_id: str | None,
    projects: Projects,
    provider: IdentityProvider,
) -> str | None:
    """
    Attaching a document to a project requires an identity that owns it.
    Anonymous submissions without a project carry no owner.
    """
    if not project_id:
        return None
    identity = await provider.authenticate(request)
    await projects.get_for_user(identity.user_id, project_id)
    return identity.user_id


def _accepted(body: RegisterResponse | UploadResponse, doc: Document) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json", by_alias=True),
        headers={
            "X-Document-ID": doc.id,
            "Location":      f"{settings.api_prefix}/documents/{doc.id}/status",
        },
    )


# ---------------------------------------------------------------------------
# POST /documents/register
# ---------------------------------------------------------------------------

@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Register a document by URL",
    responses={
        400: {"model": ErrorResponse, "description": "Missing or malformed URL"},
        404: {"model": ErrorResponse, "description": "Unknown projectId"},
    },
)
async def register_document(
    request:  Request,
    body:     RegisterDocumentRequest,
    service:  Ingestion,
    projects: Projects,
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> JSONResponse:
    owner_id = await _resolve_owner(request, body.project_id, projects, provider)
    doc = await service.register_url(body, owner_id=owner_id)
    return _accepted(
        RegisterResponse(processing_id=doc.id, document_id=doc.id, status=doc.status),
        doc,
    )


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a document for extraction",
    description=(
        f"Multipart field '{UPLOAD_FIELD_NAME}'. Accepts PDF, JPEG, PNG or GIF up to 10 MB. "
        "Returns 202 immediately; processing is asynchronous."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "No file, or unsupported file type"},
        413: {"model": ErrorResponse, "description": "File exceeds MAX_UPLOAD_BYTES"},
        500: {"model": ErrorResponse, "description": "Storage or database failure"},
    },
)
async def upload_document(
    request:    Request,
    service:    Ingestion,
    projects:   Projects,
    provider:   Annotated[IdentityProvider, Depends(get_identity_provider)],
    document:   Optional[UploadFile] = File(None, description="Document file (PDF, JPEG, PNG, GIF)"),
    project_id: Optional[str]        = Form(None, alias="projectId"),
) -> JSONResponse:
    owner_id = await _resolve_owner(request, project_id, projects, provider)
    doc = await service.ingest_upload(document, project_id=project_id, owner_id=owner_id)
    return _accepted(
        UploadResponse(
            document_id=doc.id,
            status=doc.status,
            file_name=doc.file_name,
            content_type=doc.content_type,
            size_bytes=doc.size_bytes,
        ),
        doc,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=list[DocumentOut],
    summary="List documents, newest first",
)
async def list_documents(
    registry:   Registry,
    project_id: Optional[str] = Query(None, alias="projectId"),
) -> list[DocumentOut]:
    docs = await registry.list_all(newest_first=True, project_id=project_id)
    return [DocumentOut.model_validate(doc) for doc in docs]


@router.get(
    "/{document_id}",
    response_model=DocumentDetail,
    summary="Fetch one document with its extracted data",
    responses={404: {"model": ErrorResponse}},
)
async def get_document(document_id: str, registry: Registry) -> DocumentDetail:
    doc, data = await registry.get_with_data(document_id)
    detail = DocumentDetail.model_validate(doc)
    detail.processing_result = data.data if data is not None else None
    return detail


@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusOut,
    summary="Poll async processing status",
    responses={404: {"model": ErrorResponse}},
)
async def get_document_status(document_id: str, registry: Registry) -> DocumentStatusOut:
    doc = await registry.get_by_id(document_id)
    return DocumentStatusOut(document_id=doc.id, status=doc.status, error=doc.error)


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/api-keys",
    response_model=ApiKeyIssued,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a retrieval API key (plaintext is returned once)",
    responses={
        400: {"model": ErrorResponse, "description": "Document is not ready"},
        404: {"model": ErrorResponse},
    },
)
async def issue_api_key(document_id: str, keys: ApiKeys) -> ApiKeyIssued:
    issued = await keys.issue(document_id)
    return ApiKeyIssued(
        api_key=issued.plaintext,
        key_id=issued.record.id,
        document_id=issued.record.document_id,
        created_at=issued.record.created_at,
    )


@router.get(
    "/{document_id}/api-keys",
    response_model=list[ApiKeyOut],
    summary="List key metadata (never the key itself)",
    responses={404: {"model": ErrorResponse}},
)
async def list_api_keys(document_id: str, keys: ApiKeys) -> list[ApiKeyOut]:
    return [ApiKeyOut.model_validate(record) for record in await keys.list_keys(document_id)]


@router.delete(
    "/{document_id}/api-keys/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key (idempotent)",
    responses={404: {"model": ErrorResponse}},
)
async def revoke_api_key(document_id: str, key_id: str, keys: ApiKeys) -> Response:
    await keys.revoke(document_id, key_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/usage",
    response_model=UsageSummary,
    summary="Retrieval usage summary for one document",
    responses={404: {"model": ErrorResponse}},
)
async def get_usage(document_id: str, registry: Registry, usage: Usage) -> UsageSummary:
    await registry.get_by_id(document_id)
    return UsageSummary(**await usage.summary(document_id))
