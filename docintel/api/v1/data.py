"""
Data Retrieval API Router

GET /v1/data                   the key's own document
GET /extract/{document_id}     same, but the key must be bound to document_id

Both require `x-api-key`. Every call, successful or not, writes exactly one
usage record through UsageRecorder.track().
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Header, Request

from docintel.api.dependencies import ApiKeys, Registry, Usage
from docintel.core.errors import ApiKeyMissing, ApiKeyScopeMismatch, InvalidApiKey
from docintel.schemas.documents import DataResponse, ErrorResponse
from docintel.services.api_keys import ApiKeyService, VerifiedKey

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Data Retrieval"])

_AUTH_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing x-api-key header"},
    403: {"model": ErrorResponse, "description": "Unknown, revoked or mismatched key"},
    404: {"model": ErrorResponse, "description": "No extracted data yet"},
}


async def _authenticate(keys: ApiKeyService, candidate: str | None) -> VerifiedKey:
    if not candidate or not candidate.strip():
        raise ApiKeyMissing()
    verified = await keys.verify(candidate.strip())
    if verified is None:
        raise InvalidApiKey()
    return verified


@router.get(
    "/v1/data",
    response_model=DataResponse,
    summary="Retrieve extracted data with a document API key",
    responses=_AUTH_RESPONSES,
)
async def get_data(
    request:   Request,
    keys:      ApiKeys,
    registry:  Registry,
    usage:     Usage,
    x_api_key: Annotated[str | None, Header()] = None,
) -> DataResponse:
    async with usage.track(request.url.path) as call:
        key = await _authenticate(keys, x_api_key)
        call.document_id = key.document_id
        record = await registry.get_data(key.document_id)
    return DataResponse(document_id=key.document_id, data=record.data)


@router.get(
    "/extract/{document_id}",
    response_model=dict[str, Any],
    summary="Retrieve extracted data for a specific document",
    responses=_AUTH_RESPONSES,
)
async def extract_data(
    document_id: str,
    request:     Request,
    keys:        ApiKeys,
    registry:    Registry,
    usage:       Usage,
    x_api_key:   Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    async with usage.track(request.url.path) as call:
        key = await _authenticate(keys, x_api_key)
        call.document_id = key.document_id
        if key.document_id != document_id:
            logger.info("Key scope mismatch | key_doc=%s requested=%s", key.document_id, document_id)
            raise ApiKeyScopeMismatch()
        record = await registry.get_data(document_id)
    return record.data
