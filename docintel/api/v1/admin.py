"""Administrative routes. Guarded by X-Admin-Token when ADMIN_TOKEN is set."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from docintel.api.dependencies import AdminOnly, Registry
from docintel.schemas.documents import ErrorResponse

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[AdminOnly],
    responses={403: {"model": ErrorResponse, "description": "Missing or wrong X-Admin-Token"}},
)


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Purge a document, its data, its API keys and its stored object",
    responses={404: {"model": ErrorResponse}},
)
async def purge_document(document_id: str, registry: Registry) -> Response:
    await registry.purge(document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
