"""
Composed FastAPI Dependencies

Wires sessions, storage, the job queue and the services into injectable
objects. Route handlers import from here, never from db/session,
storage/factory or workers/queue directly.

This is the single wiring point for the request context; tests swap any
piece through app.dependency_overrides.
"""

from __future__ import annotations

import secrets
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from docintel.core.config import settings
from docintel.core.errors import AdminTokenInvalid
from docintel.db.session import AsyncSessionLocal, get_db
from docintel.services.api_keys import ApiKeyService
from docintel.services.ingestion import IngestionService
from docintel.services.projects import ProjectService
from docintel.services.registry import DocumentRegistry
from docintel.services.usage import UsageRecorder
from docintel.storage.factory import get_storage
from docintel.workers.queue import JobQueue, get_job_queue


# ---------------------------------------------------------------------------
# 1. Document registry (own short transactions per operation)
# ---------------------------------------------------------------------------

def get_registry() -> DocumentRegistry:
    return DocumentRegistry(AsyncSessionLocal, get_storage())


# ---------------------------------------------------------------------------
# 2. Services built on the registry
# ---------------------------------------------------------------------------

def get_ingestion_service(
    registry: Annotated[DocumentRegistry, Depends(get_registry)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
) -> IngestionService:
    return IngestionService(registry=registry, queue=queue)


def get_api_key_service(
    registry: Annotated[DocumentRegistry, Depends(get_registry)],
) -> ApiKeyService:
    return ApiKeyService(AsyncSessionLocal, registry)


@lru_cache(maxsize=1)
def get_usage_recorder() -> UsageRecorder:
    # One instance per process so shutdown can flush its pending inserts
    return UsageRecorder(AsyncSessionLocal)


def get_project_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ProjectService:
    return ProjectService(db)


# ---------------------------------------------------------------------------
# 3. Admin guard
# ---------------------------------------------------------------------------

async def require_admin(
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    """X-Admin-Token must match ADMIN_TOKEN. An empty ADMIN_TOKEN disables the check (dev only)."""
    if not settings.admin_token:
        return
    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.admin_token):
        raise AdminTokenInvalid()


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Registry  = Annotated[DocumentRegistry, Depends(get_registry)]
Ingestion = Annotated[IngestionService, Depends(get_ingestion_service)]
ApiKeys   = Annotated[ApiKeyService, Depends(get_api_key_service)]
Usage     = Annotated[UsageRecorder, Depends(get_usage_recorder)]
Projects  = Annotated[ProjectService, Depends(get_project_service)]
AdminOnly = Depends(require_admin)
