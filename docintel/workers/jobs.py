"""
Job names and their handlers.

A job is (name, JSON payload). Both queue backends route by name: the
in-process queue calls the handler below directly, the Celery queue maps
the name to a registered task (see CELERY_TASK_NAMES) whose body ends up
calling the same worker.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

import httpx

from docintel.db.session import AsyncSessionLocal
from docintel.llm.extraction import AIExtractor, get_extractor
from docintel.processing.sources import SourceResolver
from docintel.services.registry import DocumentRegistry
from docintel.storage.base import ObjectStorage
from docintel.storage.factory import get_storage
from docintel.workers.celery_app import PROCESS_DOCUMENT_TASK
from docintel.workers.pipeline import ExtractionWorker

JOB_PROCESS_DOCUMENT = "process_document"

CELERY_TASK_NAMES: dict[str, str] = {
    JOB_PROCESS_DOCUMENT: PROCESS_DOCUMENT_TASK,
}

JobHandler = Callable[[dict[str, Any]], Awaitable[Any]]


def build_worker(
    *,
    storage: ObjectStorage | None = None,
    extractor: AIExtractor | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    session_factory=None,
) -> ExtractionWorker:
    storage = storage or get_storage()
    registry = DocumentRegistry(session_factory or AsyncSessionLocal, storage)
    return ExtractionWorker(
        registry=registry,
        resolver=SourceResolver(storage, transport=transport),
        extractor=extractor or get_extractor(),
    )


async def run_process_document(payload: dict[str, Any]) -> dict[str, Any]:
    outcome = await build_worker().process(payload["document_id"])
    return outcome.as_dict()


def default_handlers() -> dict[str, JobHandler]:
    return {JOB_PROCESS_DOCUMENT: run_process_document}
