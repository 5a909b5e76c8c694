"""
Celery Tasks — durable side of the job queue

Task: process_document
  Runs ExtractionWorker.process() for one document. The worker has
  already recorded any failure on the document before the exception
  reaches this task; the task only decides whether Celery retries:

    UpstreamError (download, AI call, storage, malformed AI output)
        → retried up to JOB_MAX_RETRIES, JOB_RETRY_DELAY_SECONDS apart
    anything else (unsupported type, file too large, ...)
        → fails immediately; the document stays failed

Task: requeue_stale_documents
  Beat task — re-publishes documents still queued after
  STALE_QUEUED_MINUTES (e.g. in-process fallback jobs lost on restart).
  Failed documents are never re-queued.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from celery import Task

from docintel.core.config import settings
from docintel.core.errors import DocumentNotFound, UpstreamError
from docintel.workers.celery_app import PROCESS_DOCUMENT_TASK, REQUEUE_STALE_TASK, celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


async def _dispose_engine() -> None:
    # Pooled connections are bound to the loop that opened them
    from docintel.db.session import engine
    await engine.dispose()


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name=PROCESS_DOCUMENT_TASK,
    bind=True,
    max_retries=settings.job_max_retries,
    default_retry_delay=settings.job_retry_delay_seconds,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_document(self: Task, *, document_id: str) -> dict[str, Any]:
    try:
        return run_async(_process_document_async(document_id))
    except DocumentNotFound:
        logger.error("Document not found | doc=%s", document_id)
        return {"document_id": document_id, "status": "not_found"}
    except UpstreamError as exc:
        logger.warning(
            "Retryable failure | doc=%s attempt=%d/%d error=%s",
            document_id, self.request.retries + 1, self.max_retries + 1, exc,
        )
        raise self.retry(exc=exc)


async def _process_document_async(document_id: str) -> dict[str, Any]:
    from docintel.workers.jobs import build_worker

    try:
        outcome = await build_worker().process(document_id)
        return outcome.as_dict()
    finally:
        await _dispose_engine()


# ---------------------------------------------------------------------------
# Stale queued scanner — runs every REQUEUE_INTERVAL_SECONDS via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name=REQUEUE_STALE_TASK,
    bind=False,
    acks_late=True,
)
def requeue_stale_documents() -> dict[str, int]:
    document_ids = run_async(_find_and_touch_stale())
    for document_id in document_ids:
        process_document.apply_async(kwargs={"document_id": document_id}, countdown=5)
        logger.info("Re-queued stale document | doc=%s", document_id)
    return {"requeued": len(document_ids)}


async def _find_and_touch_stale() -> list[str]:
    from docintel.db.session import AsyncSessionLocal
    from docintel.services.registry import DocumentRegistry
    from docintel.storage.factory import get_storage

    registry = DocumentRegistry(AsyncSessionLocal, get_storage())
    try:
        stale = await registry.find_stale_queued(timedelta(minutes=settings.stale_queued_minutes))
        # Push updated_at forward so the next scan does not publish them again
        await registry.touch(stale)
        return stale
    finally:
        await _dispose_engine()
