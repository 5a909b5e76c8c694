"""
Unit Tests — Celery tasks
══════════════════════════
Tasks run eagerly via Task.apply(); the async bodies are patched so no
broker, database or AI provider is involved.

Coverage:
  ✅ process_document returns the worker outcome
  ✅ UpstreamError → retried, then fails
  ✅ Non-retryable error → fails on the first attempt
  ✅ Unknown document → not_found result, no retry
  ✅ requeue_stale_documents re-publishes every stale id
  ✅ Celery app routing and beat schedule
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from docintel.core.errors import AIProviderError, DocumentNotFound, FileTooLarge
from docintel.workers.celery_app import PROCESS_DOCUMENT_TASK, REQUEUE_STALE_TASK, celery_app
from docintel.workers.tasks import process_document, requeue_stale_documents, run_async

BODY = "docintel.workers.tasks._process_document_async"


@pytest.mark.unit
class TestProcessDocumentTask:

    def test_success(self):
        outcome = {"document_id": "doc_a", "status": "ready", "skipped": False, "latency_ms": 12.0}

        with patch(BODY, new=AsyncMock(return_value=outcome)) as body:
            result = process_document.apply(kwargs={"document_id": "doc_a"})

        assert result.successful()
        assert result.get() == outcome
        body.assert_awaited_once_with("doc_a")

    def test_upstream_error_is_retried(self):
        with patch(BODY, new=AsyncMock(side_effect=AIProviderError("provider down"))) as body:
            result = process_document.apply(kwargs={"document_id": "doc_a"})

        assert result.failed()
        assert body.await_count > 1

    def test_non_retryable_error_fails_once(self):
        with patch(BODY, new=AsyncMock(side_effect=FileTooLarge(30_000_000, 20_000_000))) as body:
            result = process_document.apply(kwargs={"document_id": "doc_a"})

        assert result.failed()
        assert isinstance(result.result, FileTooLarge)
        assert body.await_count == 1

    def test_unknown_document(self):
        with patch(BODY, new=AsyncMock(side_effect=DocumentNotFound("doc_gone"))) as body:
            result = process_document.apply(kwargs={"document_id": "doc_gone"})

        assert result.get() == {"document_id": "doc_gone", "status": "not_found"}
        assert body.await_count == 1


@pytest.mark.unit
class TestRequeueStaleDocuments:

    def test_republishes_stale_ids(self):
        stale = AsyncMock(return_value=["doc_a", "doc_b"])

        with patch("docintel.workers.tasks._find_and_touch_stale", new=stale), \
             patch.object(process_document, "apply_async") as publish:
            result = requeue_stale_documents.apply()

        assert result.get() == {"requeued": 2}
        published = [c.kwargs["kwargs"]["document_id"] for c in publish.call_args_list]
        assert published == ["doc_a", "doc_b"]

    def test_nothing_stale(self):
        with patch("docintel.workers.tasks._find_and_touch_stale", new=AsyncMock(return_value=[])), \
             patch.object(process_document, "apply_async") as publish:
            result = requeue_stale_documents.apply()

        assert result.get() == {"requeued": 0}
        publish.assert_not_called()


@pytest.mark.unit
class TestCeleryConfig:

    def test_routes(self):
        routes = celery_app.conf.task_routes
        assert routes[PROCESS_DOCUMENT_TASK] == {"queue": "documents.extract"}
        assert routes[REQUEUE_STALE_TASK] == {"queue": "documents.requeue"}

    def test_one_job_at_a_time(self):
        assert celery_app.conf.worker_concurrency == 1
        assert celery_app.conf.worker_prefetch_multiplier == 1
        assert celery_app.conf.task_acks_late is True

    def test_beat_schedules_requeue(self):
        entry = celery_app.conf.beat_schedule["requeue-stale-documents"]
        assert entry["task"] == REQUEUE_STALE_TASK


@pytest.mark.unit
def test_run_async_from_sync_context():
    async def _answer() -> int:
        return 42

    assert run_async(_answer()) == 42
