"""
Celery Application Factory

Durable backend for the job queue. Broker: Redis (redis://) by default,
RabbitMQ (amqp://) works unchanged. Result backend: Redis (optional;
document state is tracked in the database, not in Celery results).

Queue topology:
  documents.extract  — extraction jobs, one at a time
  documents.requeue  — beat-driven recovery of stale queued documents

Concurrency: worker_concurrency=1 and prefetch 1 keep AI-provider usage
predictable and guarantee no two jobs write the same document at once.

Task payloads carry document ids only, never file bytes; the worker
loads bytes from the URL or the storage backend itself.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun, task_retry
from kombu import Exchange, Queue

from docintel.core.config import settings

logger = logging.getLogger(__name__)

PROCESS_DOCUMENT_TASK = "docintel.workers.tasks.process_document"
REQUEUE_STALE_TASK    = "docintel.workers.tasks.requeue_stale_documents"

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.extract",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.extract",
        durable=True,
    ),
    Queue(
        "documents.requeue",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.requeue",
        durable=True,
    ),
)

TASK_ROUTES = {
    PROCESS_DOCUMENT_TASK: {"queue": "documents.extract"},
    REQUEUE_STALE_TASK:    {"queue": "documents.requeue"},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("docintel")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,
        broker_connection_retry_on_startup=True,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.extract",
        task_default_exchange="documents",
        task_default_routing_key="documents.extract",

        # --- Reliability ---
        task_acks_late=True,         # ack only after task completes (prevents message loss on crash)
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=1,        # one document end-to-end before the next

        # --- Retries ---
        task_max_retries=settings.job_max_retries,
        task_default_retry_delay=settings.job_retry_delay_seconds,

        # --- Timeouts (must exceed download + extraction bounds) ---
        task_soft_time_limit=int(settings.extraction_timeout_seconds + settings.download_timeout_seconds + 60),
        task_time_limit=int(settings.extraction_timeout_seconds + settings.download_timeout_seconds + 120),

        # --- Result TTL ---
        result_expires=3600,

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (stale queued scanner) ---
        beat_schedule={
            "requeue-stale-documents": {
                "task":     REQUEUE_STALE_TASK,
                "schedule": settings.requeue_interval_seconds,
                "options":  {"queue": "documents.requeue"},
            },
        },

        # --- Worker ---
        worker_max_tasks_per_child=200,   # recycle workers to prevent memory bloat
    )

    app.autodiscover_tasks(["docintel.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — job lifecycle logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, (kwargs or {}).get("document_id", "-"),
    )


@task_retry.connect
def on_task_retry(request, reason, einfo, **_):
    logger.warning(
        "Task retry | task_id=%s doc=%s retries=%s reason=%s",
        request.id, (request.kwargs or {}).get("document_id", "-"), request.retries, reason,
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
        exc_info=True,
    )
