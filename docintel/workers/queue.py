"""
Job Queue — one interface, two backends.

    JobQueue.enqueue(job_name, payload) -> JobHandle

  CeleryJobQueue    durable: Redis/RabbitMQ broker, worker_concurrency=1,
                    bounded retries, failed jobs retained by Celery.
                    When the broker cannot be reached the job is handed to
                    the configured fallback queue instead of failing the
                    caller; with no fallback it raises QueueUnavailable.
  InProcessJobQueue fire-and-forget asyncio task in the current process,
                    optional delay, no retry. A failing job has already
                    marked its document failed; the queue only logs it.

The backend is chosen once from QUEUE_BACKEND by get_job_queue(); business
logic never checks which one it holds.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache, partial
from typing import Any, Mapping

from kombu.exceptions import OperationalError

from docintel.core.config import settings
from docintel.core.errors import QueueUnavailable
from docintel.workers.jobs import CELERY_TASK_NAMES, JobHandler, default_handlers

logger = logging.getLogger(__name__)

# Publish attempts against an unreachable broker before falling back
PUBLISH_RETRY_POLICY = {
    "max_retries":    2,
    "interval_start": 0,
    "interval_step":  0.5,
    "interval_max":   1,
}


@dataclass(frozen=True)
class JobHandle:
    job_id:   str
    job_name: str
    backend:  str


class JobQueue(ABC):

    backend_name: str = "abstract"

    @abstractmethod
    async def enqueue(self, job_name: str, payload: dict[str, Any]) -> JobHandle:
        """Hand the job off and return without waiting for it to run."""


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------

class InProcessJobQueue(JobQueue):

    backend_name = "inprocess"

    def __init__(self, handlers: Mapping[str, JobHandler], delay_seconds: float = 0.0) -> None:
        self._handlers = dict(handlers)
        self._delay = delay_seconds
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def enqueue(self, job_name: str, payload: dict[str, Any]) -> JobHandle:
        try:
            handler = self._handlers[job_name]
        except KeyError:
            raise ValueError(f"No handler registered for job '{job_name}'") from None

        job_id = uuid.uuid4().hex
        task = asyncio.create_task(
            self._run(job_id, job_name, handler, payload),
            name=f"job:{job_name}:{job_id}",
        )
        # Keep a strong reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("Job queued in-process | job=%s id=%s payload=%s", job_name, job_id, payload)
        return JobHandle(job_id=job_id, job_name=job_name, backend=self.backend_name)

    async def _run(self, job_id: str, job_name: str, handler: JobHandler, payload: dict[str, Any]) -> None:
        if self._delay:
            await asyncio.sleep(self._delay)
        try:
            await handler(payload)
        except Exception as exc:
            logger.error(
                "In-process job failed (no retry) | job=%s id=%s error=%s",
                job_name, job_id, exc,
            )
        else:
            logger.info("In-process job done | job=%s id=%s", job_name, job_id)

    async def drain(self) -> None:
        """Wait for every job queued so far (and any they queue) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------

class CeleryJobQueue(JobQueue):

    backend_name = "celery"

    def __init__(
        self,
        celery_app=None,
        fallback: JobQueue | None = None,
        task_names: Mapping[str, str] = CELERY_TASK_NAMES,
    ) -> None:
        if celery_app is None:
            from docintel.workers.celery_app import celery_app
        self._app = celery_app
        self._fallback = fallback
        self._task_names = dict(task_names)

    async def enqueue(self, job_name: str, payload: dict[str, Any]) -> JobHandle:
        try:
            task_name = self._task_names[job_name]
        except KeyError:
            raise ValueError(f"No Celery task registered for job '{job_name}'") from None

        # send_task blocks on the broker connection; keep it off the event loop
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None,
                partial(
                    self._app.send_task,
                    task_name,
                    kwargs=payload,
                    retry=True,
                    retry_policy=PUBLISH_RETRY_POLICY,
                ),
            )
        except (OperationalError, OSError) as exc:
            if self._fallback is None:
                logger.error("Broker unavailable, no fallback | job=%s error=%s", job_name, exc)
                raise QueueUnavailable(f"Job queue unavailable: {exc}") from exc
            logger.warning(
                "Broker unavailable, falling back | job=%s fallback=%s error=%s",
                job_name, self._fallback.backend_name, exc,
            )
            return await self._fallback.enqueue(job_name, payload)

        logger.info("Job published | job=%s task=%s id=%s", job_name, task_name, result.id)
        return JobHandle(job_id=result.id, job_name=job_name, backend=self.backend_name)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_job_queue() -> JobQueue:
    backend = settings.queue_backend.lower()

    if backend == "inprocess":
        return InProcessJobQueue(default_handlers(), settings.inprocess_job_delay_seconds)

    if backend == "celery":
        fallback = None
        if settings.queue_fallback_enabled:
            fallback = InProcessJobQueue(default_handlers(), settings.inprocess_job_delay_seconds)
        return CeleryJobQueue(fallback=fallback)

    raise ValueError(
        f"Unknown queue backend: '{backend}'. "
        f"Valid options: 'celery', 'inprocess'"
    )
