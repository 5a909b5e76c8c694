"""
Usage Recorder — append-only accounting of retrieval attempts.

record() never blocks and never raises: the insert runs as a background
task and a failed insert is logged, not propagated, so the request being
measured is unaffected.

track() wraps one retrieval request and records exactly one row for it,
whatever the outcome:

    async with recorder.track("/api/v1/data") as usage:
        key = await keys.verify(candidate)
        usage.document_id = key.document_id
        ...
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.models.documents import ApiUsage

logger = logging.getLogger(__name__)


@dataclass
class UsageContext:
    endpoint:    str
    document_id: str | None = None
    success:     bool = False
    status_code: int | None = None


class UsageRecorder:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._pending: set[asyncio.Task] = set()

    def record(
        self,
        document_id: str | None,
        endpoint: str,
        success: bool,
        latency_ms: int,
        status_code: int | None = None,
    ) -> None:
        task = asyncio.create_task(
            self._persist(document_id, endpoint, success, latency_ms, status_code)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(
        self,
        document_id: str | None,
        endpoint: str,
        success: bool,
        latency_ms: int,
        status_code: int | None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        ApiUsage(
                            document_id=document_id,
                            endpoint=endpoint,
                            success=success,
                            latency_ms=latency_ms,
                            status_code=status_code,
                        )
                    )
        except Exception:
            logger.exception(
                "Usage record not persisted | doc=%s endpoint=%s success=%s",
                document_id, endpoint, success,
            )

    @asynccontextmanager
    async def track(self, endpoint: str) -> AsyncGenerator[UsageContext, None]:
        usage = UsageContext(endpoint=endpoint)
        t0 = time.perf_counter()
        try:
            yield usage
        except Exception as exc:
            usage.success = False
            usage.status_code = getattr(exc, "status_code", 500)
            raise
        else:
            usage.success = True
            usage.status_code = usage.status_code or 200
        finally:
            latency_ms = int((time.perf_counter() - t0) * 1000)
            self.record(usage.document_id, endpoint, usage.success, latency_ms, usage.status_code)
            logger.info(
                "Retrieval | endpoint=%s doc=%s success=%s status=%s latency_ms=%d",
                endpoint, usage.document_id, usage.success, usage.status_code, latency_ms,
            )

    async def flush(self) -> None:
        """Wait for every pending insert (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def summary(self, document_id: str) -> dict:
        stmt = select(
            func.count(ApiUsage.id),
            func.coalesce(func.sum(case((ApiUsage.success.is_(True), 1), else_=0)), 0),
            func.avg(ApiUsage.latency_ms),
            func.max(ApiUsage.created_at),
        ).where(ApiUsage.document_id == document_id)

        async with self._session_factory() as session:
            total, successful, avg_latency, last_called = (await session.execute(stmt)).one()

        return {
            "document_id":        document_id,
            "total_calls":        total,
            "successful_calls":   int(successful),
            "failed_calls":       total - int(successful),
            "average_latency_ms": round(float(avg_latency), 1) if avg_latency is not None else None,
            "last_called_at":     last_called,
        }
