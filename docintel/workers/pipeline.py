"""
Extraction Worker — one document, end to end.

  1. Load the Document; a ready document is skipped (duplicate delivery)
  2. Status → processing
  3. Resolve bytes + MIME type (URL download or storage read)
  4. AI extraction (bounded by EXTRACTION_TIMEOUT_SECONDS)
  5. Parse and validate the JSON object
  6. Status → ready, DocumentData written in the same transaction

Any failure in steps 3-6 sets status → failed with a human-readable error,
then re-raises so the job queue can apply its retry policy. The document's
error field, not the exception, is what clients see.

The worker is transport-agnostic: Celery tasks and the in-process queue
both call ExtractionWorker.process().
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass

from docintel.core.errors import DocIntelError, DocumentNotFound, InvalidStatusTransition
from docintel.llm.extraction import AIExtractor
from docintel.processing.parser import parse_extraction
from docintel.processing.sources import SourceResolver
from docintel.schemas.documents import DocumentStatus
from docintel.services.registry import DocumentRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOutcome:
    document_id: str
    status:      str
    skipped:     bool = False
    latency_ms:  float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


def describe_failure(exc: BaseException) -> str:
    """Message stored on Document.error."""
    if isinstance(exc, DocIntelError):
        return exc.message
    return f"Processing failed: {type(exc).__name__}: {exc}"


class ExtractionWorker:

    def __init__(
        self,
        registry:  DocumentRegistry,
        resolver:  SourceResolver,
        extractor: AIExtractor,
    ) -> None:
        self._registry  = registry
        self._resolver  = resolver
        self._extractor = extractor

    async def process(self, document_id: str) -> ProcessingOutcome:
        doc = await self._registry.get_by_id(document_id)

        if doc.status == DocumentStatus.READY.value:
            logger.warning("Document already ready, skipping | doc=%s", document_id)
            return ProcessingOutcome(document_id, doc.status, skipped=True)

        t0 = time.perf_counter()
        logger.info("Processing | doc=%s status=%s file=%s", document_id, doc.status, doc.file_name)

        if doc.status == DocumentStatus.PROCESSING.value:
            # Redelivered after a worker crash (acks_late); resume in place
            logger.warning("Resuming document left in processing | doc=%s", document_id)
        else:
            try:
                doc = await self._registry.update_status(document_id, DocumentStatus.PROCESSING)
            except InvalidStatusTransition as exc:
                # Another delivery claimed it between our read and our write
                logger.warning("Document claimed elsewhere, skipping | doc=%s reason=%s", document_id, exc)
                return ProcessingOutcome(document_id, exc.current, skipped=True)

        try:
            source = await self._resolver.resolve(doc)
            raw = await self._extractor.extract(source.body, source.mime_type, file_name=doc.file_name)
            data = parse_extraction(raw)
            await self._registry.mark_ready(document_id, data)

        except Exception as exc:
            message = describe_failure(exc)
            logger.error(
                "Processing failed | doc=%s error_type=%s error=%s",
                document_id, type(exc).__name__, message,
            )
            await self._record_failure(document_id, message)
            raise

        latency_ms = (time.perf_counter() - t0) * 1000
        logger.info(
            "Processing complete | doc=%s fields=%d latency_ms=%.0f",
            document_id, len(data), latency_ms,
        )
        return ProcessingOutcome(document_id, DocumentStatus.READY.value, latency_ms=latency_ms)

    async def _record_failure(self, document_id: str, message: str) -> None:
        try:
            await self._registry.mark_failed(document_id, message)
        except (DocumentNotFound, InvalidStatusTransition) as exc:
            # Purged mid-flight, or another delivery already finished it
            logger.warning("Could not mark document failed | doc=%s reason=%s", document_id, exc)
        except Exception:
            logger.exception("Could not mark document failed | doc=%s", document_id)
