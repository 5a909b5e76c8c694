"""
Source resolution — turn a Document row into bytes plus a MIME type.

  URL documents     downloaded with httpx (streamed, size-capped)
  Upload documents  read back from the object storage backend

The MIME type sent to the AI provider is always explicit: magic bytes
first, then the server's Content-Type header, then the type the client
declared at registration. Anything outside EXTRACTABLE_CONTENT_TYPES
raises UnsupportedMediaType here, before any AI quota is spent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from docintel.core.config import settings
from docintel.core.errors import DownloadError, FileTooLarge, UnsupportedMediaType
from docintel.models.documents import Document
from docintel.processing.mime import OCTET_STREAM, detect_mime_type, normalize_content_type
from docintel.schemas.documents import EXTRACTABLE_CONTENT_TYPES
from docintel.storage.base import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSource:
    body:      bytes
    mime_type: str
    origin:    str     # "url" | "storage"

    @property
    def size_bytes(self) -> int:
        return len(self.body)


class SourceResolver:

    def __init__(
        self,
        storage: ObjectStorage,
        *,
        max_bytes: int | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._storage = storage
        self._max_bytes = max_bytes or settings.max_download_bytes
        self._timeout = timeout_seconds or settings.download_timeout_seconds
        self._transport = transport   # tests inject httpx.MockTransport

    async def resolve(self, doc: Document) -> ResolvedSource:
        if doc.source_url:
            body, header_type = await self._download(doc.source_url)
            origin = "url"
        elif doc.storage_key:
            body = await self._storage.get(doc.storage_key)
            header_type = None
            origin = "storage"
        else:
            raise DownloadError(f"Document {doc.id} has no source")

        mime_type = self._pick_mime_type(body, header_type, doc)
        if mime_type not in EXTRACTABLE_CONTENT_TYPES:
            raise UnsupportedMediaType(mime_type)

        logger.debug(
            "Source resolved | id=%s origin=%s mime=%s size=%d",
            doc.id, origin, mime_type, len(body),
        )
        return ResolvedSource(body=body, mime_type=mime_type, origin=origin)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _download(self, url: str) -> tuple[bytes, str | None]:
        chunks: list[bytes] = []
        received = 0
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._timeout,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise DownloadError(
                            f"Failed to download document: HTTP {response.status_code} from {url}"
                        )
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > self._max_bytes:
                            raise FileTooLarge(received, self._max_bytes)
                        chunks.append(chunk)
                    header_type = response.headers.get("content-type")
        except httpx.TimeoutException as exc:
            raise DownloadError(f"Timed out downloading document from {url}") from exc
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download document from {url}: {exc}") from exc

        if not received:
            raise DownloadError(f"Downloaded document from {url} is empty")
        return b"".join(chunks), header_type

    @staticmethod
    def _pick_mime_type(body: bytes, header_type: str | None, doc: Document) -> str:
        detected = detect_mime_type(body[:16])
        if detected != OCTET_STREAM:
            return detected
        for candidate in (normalize_content_type(header_type), normalize_content_type(doc.content_type)):
            if candidate and candidate != OCTET_STREAM:
                return candidate
        return detect_mime_type(b"", doc.file_name)
