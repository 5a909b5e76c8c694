"""
AI Extraction — one multimodal call per document.

The document bytes are always sent inline as base64 with an explicit MIME
type, never as a URL for the provider to fetch:

    application/pdf  → {"type": "file", "file": {"file_data": "data:...;base64,..."}}
    image/*          → {"type": "image_url", "image_url": {"url": "data:...;base64,..."}}

The call is bounded by EXTRACTION_TIMEOUT_SECONDS. Failures surface as
the UpstreamError family so the worker can record them and the durable
queue can retry:

    timeout               → AITimeout
    provider/network error → AIProviderError

The extractor returns raw text; parsing and validation live in
docintel.processing.parser.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from abc import ABC, abstractmethod
from functools import lru_cache

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from docintel.core.config import settings
from docintel.core.errors import AIProviderError, AITimeout

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = "You are an expert document analyst. You answer with a single JSON object and nothing else."

EXTRACTION_PROMPT = """Analyze the entire attached document and return a single JSON object with these fields:

{
  "summary": "A comprehensive summary of the document (2-3 paragraphs)",
  "keyPoints": ["5-7 key takeaways"],
  "entities": ["Important people, organizations and dates mentioned"],
  "sentiment": "Overall sentiment: Neutral, Positive or Negative",
  "category": "Document category, e.g. Financial, Legal, Technical, General",
  "sections": [{"title": "Section or chapter title", "summary": "One or two sentences"}]
}

Rules:
- Use only the document content; do not add external knowledge.
- If information is missing, use null.
- Output valid JSON only."""


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class AIExtractor(ABC):
    """bytes + MIME type → provider's text response."""

    name: str = "abstract"

    @abstractmethod
    async def extract(self, body: bytes, mime_type: str, *, file_name: str = "document") -> str:
        ...


# ---------------------------------------------------------------------------
# OpenAI (langchain-openai)
# ---------------------------------------------------------------------------

def build_content_block(body: bytes, mime_type: str, file_name: str) -> dict:
    data_uri = f"data:{mime_type};base64,{base64.b64encode(body).decode('ascii')}"
    if mime_type == "application/pdf":
        return {"type": "file", "file": {"filename": file_name, "file_data": data_uri}}
    return {"type": "image_url", "image_url": {"url": data_uri}}


def _response_text(content) -> str:
    """AIMessage.content is a str or a list of content blocks."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class OpenAIExtractor(AIExtractor):

    name = "openai"

    def __init__(
        self,
        llm: BaseChatModel | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._timeout = timeout_seconds or settings.extraction_timeout_seconds
        self._llm = llm or self._build_llm()

    def _build_llm(self) -> BaseChatModel:
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=settings.llm_model,
            api_key=settings.openai_api_key,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=self._timeout,
            max_retries=1,
        )

    def build_messages(self, body: bytes, mime_type: str, file_name: str) -> list[BaseMessage]:
        return [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(
                content=[
                    {"type": "text", "text": EXTRACTION_PROMPT},
                    build_content_block(body, mime_type, file_name),
                ]
            ),
        ]

    async def extract(self, body: bytes, mime_type: str, *, file_name: str = "document") -> str:
        messages = self.build_messages(body, mime_type, file_name)

        t0 = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._llm.ainvoke(messages), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("AI extraction timed out | model=%s timeout=%ss", settings.llm_model, self._timeout)
            raise AITimeout(self._timeout) from exc
        except Exception as exc:
            logger.warning("AI extraction failed | model=%s error=%s: %s", settings.llm_model, type(exc).__name__, exc)
            raise AIProviderError(f"AI extraction failed: {type(exc).__name__}: {exc}") from exc

        latency_ms = (time.perf_counter() - t0) * 1000
        text = _response_text(result.content)
        logger.info(
            "AI extraction ok | model=%s mime=%s input_bytes=%d output_chars=%d latency_ms=%.0f",
            settings.llm_model, mime_type, len(body), len(text), latency_ms,
        )
        return text


@lru_cache(maxsize=1)
def get_extractor() -> AIExtractor:
    return OpenAIExtractor()
