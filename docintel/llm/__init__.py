"""
LLM Package

Single-purpose wrapper around the chat model used for document extraction.

Public API::

    from docintel.llm import get_extractor

    extractor = get_extractor()
    text = await extractor.extract(pdf_bytes, "application/pdf")
"""

from docintel.llm.extraction import AIExtractor, OpenAIExtractor, get_extractor

__all__ = [
    "AIExtractor",
    "OpenAIExtractor",
    "get_extractor",
]
