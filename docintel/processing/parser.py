"""
AI response parsing.

The provider answers in free text: sometimes bare JSON, often JSON inside
```json fences, occasionally with a sentence of preamble. The response is
treated as untrusted input:

  1. Pair every brace in a single pass, honouring string literals and
     escapes, so braces inside values do not end the object early. An
     unclosed brace is skipped and the scan resumes at the next one.
  2. Return the first span that decodes to a JSON object.
  3. Reject it unless at least one expected top-level field is present.

Every rejection raises InvalidAIResponse.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator

from docintel.core.errors import InvalidAIResponse

logger = logging.getLogger(__name__)

# Both camelCase and snake_case spellings occur in provider output
EXPECTED_FIELDS: frozenset[str] = frozenset(
    {
        "summary",
        "keyPoints",
        "key_points",
        "keyInsights",
        "key_insights",
        "entities",
        "sentiment",
        "category",
        "sections",
    }
)


def _match_braces(text: str, start: int) -> dict[int, int]:
    """Map each '{' from text[start] on to its closing '}' in one pass; unclosed braces are absent."""
    matches: dict[int, int] = {}
    open_at: list[int] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            open_at.append(i)
        elif ch == "}" and open_at:
            matches[open_at.pop()] = i
    return matches


def iter_object_spans(text: str) -> Iterator[str]:
    """Yield balanced top-level {...} substrings, left to right."""
    start = text.find("{")
    if start == -1:
        return
    matches = _match_braces(text, start)
    while start != -1:
        end = matches.get(start)
        if end is None:
            start = text.find("{", start + 1)
            continue
        yield text[start:end + 1]
        start = text.find("{", end + 1)


def extract_json_object(text: str) -> dict[str, Any]:
    for span in iter_object_spans(text):
        try:
            value = json.loads(span)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    raise InvalidAIResponse("AI response did not contain a JSON object")


def parse_extraction(text: str) -> dict[str, Any]:
    """Locate, decode and minimally validate the extraction object."""
    if not text or not text.strip():
        raise InvalidAIResponse("AI response was empty")

    obj = extract_json_object(text)
    if EXPECTED_FIELDS.isdisjoint(obj):
        logger.warning("AI response missing expected fields | keys=%s", sorted(obj)[:10])
        raise InvalidAIResponse(
            "AI response JSON has none of the expected fields "
            "(summary, keyPoints, entities, sentiment, category, sections)"
        )
    return obj
