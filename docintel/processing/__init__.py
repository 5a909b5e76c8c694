"""
Document Processing Package
════════════════════════════

Everything the extraction worker needs between "a Document row" and
"a validated JSON object":

Modules
───────
  mime.py     Magic-byte MIME detection and filename sanitizing
  sources.py  Fetch bytes from a URL (httpx) or the storage backend
  parser.py   Locate and validate the JSON object in an AI response

Design principles
─────────────────
  • Every component is stateless or dependency-injected.
  • Unsupported input fails here, before any AI quota is spent.
"""

from docintel.processing.mime import detect_mime_type, sanitize_filename
from docintel.processing.parser import EXPECTED_FIELDS, parse_extraction
from docintel.processing.sources import ResolvedSource, SourceResolver

__all__ = [
    "detect_mime_type",
    "sanitize_filename",
    "EXPECTED_FIELDS",
    "parse_extraction",
    "ResolvedSource",
    "SourceResolver",
]
