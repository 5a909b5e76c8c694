"""
File type detection and filename hygiene.

MIME types are detected from magic bytes, falling back to the filename
extension only when the bytes say nothing. The client's Content-Type
header is never trusted.
"""

from __future__ import annotations

import mimetypes
import re

# Checked against the first bytes of the content, in order
_MAGIC_BYTES: tuple[tuple[bytes, str], ...] = (
    (b"%PDF",              "application/pdf"),
    (b"\xff\xd8\xff",      "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a",            "image/gif"),
    (b"GIF89a",            "image/gif"),
)

OCTET_STREAM = "application/octet-stream"


def detect_mime_type(head: bytes, filename: str | None = None) -> str:
    """
    Detect MIME type using magic bytes first, falling back to extension.
    """
    for magic, mime in _MAGIC_BYTES:
        if head.startswith(magic):
            return mime

    # RIFF container: WebP carries its tag at offset 8
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"

    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            return guessed
    return OCTET_STREAM


def normalize_content_type(value: str | None) -> str | None:
    """'Image/PNG; charset=binary' -> 'image/png'."""
    if not value:
        return None
    return value.split(";", 1)[0].strip().lower() or None


def sanitize_filename(filename: str, default: str = "upload") -> str:
    """
    Strip path components and replace unsafe characters.
    Returns only the basename with OS-safe characters.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1].strip()
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename).lstrip(".")
    return safe[:200] or default
