"""
Object Storage — Abstract Base

Uploaded document bytes live in an object store, addressed by a key the
server generates. Concrete backends (local filesystem, S3) implement this
interface; the registry and the extraction worker only speak this
protocol.

Key contract:
  - Keys are built server-side by build_key(); the client's filename only
    contributes a sanitized extension, never a path component.
  - get() raises StorageError when the object is missing or unreadable.
  - delete() is idempotent: deleting a missing key is not an error.
"""

from __future__ import annotations

import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoredObject:
    """Returned by put(); key is what the Document row stores."""
    key:          str
    size_bytes:   int
    content_type: str
    url:          str           # file:// or s3:// locator, for logs and operators


_EXT_RE = re.compile(r"^\.[a-z0-9]{1,8}$")


def build_key(prefix: str, filename: str) -> str:
    """
    <prefix>/<uuid4 hex><ext>

    The extension is kept for operator convenience only; it is dropped
    when it contains anything other than short alphanumerics.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    ext = ""
    if "." in basename:
        candidate = "." + basename.rsplit(".", 1)[-1].lower()
        if _EXT_RE.match(candidate):
            ext = candidate
    return f"{prefix.strip('/')}/{uuid.uuid4().hex}{ext}"


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class ObjectStorage(ABC):
    """Store bytes, get back a key."""

    backend_name: str = "abstract"

    @abstractmethod
    async def put(self, filename: str, body: bytes, content_type: str) -> StoredObject:
        """Persist body under a freshly generated key."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the bytes stored under key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the object; missing keys are ignored."""
