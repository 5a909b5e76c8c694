"""
Object Storage Factory

Selects the backend (local | s3) from STORAGE_BACKEND once. The rest of
the app only imports get_storage(), never the concrete classes.

Usage in a FastAPI route (via dependency):
    storage: ObjectStorage = Depends(get_storage)
"""

from __future__ import annotations

from functools import lru_cache

from docintel.core.config import settings
from docintel.storage.base import ObjectStorage


@lru_cache(maxsize=1)
def get_storage() -> ObjectStorage:
    backend = settings.storage_backend.lower()

    if backend == "local":
        from docintel.storage.local import LocalObjectStorage
        return LocalObjectStorage(root=settings.local_storage_dir, prefix=settings.s3_prefix)

    if backend == "s3":
        from docintel.storage.s3 import S3ObjectStorage
        return S3ObjectStorage()

    raise ValueError(
        f"Unknown storage backend: '{backend}'. "
        f"Valid options: 'local', 's3'"
    )
