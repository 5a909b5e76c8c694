"""Project request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from docintel.schemas.documents import CamelModel, DocumentOut


class ProjectCreate(CamelModel):
    name:        str           = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class ProjectOut(CamelModel):
    id:             str
    name:           str
    description:    Optional[str] = None
    created_at:     datetime
    updated_at:     datetime
    document_count: int = 0


class ProjectDetail(ProjectOut):
    documents: list[DocumentOut] = Field(default_factory=list)
