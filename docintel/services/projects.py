"""
Projects — user-scoped grouping of documents.

Runs on the request's session (get_db). A project that exists but belongs
to another user is reported as not found, never as forbidden, so ids
cannot be probed.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docintel.core.errors import ProjectNotFound
from docintel.models.documents import Document, Project

logger = logging.getLogger(__name__)


class ProjectService:

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def list_for_user(self, user_id: str) -> list[tuple[Project, int]]:
        """Caller's projects, newest first, each with its document count."""
        doc_count = (
            select(Document.project_id, func.count(Document.id).label("n"))
            .group_by(Document.project_id)
            .subquery()
        )
        stmt = (
            select(Project, func.coalesce(doc_count.c.n, 0))
            .outerjoin(doc_count, doc_count.c.project_id == Project.id)
            .where(Project.user_id == user_id)
            .order_by(Project.created_at.desc(), Project.id)
        )
        rows = (await self._db.execute(stmt)).all()
        return [(project, int(count)) for project, count in rows]

    async def create(self, user_id: str, name: str, description: str | None = None) -> Project:
        project = Project(user_id=user_id, name=name, description=description)
        self._db.add(project)
        await self._db.flush()
        logger.info("Project created | id=%s user=%s", project.id, user_id)
        return project

    async def get_for_user(self, user_id: str, project_id: str) -> Project:
        project = await self._db.get(Project, project_id)
        if project is None or project.user_id != user_id:
            raise ProjectNotFound(f"Project '{project_id}' not found")
        return project

    async def documents(self, project_id: str) -> list[Document]:
        rows = await self._db.scalars(
            select(Document)
            .where(Document.project_id == project_id)
            .order_by(Document.created_at.desc(), Document.id)
        )
        return list(rows.all())

    async def delete(self, project: Project) -> None:
        """Delete the project row. Callers purge its documents first."""
        await self._db.delete(project)
        await self._db.flush()
        logger.warning("Project deleted | id=%s user=%s", project.id, project.user_id)
