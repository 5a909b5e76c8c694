"""
Projects API Router — identity-scoped grouping of documents.

Every route requires an identity (see docintel.auth.identity). A project
owned by someone else answers 404, exactly like a missing one.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status

from docintel.api.dependencies import Projects, Registry
from docintel.auth.identity import CurrentIdentity
from docintel.core.errors import DocumentNotFound
from docintel.schemas.documents import DocumentOut, ErrorResponse
from docintel.schemas.projects import ProjectCreate, ProjectDetail, ProjectOut

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/projects",
    tags=["Projects"],
    responses={401: {"model": ErrorResponse, "description": "No verified identity"}},
)


@router.get("", response_model=list[ProjectOut], summary="List the caller's projects")
async def list_projects(identity: CurrentIdentity, projects: Projects) -> list[ProjectOut]:
    rows = await projects.list_for_user(identity.user_id)
    return [
        ProjectOut.model_validate(project).model_copy(update={"document_count": count})
        for project, count in rows
    ]


@router.post(
    "",
    response_model=ProjectOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a project",
    responses={400: {"model": ErrorResponse, "description": "Missing or blank name"}},
)
async def create_project(
    body:     ProjectCreate,
    identity: CurrentIdentity,
    projects: Projects,
) -> ProjectOut:
    project = await projects.create(identity.user_id, body.name, body.description)
    return ProjectOut.model_validate(project)


@router.get(
    "/{project_id}",
    response_model=ProjectDetail,
    summary="Fetch a project with its documents",
    responses={404: {"model": ErrorResponse}},
)
async def get_project(project_id: str, identity: CurrentIdentity, projects: Projects) -> ProjectDetail:
    project = await projects.get_for_user(identity.user_id, project_id)
    documents = [DocumentOut.model_validate(doc) for doc in await projects.documents(project_id)]
    return ProjectDetail.model_validate(project).model_copy(
        update={"documents": documents, "document_count": len(documents)}
    )


@router.delete(
    "/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a project and purge its documents",
    responses={404: {"model": ErrorResponse}},
)
async def delete_project(
    project_id: str,
    identity:   CurrentIdentity,
    projects:   Projects,
    registry:   Registry,
) -> Response:
    project = await projects.get_for_user(identity.user_id, project_id)

    # Documents go first (data, keys, stored objects), then the project row
    for doc in await projects.documents(project_id):
        try:
            await registry.purge(doc.id)
        except DocumentNotFound:
            continue

    await projects.delete(project)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
