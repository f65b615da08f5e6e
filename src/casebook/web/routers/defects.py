from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from casebook.core.modules.defect.models import (
    Defect,
    DefectCreate,
    DefectSeverity,
    DefectStatistics,
    DefectStatus,
    DefectUpdate,
)
from casebook.core.modules.testcase.models import Priority
from casebook.core.pagination import PaginationResult
from casebook.web.deps import AppDep, AuthTokenDep, PageLimit, PageOffset, ProjectKey
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["defects"])


class BulkStatusRequest(BaseModel):
    """Request to change the status of several defects."""

    defect_ids: list[str] = Field(..., min_length=1, description="Defect ids, e.g. ['DEF-1', 'DEF-3']")
    status: DefectStatus = Field(..., description="New status")


class BulkStatusResponse(BaseModel):
    updated: int = Field(..., description="Number of defects whose status changed")


@router.get(
    "/projects/{project_key}/defects",
    summary="List project defects",
    description="Get paginated defects of a project, newest first. Repeated filter parameters match any of their values.",
    operation_id="listDefects",
    responses={
        200: {"description": "Paginated list of defects"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or assignee not found"},
    },
)
async def list_defects(
    project_key: ProjectKey,
    app: AppDep,
    auth_token: AuthTokenDep,
    limit: PageLimit = 50,
    offset: PageOffset = 0,
    status: Annotated[list[DefectStatus] | None, Query(description="Only defects with one of these statuses")] = None,
    severity: Annotated[list[DefectSeverity] | None, Query(description="Only defects with one of these severities")] = None,
    priority: Annotated[list[Priority] | None, Query(description="Only defects with one of these priorities")] = None,
    assignee: Annotated[str | None, Query(description="Only defects assigned to this username")] = None,
    search: Annotated[str | None, Query(description="Substring of title, description or defect id")] = None,
) -> PaginationResult[Defect]:
    return await app.get_defects(auth_token, project_key, limit, offset, status, severity, priority, assignee, search)


@router.post(
    "/projects/{project_key}/defects",
    summary="Create defect",
    description="Create a defect. It gets the next free id of the project (DEF-1, DEF-2, ...).",
    operation_id="createDefect",
    status_code=201,
    responses={
        201: {"description": "Defect created successfully"},
        400: {"model": ErrorResponse, "description": "Invalid defect data, assignee or linked test cases"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
        503: {"model": ErrorResponse, "description": "No free id could be allocated, safe to retry"},
    },
)
async def create_defect(project_key: ProjectKey, data: DefectCreate, app: AppDep, auth_token: AuthTokenDep) -> Defect:
    return await app.create_defect(auth_token, project_key, data)


@router.get(
    "/projects/{project_key}/defects/statistics",
    summary="Get defect statistics",
    description="Count the defects of a project by status, severity and priority.",
    operation_id="getDefectStatistics",
    responses={
        200: {"description": "Defect counts"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
)
async def get_defect_statistics(project_key: ProjectKey, app: AppDep, auth_token: AuthTokenDep) -> DefectStatistics:
    return await app.get_defect_statistics(auth_token, project_key)


@router.post(
    "/projects/{project_key}/defects/bulk-status",
    summary="Change status of several defects",
    description="Set the same status on several defects. Nothing changes if one of them does not exist.",
    operation_id="bulkUpdateDefectStatus",
    responses={
        200: {"description": "Statuses changed"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or one of the defects not found"},
    },
)
async def bulk_update_defect_status(
    project_key: ProjectKey, req: BulkStatusRequest, app: AppDep, auth_token: AuthTokenDep
) -> BulkStatusResponse:
    updated = await app.bulk_update_defect_status(auth_token, project_key, req.defect_ids, req.status)
    return BulkStatusResponse(updated=updated)


@router.get(
    "/projects/{project_key}/defects/{defect_id}",
    summary="Get defect",
    description="Get a defect by its project-scoped id.",
    operation_id="getDefect",
    responses={
        200: {"description": "Defect details"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or defect not found"},
    },
)
async def get_defect(project_key: ProjectKey, defect_id: str, app: AppDep, auth_token: AuthTokenDep) -> Defect:
    return await app.get_defect(auth_token, project_key, defect_id)


@router.patch(
    "/projects/{project_key}/defects/{defect_id}",
    summary="Update defect",
    description="Partially update a defect. Assignee, environment, due date and progress can be cleared with null.",
    operation_id="updateDefect",
    responses={
        200: {"description": "Defect updated successfully"},
        400: {"model": ErrorResponse, "description": "Invalid defect data or assignee"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or defect not found"},
    },
)
async def update_defect(
    project_key: ProjectKey, defect_id: str, data: DefectUpdate, app: AppDep, auth_token: AuthTokenDep
) -> Defect:
    return await app.update_defect(auth_token, project_key, defect_id, data)


@router.delete(
    "/projects/{project_key}/defects/{defect_id}",
    summary="Delete defect",
    description="Delete a defect with its comments and all their attachments.",
    operation_id="deleteDefect",
    status_code=204,
    responses={
        204: {"description": "Defect deleted successfully"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or defect not found"},
    },
)
async def delete_defect(project_key: ProjectKey, defect_id: str, app: AppDep, auth_token: AuthTokenDep) -> None:
    await app.delete_defect(auth_token, project_key, defect_id)
