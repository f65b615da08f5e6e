from fastapi import APIRouter
from pydantic import BaseModel, Field

from casebook.core.modules.project.models import Project
from casebook.web.deps import AppDep, AuthTokenDep, ProjectKey
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["projects"])


class CreateProjectRequest(BaseModel):
    """Request to create a new project."""

    key: str = Field(
        ...,
        description="URL-friendly unique identifier (lowercase letters, numbers, hyphens; no leading/trailing/double hyphens)",
        pattern="^[a-z0-9]+(?:-[a-z0-9]+)*$",
    )
    name: str = Field(..., min_length=1, description="Human-readable project name")
    description: str = Field("", description="Project description")

    model_config = {
        "json_schema_extra": {"examples": [{"key": "checkout", "name": "Checkout", "description": "Web shop checkout flow"}]}
    }


class UpdateProjectRequest(BaseModel):
    """Request to update project name and/or description."""

    name: str | None = Field(None, min_length=1, description="New project name")
    description: str | None = Field(None, description="New project description")


class AddMemberRequest(BaseModel):
    """Request to add a member to a project."""

    username: str = Field(..., description="Username of the user to add as a member")


@router.get(
    "/projects",
    summary="List user projects",
    description="Get all projects where the authenticated user is a member.",
    operation_id="listProjects",
    responses={
        200: {"description": "List of projects"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def list_projects(app: AppDep, auth_token: AuthTokenDep) -> list[Project]:
    return await app.get_projects_by_member(auth_token)


@router.post(
    "/projects",
    summary="Create new project",
    description="Create a new project with the specified key and name. The authenticated user becomes a member.",
    operation_id="createProject",
    status_code=201,
    responses={
        201: {"description": "Project created successfully"},
        400: {"model": ErrorResponse, "description": "Invalid request data or key already exists"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def create_project(req: CreateProjectRequest, app: AppDep, auth_token: AuthTokenDep) -> Project:
    return await app.create_project(auth_token, req.key, req.name, req.description)


@router.get(
    "/projects/{project_key}",
    summary="Get project",
    description="Get a project by key. Only project members can view it.",
    operation_id="getProject",
    responses={
        200: {"description": "Project details"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
)
async def get_project(project_key: ProjectKey, app: AppDep, auth_token: AuthTokenDep) -> Project:
    return await app.get_project(auth_token, project_key)


@router.patch(
    "/projects/{project_key}",
    summary="Update project",
    description="Update project name and/or description. Only project members can update it.",
    operation_id="updateProject",
    responses={
        200: {"description": "Project updated successfully"},
        400: {"model": ErrorResponse, "description": "Invalid request data"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
)
async def update_project(project_key: ProjectKey, req: UpdateProjectRequest, app: AppDep, auth_token: AuthTokenDep) -> Project:
    return await app.update_project(auth_token, project_key, req.name, req.description)


@router.post(
    "/projects/{project_key}/members",
    summary="Add member to project",
    description="Add a new member to a project. Only existing project members can add new members.",
    operation_id="addMemberToProject",
    responses={
        200: {"description": "Member added successfully"},
        400: {"model": ErrorResponse, "description": "User is already a member"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or user not found"},
    },
)
async def add_member_to_project(project_key: ProjectKey, req: AddMemberRequest, app: AppDep, auth_token: AuthTokenDep) -> Project:
    return await app.add_project_member(auth_token, project_key, req.username)


@router.delete(
    "/projects/{project_key}/members/{username}",
    summary="Remove member from project",
    description="Remove a member from a project. The last member cannot be removed.",
    operation_id="removeMemberFromProject",
    status_code=204,
    responses={
        204: {"description": "Member removed successfully"},
        400: {"model": ErrorResponse, "description": "User is not a member or is the last member"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or user not found"},
    },
)
async def remove_member_from_project(project_key: ProjectKey, username: str, app: AppDep, auth_token: AuthTokenDep) -> None:
    await app.remove_project_member(auth_token, project_key, username)


@router.delete(
    "/projects/{project_key}",
    summary="Delete project",
    description="Delete a project and all its data including test cases, defects, comments and attachments. "
    "Only admins can delete projects.",
    operation_id="deleteProject",
    status_code=204,
    responses={
        204: {"description": "Project deleted successfully"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Admin privileges required"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
)
async def delete_project(project_key: ProjectKey, app: AppDep, auth_token: AuthTokenDep) -> None:
    await app.delete_project(auth_token, project_key)
