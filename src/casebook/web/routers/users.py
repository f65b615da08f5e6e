from fastapi import APIRouter
from pydantic import BaseModel, Field

from casebook.core.modules.user.models import UserRole, UserView
from casebook.web.deps import AppDep, AuthTokenDep
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["users"])


class CreateUserRequest(BaseModel):
    """Request to create a new user."""

    username: str = Field(..., min_length=1, description="Username for the new user")
    password: str = Field(..., min_length=1, description="Password for the new user")
    role: UserRole = Field(UserRole.MEMBER, description="Admins manage users and may delete projects")


class SetRoleRequest(BaseModel):
    """Request to change the role of a user."""

    role: UserRole = Field(..., description="New role")


@router.get(
    "/users",
    summary="List all users",
    description="Get all users with their roles. Any authenticated user may list them to pick project members or assignees.",
    operation_id="listUsers",
    responses={
        200: {"description": "List of all users"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def list_users(app: AppDep, auth_token: AuthTokenDep) -> list[UserView]:
    return await app.get_all_users(auth_token)


@router.post(
    "/users",
    summary="Create new user",
    description="Create a member or admin account. Only accessible by admin users.",
    operation_id="createUser",
    responses={
        201: {"description": "User created successfully"},
        400: {"model": ErrorResponse, "description": "Invalid username or password, or username taken"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Admin privileges required"},
    },
    status_code=201,
)
async def create_user(create_data: CreateUserRequest, app: AppDep, auth_token: AuthTokenDep) -> UserView:
    return await app.create_user(auth_token, create_data.username, create_data.password, create_data.role)


@router.delete(
    "/users/{username}",
    summary="Delete user",
    description="Delete a user account and end its sessions. Only accessible by admin users. "
    "Users must be removed from all projects first.",
    operation_id="deleteUser",
    responses={
        204: {"description": "User deleted successfully"},
        400: {"model": ErrorResponse, "description": "Cannot delete user (in projects or self-deletion)"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Admin privileges required"},
        404: {"model": ErrorResponse, "description": "User not found"},
    },
    status_code=204,
)
async def delete_user(username: str, app: AppDep, auth_token: AuthTokenDep) -> None:
    await app.delete_user(auth_token, username)


@router.put(
    "/users/{username}/role",
    summary="Change user role",
    description="Promote a member to admin or demote an admin. Only accessible by admin users. The last admin keeps the role.",
    operation_id="setUserRole",
    responses={
        200: {"description": "User with the new role"},
        400: {"model": ErrorResponse, "description": "Last admin cannot be demoted"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Admin privileges required"},
        404: {"model": ErrorResponse, "description": "User not found"},
    },
)
async def set_user_role(username: str, request: SetRoleRequest, app: AppDep, auth_token: AuthTokenDep) -> UserView:
    return await app.set_user_role(auth_token, username, request.role)
