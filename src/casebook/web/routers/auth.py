from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, Field

from casebook.core.modules.session.service import SESSION_TTL
from casebook.web.deps import AUTH_COOKIE, AppDep, AuthTokenDep
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    """Authentication request."""

    username: str = Field(..., description="Username for authentication")
    password: str = Field(..., description="Password for authentication")


class LoginResponse(BaseModel):
    """Authentication response."""

    token: str = Field(..., description="Authentication token for subsequent requests")
    expires_in: int = Field(SESSION_TTL, description="Seconds until the session expires")


@router.post(
    "/auth/login",
    summary="Authenticate user",
    description="Authenticate with username and password. The token works as a Bearer token and is also set as a cookie.",
    operation_id="login",
    responses={
        200: {"description": "Successfully authenticated"},
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
    },
)
async def login(login_data: LoginRequest, app: AppDep, request: Request, response: Response) -> LoginResponse:
    token = await app.login(login_data.username, login_data.password)

    # Browser clients authenticate with the cookie, API clients with the Bearer token
    response.set_cookie(
        key=AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
        max_age=SESSION_TTL,
    )

    return LoginResponse(token=token)


@router.post(
    "/auth/logout",
    summary="End session",
    description="Invalidate the current authentication session.",
    operation_id="logout",
    status_code=204,
    responses={
        204: {"description": "Successfully logged out"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def logout(app: AppDep, auth_token: AuthTokenDep, response: Response) -> None:
    await app.logout(auth_token)
    response.delete_cookie(AUTH_COOKIE)
