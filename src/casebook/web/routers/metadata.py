"""Metadata endpoints: build information and upload limits for clients."""

from fastapi import APIRouter

from casebook.core.modules.attachment.models import UploadLimits
from casebook.web.deps import AppDep, AuthTokenDep
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["metadata"])


@router.get(
    "/metadata/version",
    summary="Get version information",
    description="Returns the Casebook package version, git commit hash, commit date and build time.",
    operation_id="getVersion",
    responses={
        200: {"description": "Version and build information"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def get_version(app: AppDep, auth_token: AuthTokenDep) -> dict[str, str]:
    return await app.get_version(auth_token)


@router.get(
    "/metadata/upload-limits",
    summary="Get upload limits",
    description="Maximum file size, chunk size, chunk count and accepted MIME types. "
    "Clients split files with these values before initializing a multipart upload.",
    operation_id="getUploadLimits",
    responses={
        200: {"description": "Upload limits"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def get_upload_limits(app: AppDep, auth_token: AuthTokenDep) -> UploadLimits:
    return await app.get_upload_limits(auth_token)
