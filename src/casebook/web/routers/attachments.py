from enum import StrEnum
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from casebook.core.modules.attachment.models import (
    Attachment,
    AttachmentOwnerType,
    AttachmentStatus,
    DeletePreparation,
    DownloadUrl,
    UploadPart,
    UploadTicket,
)
from casebook.errors import ValidationError
from casebook.web.deps import AppDep, AuthTokenDep, ProjectKey
from casebook.web.openapi import ErrorResponse

router = APIRouter(tags=["attachments"])


class DeleteStep(StrEnum):
    PREPARE = "prepare"
    CONFIRM = "confirm"


class InitializeUploadRequest(BaseModel):
    """Request to start a multipart upload."""

    filename: str = Field(..., min_length=1, description="Original filename")
    file_size: int = Field(..., description="File size in bytes")
    mime_type: str = Field(..., description="MIME type of the file")


class CompleteUploadRequest(BaseModel):
    """Request to finish a multipart upload."""

    upload_id: str = Field(..., description="Multipart upload ID from initialize")
    storage_key: str = Field(..., description="Storage key from initialize")
    parts: list[UploadPart] = Field(..., description="Uploaded chunks in ascending part number order")
    owner_type: AttachmentOwnerType | None = Field(None, description="Entity type to attach the file to")
    owner_id: UUID | None = Field(None, description="Entity ID to attach the file to")


class LinkAttachmentRequest(BaseModel):
    """Request to attach an unowned attachment to an entity."""

    owner_type: AttachmentOwnerType = Field(..., description="Entity type")
    owner_id: UUID = Field(..., description="Entity ID")


class AbortUploadResponse(BaseModel):
    aborted: bool = Field(..., description="Whether the upload was discarded")


class DeleteConfirmation(BaseModel):
    deleted: bool = Field(..., description="Whether the attachment was deleted")


class AttachmentStatusResponse(BaseModel):
    status: AttachmentStatus = Field(..., description="Position in the deletion lifecycle")


@router.post(
    "/projects/{project_key}/attachments/uploads",
    summary="Start attachment upload",
    description=(
        "Start a multipart upload. Returns one presigned URL per chunk; the client uploads "
        "the chunks directly to object storage and then completes the upload."
    ),
    operation_id="initializeUpload",
    status_code=201,
    responses={
        201: {"description": "Upload started"},
        400: {"model": ErrorResponse, "description": "File too large, empty or of a type that is not allowed"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
)
async def initialize_upload(
    project_key: ProjectKey, req: InitializeUploadRequest, app: AppDep, auth_token: AuthTokenDep
) -> UploadTicket:
    return await app.initialize_upload(auth_token, project_key, req.filename, req.file_size, req.mime_type)


@router.post(
    "/projects/{project_key}/attachments/uploads/complete",
    summary="Complete attachment upload",
    description="Assemble the uploaded chunks and store the attachment, optionally attaching it to an entity.",
    operation_id="completeUpload",
    status_code=201,
    responses={
        201: {"description": "Attachment stored"},
        400: {"model": ErrorResponse, "description": "Unknown upload, or parts missing, duplicated or out of order"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project or owner not found"},
    },
)
async def complete_upload(
    project_key: ProjectKey, req: CompleteUploadRequest, app: AppDep, auth_token: AuthTokenDep
) -> Attachment:
    return await app.complete_upload(
        auth_token, project_key, req.upload_id, req.storage_key, req.parts, req.owner_type, req.owner_id
    )


@router.delete(
    "/projects/{project_key}/attachments/uploads",
    summary="Abort attachment upload",
    description="Discard a multipart upload and all chunks uploaded so far.",
    operation_id="abortUpload",
    responses={
        200: {"description": "Upload discarded"},
        400: {"model": ErrorResponse, "description": "Missing or mismatched upload_id and storage_key"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of this project"},
        404: {"model": ErrorResponse, "description": "Project not found"},
    },
)
async def abort_upload(
    project_key: ProjectKey,
    app: AppDep,
    auth_token: AuthTokenDep,
    upload_id: Annotated[str, Query(description="Multipart upload ID")] = "",
    storage_key: Annotated[str, Query(description="Storage key of the upload")] = "",
) -> AbortUploadResponse:
    aborted = await app.abort_upload(auth_token, project_key, upload_id, storage_key)
    return AbortUploadResponse(aborted=aborted)


@router.get(
    "/attachments",
    summary="List entity attachments",
    description="Get all attachments of a test case, test step, defect or comment, oldest first.",
    operation_id="listAttachments",
    responses={
        200: {"description": "List of attachments"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of the owner's project"},
        404: {"model": ErrorResponse, "description": "Owner not found"},
    },
)
async def list_attachments(
    owner_type: AttachmentOwnerType, owner_id: UUID, app: AppDep, auth_token: AuthTokenDep
) -> list[Attachment]:
    return await app.get_owner_attachments(auth_token, owner_type, owner_id)


@router.get(
    "/attachments/{attachment_id}",
    summary="Get attachment download URL",
    description="Get a presigned URL that downloads the file under its original name.",
    operation_id="getAttachmentDownloadUrl",
    responses={
        200: {"description": "Presigned download URL"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of the attachment's project"},
        404: {"model": ErrorResponse, "description": "Attachment not found"},
    },
)
async def get_attachment_download_url(attachment_id: UUID, app: AppDep, auth_token: AuthTokenDep) -> DownloadUrl:
    return await app.get_attachment_download_url(auth_token, attachment_id)


@router.get(
    "/attachments/{attachment_id}/status",
    summary="Get attachment deletion status",
    description="Whether the attachment is active or has a prepared, unconfirmed deletion.",
    operation_id="getAttachmentStatus",
    responses={
        200: {"description": "Attachment status"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of the attachment's project"},
        404: {"model": ErrorResponse, "description": "Attachment not found"},
    },
)
async def get_attachment_status(attachment_id: UUID, app: AppDep, auth_token: AuthTokenDep) -> AttachmentStatusResponse:
    status = await app.get_attachment_status(auth_token, attachment_id)
    return AttachmentStatusResponse(status=status)


@router.patch(
    "/attachments/{attachment_id}",
    summary="Link attachment",
    description="Attach an unowned attachment to a test case, test step, defect or comment of the same project.",
    operation_id="linkAttachment",
    responses={
        200: {"description": "Attachment linked"},
        400: {"model": ErrorResponse, "description": "Already attached elsewhere or owner in another project"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of the attachment's project"},
        404: {"model": ErrorResponse, "description": "Attachment or owner not found"},
    },
)
async def link_attachment(
    attachment_id: UUID, req: LinkAttachmentRequest, app: AppDep, auth_token: AuthTokenDep
) -> Attachment:
    return await app.link_attachment(auth_token, attachment_id, req.owner_type, req.owner_id)


@router.delete(
    "/attachments/{attachment_id}",
    summary="Delete attachment (two phases)",
    description=(
        "`step=prepare` returns a presigned DELETE URL and a token and marks the deletion as pending; "
        "nothing is deleted yet. After using the URL, `step=confirm` removes the attachment record. "
        "A repeated confirm returns 404."
    ),
    operation_id="deleteAttachment",
    responses={
        200: {"description": "Delete prepared or confirmed"},
        400: {"model": ErrorResponse, "description": "Invalid step or token"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Not a member of the attachment's project"},
        404: {"model": ErrorResponse, "description": "Attachment not found or already deleted"},
    },
)
async def delete_attachment(
    attachment_id: UUID,
    app: AppDep,
    auth_token: AuthTokenDep,
    step: Annotated[str | None, Query(description="'prepare' or 'confirm'")] = None,
    token: Annotated[str | None, Query(description="Token returned by prepare, optional on confirm")] = None,
) -> DeletePreparation | DeleteConfirmation:
    if step == DeleteStep.PREPARE:
        return await app.prepare_attachment_delete(auth_token, attachment_id)
    if step == DeleteStep.CONFIRM:
        deleted = await app.confirm_attachment_delete(auth_token, attachment_id, token)
        return DeleteConfirmation(deleted=deleted)
    raise ValidationError("Invalid step parameter. Use step=prepare or step=confirm")
