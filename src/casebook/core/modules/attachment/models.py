from datetime import datetime
from enum import StrEnum
from typing import Self
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from casebook.core.db import MongoModel
from casebook.utils import now


class AttachmentOwnerType(StrEnum):
    """Kinds of entities an attachment can belong to."""

    TEST_CASE = "test_case"
    TEST_STEP = "test_step"
    DEFECT = "defect"
    COMMENT = "comment"


class AttachmentStatus(StrEnum):
    """Deletion lifecycle of an attachment."""

    ACTIVE = "active"
    PENDING_DELETE = "pending_delete"  # A delete was prepared but not confirmed yet
    DELETED = "deleted"


class Attachment(MongoModel):
    """Metadata of a file stored in the blob store.

    Owned by at most one entity at a time. Attachments uploaded before their
    owner exists stay unowned until linked.
    """

    project_id: UUID
    storage_key: str  # Object key in the blob store
    filename: str  # Original filename from user
    size: int  # File size in bytes
    mime_type: str
    uploaded_by: UUID
    owner_type: AttachmentOwnerType | None = None
    owner_id: UUID | None = None
    created_at: datetime = Field(default_factory=now)

    @model_validator(mode="after")
    def check_owner(self) -> Self:
        if (self.owner_type is None) != (self.owner_id is None):
            raise ValueError("owner_type and owner_id must be set together")
        return self


class UploadSession(MongoModel):
    """Server-side record of a multipart upload between initialize and complete/abort.

    Indexed on upload_id - unique.
    """

    upload_id: str
    storage_key: str
    project_id: UUID
    user_id: UUID
    filename: str
    size: int
    mime_type: str
    part_count: int
    created_at: datetime = Field(default_factory=now)


class DeletionIntent(MongoModel):
    """Marks an attachment whose deletion was prepared but not confirmed.

    Indexed on attachment_id - unique, expires_at.
    """

    attachment_id: UUID
    storage_key: str
    token: str
    created_at: datetime = Field(default_factory=now)
    expires_at: datetime


class UploadPart(BaseModel):
    """A chunk acknowledged by the blob store."""

    part_number: int = Field(..., ge=1, description="1-based chunk index")
    etag: str = Field(..., min_length=1, description="Integrity tag returned by the blob store for the chunk")


class UploadTicket(BaseModel):
    """Everything a client needs to upload the chunks of a file directly to the blob store."""

    upload_id: str = Field(..., description="Multipart upload ID")
    storage_key: str = Field(..., description="Object key the file will be stored under")
    chunk_size: int = Field(..., description="Size of every chunk except possibly the last, in bytes")
    chunk_urls: list[str] = Field(..., description="Presigned PUT URL per chunk, in part order")


class DeletePreparation(BaseModel):
    """Result of the first phase of an attachment deletion."""

    delete_url: str = Field(..., description="Presigned DELETE URL for the stored object")
    token: str = Field(..., description="Deletion token, may be passed back on confirm")
    expires_at: datetime = Field(..., description="Earliest of the delete URL expiry and the pending deletion expiry")


class UploadLimits(BaseModel):
    """Limits a client needs to split a file into chunks before initializing an upload."""

    max_file_size: int = Field(..., description="Largest accepted file, in bytes")
    chunk_size: int = Field(..., description="Size of every chunk except possibly the last, in bytes")
    max_chunks: int = Field(..., description="Largest number of chunks per upload")
    allowed_mime_types: list[str] = Field(..., description="Accepted MIME types")


class DownloadUrl(BaseModel):
    """Presigned download link for an attachment."""

    url: str = Field(..., description="Presigned GET URL")
    filename: str = Field(..., description="Original filename")
    mime_type: str = Field(..., description="MIME type")
    expires_in: int = Field(..., description="Lifetime of the URL in seconds")


class ReconcileReport(BaseModel):
    """Outcome of a sweep over expired deletion intents."""

    completed: int = 0  # Blob was gone, metadata removed
    abandoned: int = 0  # Blob still present, intent dropped
