import asyncio
import contextlib
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from casebook.core.core import Service
from casebook.core.modules.attachment.deletion import TwoPhaseDeleter
from casebook.core.modules.attachment.models import (
    Attachment,
    AttachmentOwnerType,
    AttachmentStatus,
    DeletePreparation,
    DownloadUrl,
    ReconcileReport,
    UploadLimits,
    UploadPart,
    UploadTicket,
)
from casebook.core.modules.attachment.repository import MongoAttachmentStore
from casebook.core.modules.attachment.upload import MultipartUploader
from casebook.core.modules.attachment.utils import sanitize_filename
from casebook.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class AttachmentService(Service):
    """Manages attachment uploads, downloads, ownership and deletion."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._store = MongoAttachmentStore(database)
        self._uploader: MultipartUploader | None = None
        self._deleter: TwoPhaseDeleter | None = None
        self._reconcile_task: asyncio.Task[None] | None = None

    @property
    def uploader(self) -> MultipartUploader:
        if self._uploader is None:
            config = self.core.config
            self._uploader = MultipartUploader(
                self._store,
                self.core.blob_store,
                max_size=config.max_upload_size,
                chunk_size=config.upload_chunk_size,
                allowed_mime_types=config.allowed_mime_types,
                url_expires=config.presigned_url_expires,
            )
        return self._uploader

    @property
    def deleter(self) -> TwoPhaseDeleter:
        if self._deleter is None:
            config = self.core.config
            self._deleter = TwoPhaseDeleter(
                self._store,
                self.core.blob_store,
                url_expires=config.presigned_url_expires,
                intent_ttl=config.delete_intent_ttl,
            )
        return self._deleter

    async def on_start(self) -> None:
        """Create indexes and start the reconciliation sweep if enabled."""
        await self._store.create_indexes()
        interval = self.core.config.reconcile_interval
        if interval > 0:
            self._reconcile_task = asyncio.create_task(self._reconcile_loop(interval))
            logger.debug("attachment_reconcile_started", interval=interval)

    async def on_stop(self) -> None:
        if self._reconcile_task is not None:
            self._reconcile_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconcile_task
            self._reconcile_task = None

    async def _reconcile_loop(self, interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reconcile_deletions()
            except Exception:
                logger.exception("attachment_reconcile_failed")

    async def get_attachment(self, attachment_id: UUID) -> Attachment:
        """Get attachment by ID.

        Raises:
            NotFoundError: If attachment not found
        """
        attachment = await self._store.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError(f"Attachment not found: {attachment_id}")
        return attachment

    async def list_owner_attachments(self, owner_type: AttachmentOwnerType, owner_id: UUID) -> list[Attachment]:
        """Get all attachments of an entity, oldest first."""
        return await self._store.list_by_owner(owner_type, owner_id)

    async def get_owner_project_id(self, owner_type: AttachmentOwnerType, owner_id: UUID) -> UUID:
        """Resolve the project an attachment owner belongs to.

        Raises:
            NotFoundError: If the owner does not exist
        """
        services = self.core.services
        match owner_type:
            case AttachmentOwnerType.TEST_CASE:
                return (await services.testcase.get_test_case(owner_id)).project_id
            case AttachmentOwnerType.TEST_STEP:
                return (await services.testcase.get_test_case_by_step(owner_id)).project_id
            case AttachmentOwnerType.DEFECT:
                return (await services.defect.get_defect(owner_id)).project_id
            case AttachmentOwnerType.COMMENT:
                return (await services.comment.get_comment(owner_id)).project_id

    async def _check_owner(self, project_id: UUID, owner_type: AttachmentOwnerType | None, owner_id: UUID | None) -> None:
        if owner_type is None and owner_id is None:
            return
        if owner_type is None or owner_id is None:
            raise ValidationError("owner_type and owner_id must be given together")
        if await self.get_owner_project_id(owner_type, owner_id) != project_id:
            raise ValidationError("Attachment and owner belong to different projects")

    async def initialize_upload(
        self, project_id: UUID, user_id: UUID, filename: str, file_size: int, mime_type: str
    ) -> UploadTicket:
        """Start a multipart upload into the project."""
        self.core.services.project.get_project(project_id)
        return await self.uploader.initialize(project_id, user_id, filename, file_size, mime_type)

    async def complete_upload(
        self,
        project_id: UUID,
        upload_id: str,
        storage_key: str,
        parts: list[UploadPart],
        owner_type: AttachmentOwnerType | None = None,
        owner_id: UUID | None = None,
    ) -> Attachment:
        """Finish a multipart upload, optionally linking the new attachment to an owner."""
        await self._check_owner(project_id, owner_type, owner_id)
        return await self.uploader.complete(project_id, upload_id, storage_key, parts, owner_type, owner_id)

    def get_upload_limits(self) -> UploadLimits:
        """Size, chunking and type limits for new uploads."""
        return self.uploader.limits()

    async def abort_upload(self, project_id: UUID, upload_id: str, storage_key: str) -> bool:
        """Cancel a multipart upload."""
        return await self.uploader.abort(project_id, upload_id, storage_key)

    async def get_download_url(self, attachment_id: UUID) -> DownloadUrl:
        """Presigned download link that saves the file under its original name."""
        attachment = await self.get_attachment(attachment_id)
        expires_in = self.core.config.presigned_url_expires
        filename = sanitize_filename(attachment.filename)
        url = await self.core.blob_store.generate_presigned_download(attachment.storage_key, filename, expires_in)
        return DownloadUrl(url=url, filename=attachment.filename, mime_type=attachment.mime_type, expires_in=expires_in)

    async def link_attachment(self, attachment_id: UUID, owner_type: AttachmentOwnerType, owner_id: UUID) -> Attachment:
        """Attach an unowned attachment to an entity of the same project.

        Raises:
            ValidationError: If the attachment already belongs to another entity
        """
        attachment = await self.get_attachment(attachment_id)
        await self._check_owner(attachment.project_id, owner_type, owner_id)
        if not await self._store.claim_owner(attachment_id, owner_type, owner_id):
            raise ValidationError("Attachment is already attached to another entity")
        logger.debug("attachment_linked", attachment_id=attachment_id, owner_type=owner_type, owner_id=owner_id)
        return await self.get_attachment(attachment_id)

    async def prepare_delete(self, attachment_id: UUID) -> DeletePreparation:
        return await self.deleter.prepare(attachment_id)

    async def confirm_delete(self, attachment_id: UUID, token: str | None = None) -> bool:
        return await self.deleter.confirm(attachment_id, token)

    async def get_status(self, attachment_id: UUID) -> AttachmentStatus:
        return await self.deleter.status(attachment_id)

    async def delete_attachments_by_owner(self, owner_type: AttachmentOwnerType, owner_id: UUID) -> int:
        """Immediately delete all attachments of an entity that is being removed."""
        attachments = await self._store.list_by_owner(owner_type, owner_id)
        for attachment in attachments:
            await self.deleter.purge(attachment)
        if attachments:
            logger.info("owner_attachments_deleted", owner_type=owner_type, owner_id=owner_id, count=len(attachments))
        return len(attachments)

    async def delete_attachments_by_project(self, project_id: UUID) -> int:
        """Immediately delete all attachments of a project that is being removed."""
        attachments = await self._store.list_by_project(project_id)
        for attachment in attachments:
            await self.deleter.purge(attachment)
        return len(attachments)

    async def reconcile_deletions(self) -> ReconcileReport:
        """Settle deletions that were prepared but never confirmed."""
        report = await self.deleter.reconcile()
        if report.completed or report.abandoned:
            logger.info("attachment_deletions_reconciled", completed=report.completed, abandoned=report.abandoned)
        return report
