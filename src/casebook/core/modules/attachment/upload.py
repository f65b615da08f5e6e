"""Multipart uploads straight from the client to the blob store.

The server starts the upload, hands out one presigned URL per chunk and
remembers the upload in an UploadSession. Attachment metadata is written only
once the client reports every chunk and the blob store assembled them.
"""

from uuid import UUID, uuid4

import structlog

from casebook.core.modules.attachment.models import (
    Attachment,
    AttachmentOwnerType,
    UploadLimits,
    UploadPart,
    UploadSession,
    UploadTicket,
)
from casebook.core.modules.attachment.repository import AttachmentStore
from casebook.core.modules.attachment.storage import BlobStore
from casebook.core.modules.attachment.utils import (
    MAX_PART_COUNT,
    STORAGE_PREFIX,
    build_storage_key,
    count_parts,
    validate_parts,
    validate_upload,
)
from casebook.errors import StorageFaultError, ValidationError

logger = structlog.get_logger(__name__)


class MultipartUploader:
    def __init__(
        self,
        store: AttachmentStore,
        blobs: BlobStore,
        max_size: int,
        chunk_size: int,
        allowed_mime_types: list[str],
        url_expires: int = 3600,
    ) -> None:
        self._store = store
        self._blobs = blobs
        self._max_size = max_size
        self._chunk_size = chunk_size
        self._allowed_mime_types = allowed_mime_types
        self._url_expires = url_expires

    def limits(self) -> UploadLimits:
        return UploadLimits(
            max_file_size=self._max_size,
            chunk_size=self._chunk_size,
            max_chunks=MAX_PART_COUNT,
            allowed_mime_types=list(self._allowed_mime_types),
        )

    async def initialize(self, project_id: UUID, user_id: UUID, filename: str, file_size: int, mime_type: str) -> UploadTicket:
        """Start a multipart upload and return presigned URLs for all chunks.

        Raises:
            ValidationError: If the file is too large, empty or of a type that is not allowed
            StorageFaultError: If the blob store fails
        """
        validate_upload(filename, file_size, mime_type, self._max_size, self._allowed_mime_types)
        part_count = count_parts(file_size, self._chunk_size)
        if part_count > MAX_PART_COUNT:
            raise ValidationError(f"File would need {part_count} chunks, more than the supported {MAX_PART_COUNT}")

        storage_key = build_storage_key(project_id, uuid4(), filename)
        upload_id = await self._blobs.create_multipart_upload(storage_key, mime_type)
        try:
            chunk_urls = await self._blobs.generate_presigned_upload_urls(storage_key, upload_id, part_count, self._url_expires)
            await self._store.insert_upload(
                UploadSession(
                    upload_id=upload_id,
                    storage_key=storage_key,
                    project_id=project_id,
                    user_id=user_id,
                    filename=filename,
                    size=file_size,
                    mime_type=mime_type,
                    part_count=part_count,
                )
            )
        except StorageFaultError:
            await self._discard(storage_key, upload_id)
            raise

        logger.info("upload_initialized", upload_id=upload_id, storage_key=storage_key, parts=part_count, size=file_size)
        return UploadTicket(upload_id=upload_id, storage_key=storage_key, chunk_size=self._chunk_size, chunk_urls=chunk_urls)

    async def complete(
        self,
        project_id: UUID,
        upload_id: str,
        storage_key: str,
        parts: list[UploadPart],
        owner_type: AttachmentOwnerType | None = None,
        owner_id: UUID | None = None,
    ) -> Attachment:
        """Assemble the uploaded chunks and persist the attachment record.

        Raises:
            ValidationError: If the upload is unknown or parts are missing, duplicated or out of order
            StorageFaultError: If the blob store or database fails
        """
        session = await self._get_session(project_id, upload_id, storage_key)
        validate_parts(parts, session.part_count)

        await self._blobs.complete_multipart_upload(storage_key, upload_id, parts)

        attachment = Attachment(
            project_id=session.project_id,
            storage_key=storage_key,
            filename=session.filename,
            size=session.size,
            mime_type=session.mime_type,
            uploaded_by=session.user_id,
            owner_type=owner_type,
            owner_id=owner_id,
        )
        try:
            await self._store.insert_attachment(attachment)
        except StorageFaultError:
            # The multipart upload is already assembled and cannot be completed again
            await self._drop_assembled(storage_key, upload_id)
            raise
        await self._store.delete_upload(upload_id)

        logger.info("upload_completed", upload_id=upload_id, attachment_id=attachment.id, storage_key=storage_key)
        return attachment

    async def abort(self, project_id: UUID, upload_id: str, storage_key: str) -> bool:
        """Discard an upload and every chunk uploaded so far.

        Safe with zero uploaded chunks and for uploads the blob store already forgot.

        Raises:
            ValidationError: If upload_id or storage_key is missing or they don't belong together
            StorageFaultError: If the blob store fails
        """
        if not upload_id or not storage_key:
            raise ValidationError("Missing required parameters: upload_id and storage_key")

        session = await self._store.get_upload(upload_id)
        if session is not None:
            if session.storage_key != storage_key or session.project_id != project_id:
                raise ValidationError("Invalid upload: storage_key does not match upload_id")
        elif not storage_key.startswith(f"{STORAGE_PREFIX}/{project_id}/"):
            raise ValidationError("Invalid upload: storage_key does not belong to this project")

        await self._blobs.abort_multipart_upload(storage_key, upload_id)
        await self._store.delete_upload(upload_id)
        logger.info("upload_aborted", upload_id=upload_id, storage_key=storage_key)
        return True

    async def _get_session(self, project_id: UUID, upload_id: str, storage_key: str) -> UploadSession:
        if not upload_id or not storage_key:
            raise ValidationError("Missing required parameters: upload_id and storage_key")
        session = await self._store.get_upload(upload_id)
        if session is None or session.storage_key != storage_key or session.project_id != project_id:
            raise ValidationError("Invalid upload: unknown upload_id or storage_key")
        return session

    async def _discard(self, storage_key: str, upload_id: str) -> None:
        try:
            await self._blobs.abort_multipart_upload(storage_key, upload_id)
        except StorageFaultError:
            logger.warning("upload_cleanup_failed", upload_id=upload_id, storage_key=storage_key)

    async def _drop_assembled(self, storage_key: str, upload_id: str) -> None:
        try:
            await self._blobs.delete_object(storage_key)
        except StorageFaultError:
            logger.warning("upload_orphan_cleanup_failed", upload_id=upload_id, storage_key=storage_key)
        try:
            await self._store.delete_upload(upload_id)
        except StorageFaultError:
            logger.warning("upload_session_cleanup_failed", upload_id=upload_id)
