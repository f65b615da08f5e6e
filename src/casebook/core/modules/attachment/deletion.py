"""Two-phase deletion of attachments: prepare, then confirm.

``prepare`` hands out a presigned DELETE URL and records a deletion intent; it
never deletes anything and never rewrites the attachment record. ``confirm``
makes sure the blob is gone and only then removes the metadata, so a crash in
between leaves an intent behind instead of a record pointing at nothing.
Expired intents are settled by ``reconcile``.
"""

import secrets
from datetime import datetime
from uuid import UUID

import structlog

from casebook.core.modules.attachment.models import (
    Attachment,
    AttachmentStatus,
    DeletePreparation,
    DeletionIntent,
    ReconcileReport,
)
from casebook.core.modules.attachment.repository import AttachmentStore
from casebook.core.modules.attachment.storage import BlobStore
from casebook.errors import NotFoundError, ValidationError
from casebook.utils import expires_in, now

logger = structlog.get_logger(__name__)


class TwoPhaseDeleter:
    def __init__(self, store: AttachmentStore, blobs: BlobStore, url_expires: int = 3600, intent_ttl: int = 3600) -> None:
        self._store = store
        self._blobs = blobs
        self._url_expires = url_expires
        self._intent_ttl = intent_ttl

    async def _get_attachment(self, attachment_id: UUID) -> Attachment:
        attachment = await self._store.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError(f"Attachment not found: {attachment_id}")
        return attachment

    async def prepare(self, attachment_id: UUID) -> DeletePreparation:
        """Phase 1: issue a presigned DELETE URL and mark the deletion as in flight.

        Repeated calls reuse the pending intent (and its token) until it expires. The
        returned expires_at is the earlier of the URL expiry and the intent expiry.

        Raises:
            NotFoundError: If the attachment does not exist
            StorageFaultError: If the URL cannot be generated, nothing is recorded then
        """
        attachment = await self._get_attachment(attachment_id)
        delete_url = await self._blobs.generate_presigned_delete(attachment.storage_key, self._url_expires)

        timestamp = now()
        intent = await self._store.get_intent(attachment_id)
        if intent is not None and intent.expires_at <= timestamp:
            await self._store.delete_intent(attachment_id)
            intent = None
        if intent is None:
            intent = await self._store.save_intent(
                DeletionIntent(
                    attachment_id=attachment_id,
                    storage_key=attachment.storage_key,
                    token=secrets.token_urlsafe(16),
                    expires_at=expires_in(self._intent_ttl, timestamp),
                )
            )

        # Both the URL and the token must still be usable at expires_at
        expires_at = min(intent.expires_at, expires_in(self._url_expires, timestamp))
        logger.info("attachment_delete_prepared", attachment_id=attachment_id, expires_at=expires_at)
        return DeletePreparation(delete_url=delete_url, token=intent.token, expires_at=expires_at)

    async def confirm(self, attachment_id: UUID, token: str | None = None) -> bool:
        """Phase 2: ensure the blob is deleted, then remove the metadata.

        A second confirm for the same attachment raises NotFoundError and has
        no side effects, callers should treat that as "nothing to do".

        Raises:
            NotFoundError: If the attachment no longer exists
            ValidationError: If a token is given and doesn't match the pending deletion
            StorageFaultError: If the blob could not be deleted, metadata is kept then
        """
        attachment = await self._get_attachment(attachment_id)

        if token is not None:
            intent = await self._store.get_intent(attachment_id)
            if intent is None or not secrets.compare_digest(intent.token, token):
                raise ValidationError("Deletion token does not match a pending deletion")

        # Deleting a missing object succeeds, so this covers clients that already used the URL
        await self._blobs.delete_object(attachment.storage_key)

        if not await self._store.delete_attachment(attachment_id):
            raise NotFoundError(f"Attachment not found: {attachment_id}")
        await self._store.delete_intent(attachment_id)

        logger.info("attachment_deleted", attachment_id=attachment_id, storage_key=attachment.storage_key)
        return True

    async def purge(self, attachment: Attachment) -> None:
        """Delete blob and metadata in one step, used when the owning entity is removed."""
        await self._blobs.delete_object(attachment.storage_key)
        await self._store.delete_attachment(attachment.id)
        await self._store.delete_intent(attachment.id)

    async def status(self, attachment_id: UUID) -> AttachmentStatus:
        """Current position of the attachment in the deletion lifecycle."""
        if await self._store.get_attachment(attachment_id) is None:
            return AttachmentStatus.DELETED
        intent = await self._store.get_intent(attachment_id)
        if intent is not None and intent.expires_at > now():
            return AttachmentStatus.PENDING_DELETE
        return AttachmentStatus.ACTIVE

    async def reconcile(self, at: datetime | None = None) -> ReconcileReport:
        """Settle deletion intents that expired without a confirm.

        If the blob is gone the deletion is completed, otherwise the intent is
        dropped and the attachment stays active.
        """
        report = ReconcileReport()
        for intent in await self._store.list_expired_intents(at or now()):
            attachment = await self._store.get_attachment(intent.attachment_id)
            if attachment is None:
                await self._store.delete_intent(intent.attachment_id)
                continue

            if await self._blobs.object_exists(attachment.storage_key):
                await self._store.delete_intent(intent.attachment_id)
                report.abandoned += 1
                logger.info("attachment_delete_abandoned", attachment_id=attachment.id)
            else:
                await self._store.delete_attachment(attachment.id)
                await self._store.delete_intent(intent.attachment_id)
                report.completed += 1
                logger.info("attachment_delete_reconciled", attachment_id=attachment.id)

        return report
