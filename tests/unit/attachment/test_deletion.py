"""Tests for the two-phase attachment deletion."""

from datetime import timedelta
from uuid import uuid4

import pytest

from casebook.core.modules.attachment.deletion import TwoPhaseDeleter
from casebook.core.modules.attachment.models import AttachmentStatus
from casebook.errors import NotFoundError, StorageFaultError, ValidationError
from casebook.utils import now


@pytest.fixture
def deleter(attachment_store, blob_store):
    return TwoPhaseDeleter(attachment_store, blob_store, url_expires=600, intent_ttl=600)


class TestPrepare:
    @pytest.mark.asyncio
    async def test_returns_presigned_url_and_token(self, deleter, stored_attachment):
        """Prepare hands out a DELETE URL for the stored object."""
        preparation = await deleter.prepare(stored_attachment.id)

        assert stored_attachment.storage_key in preparation.delete_url
        assert "method=DELETE" in preparation.delete_url
        assert preparation.token
        assert preparation.expires_at > now()

    @pytest.mark.asyncio
    async def test_does_not_delete_anything(self, deleter, stored_attachment, attachment_store, blob_store):
        """Blob and metadata both survive prepare unchanged."""
        await deleter.prepare(stored_attachment.id)

        assert attachment_store.attachments[stored_attachment.id] == stored_attachment
        assert stored_attachment.storage_key in blob_store.objects

    @pytest.mark.asyncio
    async def test_missing_attachment(self, deleter):
        with pytest.raises(NotFoundError):
            await deleter.prepare(uuid4())

    @pytest.mark.asyncio
    async def test_repeated_prepare_reuses_pending_intent(self, deleter, stored_attachment, attachment_store):
        first = await deleter.prepare(stored_attachment.id)
        second = await deleter.prepare(stored_attachment.id)

        assert first.token == second.token
        assert first.expires_at == second.expires_at
        assert len(attachment_store.intents) == 1

    @pytest.mark.asyncio
    async def test_expired_intent_replaced(self, attachment_store, blob_store, stored_attachment):
        """An intent past its expiry is not reused."""
        deleter = TwoPhaseDeleter(attachment_store, blob_store, intent_ttl=0)
        first = await deleter.prepare(stored_attachment.id)
        second = await deleter.prepare(stored_attachment.id)

        assert first.token != second.token
        assert attachment_store.intents[stored_attachment.id].token == second.token

    @pytest.mark.asyncio
    async def test_expiry_bounded_by_url(self, attachment_store, blob_store, stored_attachment):
        """A URL shorter lived than the intent determines the returned expiry."""
        deleter = TwoPhaseDeleter(attachment_store, blob_store, url_expires=60, intent_ttl=600)

        preparation = await deleter.prepare(stored_attachment.id)

        assert preparation.expires_at <= now() + timedelta(seconds=60)
        assert attachment_store.intents[stored_attachment.id].expires_at > now() + timedelta(seconds=500)

    @pytest.mark.asyncio
    async def test_reused_intent_bounds_expiry(self, deleter, stored_attachment, attachment_store):
        """A fresh URL does not outlive the pending deletion it belongs to."""
        await deleter.prepare(stored_attachment.id)
        intent = attachment_store.intents[stored_attachment.id]
        intent_expiry = now() + timedelta(seconds=30)
        attachment_store.intents[stored_attachment.id] = intent.model_copy(update={"expires_at": intent_expiry})

        preparation = await deleter.prepare(stored_attachment.id)

        assert preparation.expires_at == intent_expiry

    @pytest.mark.asyncio
    async def test_presign_failure_records_nothing(self, deleter, stored_attachment, attachment_store, blob_store):
        blob_store.fail_on.add("generate_presigned_delete")

        with pytest.raises(StorageFaultError):
            await deleter.prepare(stored_attachment.id)

        assert attachment_store.intents == {}


class TestConfirm:
    @pytest.mark.asyncio
    async def test_removes_blob_then_metadata(self, deleter, stored_attachment, attachment_store, blob_store):
        await deleter.prepare(stored_attachment.id)

        assert await deleter.confirm(stored_attachment.id) is True

        assert stored_attachment.id not in attachment_store.attachments
        assert stored_attachment.storage_key not in blob_store.objects
        assert attachment_store.intents == {}

    @pytest.mark.asyncio
    async def test_blob_already_deleted_by_client(self, deleter, stored_attachment, attachment_store, blob_store):
        """Client used the presigned URL before confirming."""
        await deleter.prepare(stored_attachment.id)
        blob_store.objects.discard(stored_attachment.storage_key)

        assert await deleter.confirm(stored_attachment.id) is True
        assert stored_attachment.id not in attachment_store.attachments

    @pytest.mark.asyncio
    async def test_confirm_without_prepare(self, deleter, stored_attachment, attachment_store):
        assert await deleter.confirm(stored_attachment.id) is True
        assert stored_attachment.id not in attachment_store.attachments

    @pytest.mark.asyncio
    async def test_second_confirm_not_found(self, deleter, stored_attachment):
        """The second of two confirms reports the attachment as gone."""
        await deleter.confirm(stored_attachment.id)

        with pytest.raises(NotFoundError):
            await deleter.confirm(stored_attachment.id)

    @pytest.mark.asyncio
    async def test_matching_token_accepted(self, deleter, stored_attachment, attachment_store):
        preparation = await deleter.prepare(stored_attachment.id)

        assert await deleter.confirm(stored_attachment.id, preparation.token) is True
        assert stored_attachment.id not in attachment_store.attachments

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, deleter, stored_attachment, attachment_store, blob_store):
        await deleter.prepare(stored_attachment.id)

        with pytest.raises(ValidationError, match="token"):
            await deleter.confirm(stored_attachment.id, "not-the-token")

        assert stored_attachment.id in attachment_store.attachments
        assert stored_attachment.storage_key in blob_store.objects

    @pytest.mark.asyncio
    async def test_token_without_pending_intent_rejected(self, deleter, stored_attachment):
        with pytest.raises(ValidationError):
            await deleter.confirm(stored_attachment.id, "any-token")

    @pytest.mark.asyncio
    async def test_blob_fault_keeps_metadata(self, deleter, stored_attachment, attachment_store, blob_store):
        """Metadata is never removed while the blob may still exist."""
        await deleter.prepare(stored_attachment.id)
        blob_store.fail_on.add("delete_object")

        with pytest.raises(StorageFaultError):
            await deleter.confirm(stored_attachment.id)

        assert stored_attachment.id in attachment_store.attachments
        assert stored_attachment.id in attachment_store.intents

    @pytest.mark.asyncio
    async def test_lost_race_reports_not_found(self, deleter, stored_attachment, attachment_store):
        """A concurrent confirm removed the record between lookup and delete."""
        attachment_store.lose_delete_race = True

        with pytest.raises(NotFoundError):
            await deleter.confirm(stored_attachment.id)


class TestStatus:
    @pytest.mark.asyncio
    async def test_lifecycle(self, deleter, stored_attachment):
        assert await deleter.status(stored_attachment.id) == AttachmentStatus.ACTIVE

        await deleter.prepare(stored_attachment.id)
        assert await deleter.status(stored_attachment.id) == AttachmentStatus.PENDING_DELETE

        await deleter.confirm(stored_attachment.id)
        assert await deleter.status(stored_attachment.id) == AttachmentStatus.DELETED

    @pytest.mark.asyncio
    async def test_expired_intent_is_active(self, attachment_store, blob_store, stored_attachment):
        deleter = TwoPhaseDeleter(attachment_store, blob_store, intent_ttl=0)
        await deleter.prepare(stored_attachment.id)

        assert await deleter.status(stored_attachment.id) == AttachmentStatus.ACTIVE


class TestReconcile:
    @pytest.mark.asyncio
    async def test_completes_deletion_when_blob_gone(self, deleter, stored_attachment, attachment_store, blob_store):
        await deleter.prepare(stored_attachment.id)
        blob_store.objects.discard(stored_attachment.storage_key)

        report = await deleter.reconcile(now() + timedelta(hours=1))

        assert report.completed == 1
        assert report.abandoned == 0
        assert stored_attachment.id not in attachment_store.attachments
        assert attachment_store.intents == {}

    @pytest.mark.asyncio
    async def test_abandons_deletion_when_blob_present(self, deleter, stored_attachment, attachment_store):
        await deleter.prepare(stored_attachment.id)

        report = await deleter.reconcile(now() + timedelta(hours=1))

        assert report.abandoned == 1
        assert report.completed == 0
        assert stored_attachment.id in attachment_store.attachments
        assert attachment_store.intents == {}

    @pytest.mark.asyncio
    async def test_pending_intents_left_alone(self, deleter, stored_attachment, attachment_store):
        await deleter.prepare(stored_attachment.id)

        report = await deleter.reconcile()

        assert report.completed == report.abandoned == 0
        assert stored_attachment.id in attachment_store.intents


class TestPurge:
    @pytest.mark.asyncio
    async def test_removes_everything(self, deleter, stored_attachment, attachment_store, blob_store):
        await deleter.prepare(stored_attachment.id)

        await deleter.purge(stored_attachment)

        assert stored_attachment.id not in attachment_store.attachments
        assert stored_attachment.storage_key not in blob_store.objects
        assert attachment_store.intents == {}
