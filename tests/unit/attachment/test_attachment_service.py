"""Tests for AttachmentService ownership rules and background reconciliation."""

import asyncio
import contextlib
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from casebook.core.modules.attachment.models import AttachmentOwnerType, UploadPart
from casebook.core.modules.attachment.service import AttachmentService
from casebook.errors import NotFoundError, ValidationError


@pytest.fixture
def service(attachment_store, blob_store, mock_project):
    """AttachmentService over in-memory stores with a defect and a comment in mock_project."""
    defect = SimpleNamespace(id=uuid4(), project_id=mock_project.id)
    comment = SimpleNamespace(id=uuid4(), project_id=mock_project.id)
    foreign_defect = SimpleNamespace(id=uuid4(), project_id=uuid4())
    defects = {defect.id: defect, foreign_defect.id: foreign_defect}

    async def get_defect(defect_id):
        if defect_id not in defects:
            raise NotFoundError(f"Defect not found: {defect_id}")
        return defects[defect_id]

    core = SimpleNamespace(
        config=SimpleNamespace(
            max_upload_size=1024 * 1024,
            upload_chunk_size=1024 * 1024,
            allowed_mime_types=["application/pdf"],
            presigned_url_expires=300,
            delete_intent_ttl=300,
            reconcile_interval=0,
        ),
        blob_store=blob_store,
        services=SimpleNamespace(
            project=SimpleNamespace(get_project=MagicMock(return_value=mock_project)),
            defect=SimpleNamespace(get_defect=get_defect),
            comment=SimpleNamespace(get_comment=AsyncMock(return_value=comment)),
        ),
    )
    attachment_service = AttachmentService(MagicMock())
    attachment_service._store = attachment_store
    attachment_service.set_core(core)
    attachment_service.defect = defect
    attachment_service.comment = comment
    attachment_service.foreign_defect = foreign_defect
    return attachment_service


class TestLinkAttachment:
    @pytest.mark.asyncio
    async def test_link_unowned_attachment(self, service, stored_attachment):
        linked = await service.link_attachment(stored_attachment.id, AttachmentOwnerType.DEFECT, service.defect.id)

        assert linked.owner_type == AttachmentOwnerType.DEFECT
        assert linked.owner_id == service.defect.id

    @pytest.mark.asyncio
    async def test_relink_to_same_owner_is_allowed(self, service, stored_attachment):
        await service.link_attachment(stored_attachment.id, AttachmentOwnerType.DEFECT, service.defect.id)
        linked = await service.link_attachment(stored_attachment.id, AttachmentOwnerType.DEFECT, service.defect.id)

        assert linked.owner_id == service.defect.id

    @pytest.mark.asyncio
    async def test_already_owned_by_other_entity(self, service, stored_attachment):
        """An attachment belongs to at most one entity."""
        await service.link_attachment(stored_attachment.id, AttachmentOwnerType.DEFECT, service.defect.id)

        with pytest.raises(ValidationError, match="already attached"):
            await service.link_attachment(stored_attachment.id, AttachmentOwnerType.COMMENT, service.comment.id)

    @pytest.mark.asyncio
    async def test_owner_in_other_project(self, service, stored_attachment):
        with pytest.raises(ValidationError, match="different projects"):
            await service.link_attachment(stored_attachment.id, AttachmentOwnerType.DEFECT, service.foreign_defect.id)

    @pytest.mark.asyncio
    async def test_missing_owner(self, service, stored_attachment):
        with pytest.raises(NotFoundError):
            await service.link_attachment(stored_attachment.id, AttachmentOwnerType.DEFECT, uuid4())


class TestCompleteUploadOwner:
    @pytest.mark.asyncio
    async def test_owner_fields_required_together(self, service, mock_project, mock_user):
        ticket = await service.initialize_upload(mock_project.id, mock_user.id, "report.pdf", 100, "application/pdf")

        with pytest.raises(ValidationError, match="together"):
            await service.complete_upload(
                mock_project.id,
                ticket.upload_id,
                ticket.storage_key,
                [UploadPart(part_number=1, etag='"a"')],
                owner_type=AttachmentOwnerType.DEFECT,
            )

    @pytest.mark.asyncio
    async def test_complete_with_owner(self, service, mock_project, mock_user):
        ticket = await service.initialize_upload(mock_project.id, mock_user.id, "report.pdf", 100, "application/pdf")

        attachment = await service.complete_upload(
            mock_project.id,
            ticket.upload_id,
            ticket.storage_key,
            [UploadPart(part_number=1, etag='"a"')],
            owner_type=AttachmentOwnerType.DEFECT,
            owner_id=service.defect.id,
        )

        assert await service.list_owner_attachments(AttachmentOwnerType.DEFECT, service.defect.id) == [attachment]


class TestDownloadAndCleanup:
    @pytest.mark.asyncio
    async def test_download_url(self, service, stored_attachment):
        download = await service.get_download_url(stored_attachment.id)

        assert stored_attachment.storage_key in download.url
        assert download.filename == "report.pdf"
        assert download.mime_type == "application/pdf"
        assert download.expires_in == 300

    @pytest.mark.asyncio
    async def test_delete_attachments_by_owner(self, service, stored_attachment, attachment_store, blob_store):
        await service.link_attachment(stored_attachment.id, AttachmentOwnerType.DEFECT, service.defect.id)

        deleted = await service.delete_attachments_by_owner(AttachmentOwnerType.DEFECT, service.defect.id)

        assert deleted == 1
        assert attachment_store.attachments == {}
        assert blob_store.objects == set()

    @pytest.mark.asyncio
    async def test_delete_attachments_by_project(self, service, stored_attachment, attachment_store):
        assert await service.delete_attachments_by_project(stored_attachment.project_id) == 1
        assert attachment_store.attachments == {}


class TestReconcileLoop:
    @pytest.mark.asyncio
    async def test_disabled_by_default(self, service, attachment_store):
        await service.on_start()

        assert attachment_store.indexes_created
        assert service._reconcile_task is None

    @pytest.mark.asyncio
    async def test_started_and_stopped(self, service):
        service.core.config.reconcile_interval = 60

        await service.on_start()
        task = service._reconcile_task
        assert task is not None
        assert not task.done()

        await service.on_stop()
        assert task.cancelled()
        assert service._reconcile_task is None

    @pytest.mark.asyncio
    async def test_sweep_failure_keeps_loop_running(self, service, monkeypatch):
        calls = 0

        async def failing_reconcile():
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        monkeypatch.setattr(service, "reconcile_deletions", failing_reconcile)
        task = asyncio.create_task(service._reconcile_loop(0))
        while calls < 2:
            await asyncio.sleep(0)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

        assert calls >= 2
