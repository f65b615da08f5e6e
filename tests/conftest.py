"""Shared pytest fixtures and in-memory stand-ins for the database and blob store."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import pytest

from casebook.core.modules.attachment.models import (
    Attachment,
    AttachmentOwnerType,
    DeletionIntent,
    UploadPart,
    UploadSession,
)
from casebook.core.modules.project.models import Project
from casebook.core.modules.sequence.allocator import UniqueConstraintError
from casebook.core.modules.user.models import User, UserRole
from casebook.errors import StorageFaultError

PROJECT_ID = UUID("12345678-1234-5678-1234-567812345678")
USER_ID = UUID("87654321-4321-8765-4321-876543218765")


@dataclass
class SequencedRecord:
    parent_key: Any
    sequence_id: str


class FakeSequenceStore:
    """SequenceStore that keeps records in memory and enforces (parent_key, sequence_id) uniqueness.

    interleave: yield to the event loop between lookup and write, so concurrent
    allocations really race each other.
    """

    def __init__(self, interleave: bool = False) -> None:
        self.records: dict[Any, dict[str, SequencedRecord]] = {}
        self.interleave = interleave
        self.conflicts_to_inject = 0  # Next N creates fail as if another writer won
        self.fault: Exception | None = None  # Raised by every create
        self.create_delay = 0.0
        self.create_calls = 0

    def seed(self, parent_key: Any, *sequence_ids: str) -> None:
        for sequence_id in sequence_ids:
            self.records.setdefault(parent_key, {})[sequence_id] = SequencedRecord(parent_key, sequence_id)

    def ids(self, parent_key: Any) -> list[str]:
        return list(self.records.get(parent_key, {}))

    async def count(self, parent_key: Any) -> int:
        return len(self.records.get(parent_key, {}))

    async def find_by_key(self, parent_key: Any, sequence_id: str) -> SequencedRecord | None:
        if self.interleave:
            await asyncio.sleep(0)
        return self.records.get(parent_key, {}).get(sequence_id)

    async def create(self, entity: SequencedRecord) -> SequencedRecord:
        self.create_calls += 1
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.interleave:
            await asyncio.sleep(0)
        if self.fault is not None:
            raise self.fault
        if self.conflicts_to_inject > 0:
            self.conflicts_to_inject -= 1
            raise UniqueConstraintError(f"injected conflict on {entity.sequence_id}")
        scope = self.records.setdefault(entity.parent_key, {})
        if entity.sequence_id in scope:
            raise UniqueConstraintError(f"duplicate {entity.sequence_id}")
        scope[entity.sequence_id] = entity
        return entity


class FakeAttachmentStore:
    """AttachmentStore over plain dicts."""

    def __init__(self) -> None:
        self.attachments: dict[UUID, Attachment] = {}
        self.uploads: dict[str, UploadSession] = {}
        self.intents: dict[UUID, DeletionIntent] = {}
        self.lose_delete_race = False  # delete_attachment reports the record as already gone
        self.indexes_created = False

    async def create_indexes(self) -> None:
        self.indexes_created = True

    async def get_attachment(self, attachment_id: UUID) -> Attachment | None:
        return self.attachments.get(attachment_id)

    async def insert_attachment(self, attachment: Attachment) -> None:
        self.attachments[attachment.id] = attachment

    async def delete_attachment(self, attachment_id: UUID) -> bool:
        if self.lose_delete_race:
            return False
        return self.attachments.pop(attachment_id, None) is not None

    async def list_by_owner(self, owner_type: AttachmentOwnerType, owner_id: UUID) -> list[Attachment]:
        return [a for a in self.attachments.values() if a.owner_type == owner_type and a.owner_id == owner_id]

    async def list_by_project(self, project_id: UUID) -> list[Attachment]:
        return [a for a in self.attachments.values() if a.project_id == project_id]

    async def claim_owner(self, attachment_id: UUID, owner_type: AttachmentOwnerType, owner_id: UUID) -> bool:
        attachment = self.attachments.get(attachment_id)
        if attachment is None:
            return False
        if attachment.owner_id is not None and (attachment.owner_type, attachment.owner_id) != (owner_type, owner_id):
            return False
        self.attachments[attachment_id] = attachment.model_copy(update={"owner_type": owner_type, "owner_id": owner_id})
        return True

    async def insert_upload(self, upload: UploadSession) -> None:
        self.uploads[upload.upload_id] = upload

    async def get_upload(self, upload_id: str) -> UploadSession | None:
        return self.uploads.get(upload_id)

    async def delete_upload(self, upload_id: str) -> bool:
        return self.uploads.pop(upload_id, None) is not None

    async def save_intent(self, intent: DeletionIntent) -> DeletionIntent:
        return self.intents.setdefault(intent.attachment_id, intent)

    async def get_intent(self, attachment_id: UUID) -> DeletionIntent | None:
        return self.intents.get(attachment_id)

    async def delete_intent(self, attachment_id: UUID) -> None:
        self.intents.pop(attachment_id, None)

    async def list_expired_intents(self, before: datetime) -> list[DeletionIntent]:
        return [intent for intent in self.intents.values() if intent.expires_at < before]


@dataclass
class FakeBlobStore:
    """BlobStore keeping object keys and multipart uploads in memory.

    Operations named in fail_on raise StorageFaultError.
    """

    objects: set[str] = field(default_factory=set)
    uploads: dict[str, str] = field(default_factory=dict)  # upload_id -> key
    aborted: list[str] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)
    _next_upload: int = 0

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageFaultError(f"Blob store operation '{operation}' failed: injected")

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        self._check("create_multipart_upload")
        self._next_upload += 1
        upload_id = f"upload-{self._next_upload}"
        self.uploads[upload_id] = key
        return upload_id

    async def generate_presigned_upload_urls(self, key: str, upload_id: str, part_count: int, expires_in: int) -> list[str]:
        self._check("generate_presigned_upload_urls")
        return [f"https://blob.test/{key}?uploadId={upload_id}&partNumber={n}" for n in range(1, part_count + 1)]

    async def complete_multipart_upload(self, key: str, upload_id: str, parts: list[UploadPart]) -> None:
        self._check("complete_multipart_upload")
        self.uploads.pop(upload_id)
        self.objects.add(key)

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        self._check("abort_multipart_upload")
        self.uploads.pop(upload_id, None)
        self.aborted.append(upload_id)

    async def generate_presigned_delete(self, key: str, expires_in: int) -> str:
        self._check("generate_presigned_delete")
        return f"https://blob.test/{key}?method=DELETE&expires={expires_in}"

    async def generate_presigned_download(self, key: str, filename: str, expires_in: int) -> str:
        self._check("generate_presigned_download")
        return f"https://blob.test/{key}?filename={filename}&expires={expires_in}"

    async def delete_object(self, key: str) -> None:
        self._check("delete_object")
        self.objects.discard(key)

    async def object_exists(self, key: str) -> bool:
        self._check("object_exists")
        return key in self.objects


@pytest.fixture
def sequence_store():
    return FakeSequenceStore()


@pytest.fixture
def racing_sequence_store():
    return FakeSequenceStore(interleave=True)


@pytest.fixture
def attachment_store():
    return FakeAttachmentStore()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def stored_attachment(attachment_store, blob_store):
    """An active attachment whose blob exists."""
    attachment = Attachment(
        project_id=PROJECT_ID,
        storage_key=f"attachments/{PROJECT_ID}/0000__report.pdf",
        filename="report.pdf",
        size=1024,
        mime_type="application/pdf",
        uploaded_by=USER_ID,
    )
    attachment_store.attachments[attachment.id] = attachment
    blob_store.objects.add(attachment.storage_key)
    return attachment


@pytest.fixture
def mock_user():
    """Create a mock user for testing."""
    return User(id=USER_ID, username="testuser", password_hash="$2b$12$hashed_password_here")


@pytest.fixture
def mock_admin():
    return User(username="admin", password_hash="$2b$12$hashed_password_here", role=UserRole.ADMIN)


@pytest.fixture
def mock_project(mock_user):
    """Create a mock project with mock_user as the only member."""
    return Project(id=PROJECT_ID, key="checkout", name="Checkout", members=[mock_user.id])
