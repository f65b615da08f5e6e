from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from pymongo.asynchronous.database import AsyncDatabase

from casebook.core.db import storage_faults
from casebook.core.modules.attachment.models import Attachment, AttachmentOwnerType, DeletionIntent, UploadSession


class AttachmentStore(Protocol):
    """Persistence of attachment metadata, upload sessions and deletion intents."""

    async def get_attachment(self, attachment_id: UUID) -> Attachment | None: ...

    async def insert_attachment(self, attachment: Attachment) -> None: ...

    async def delete_attachment(self, attachment_id: UUID) -> bool:
        """Remove the record, returning False if it was already gone."""
        ...

    async def list_by_owner(self, owner_type: AttachmentOwnerType, owner_id: UUID) -> list[Attachment]: ...

    async def list_by_project(self, project_id: UUID) -> list[Attachment]: ...

    async def claim_owner(self, attachment_id: UUID, owner_type: AttachmentOwnerType, owner_id: UUID) -> bool:
        """Set the owner if the attachment is unowned or already owned by the same entity."""
        ...

    async def insert_upload(self, upload: UploadSession) -> None: ...

    async def get_upload(self, upload_id: str) -> UploadSession | None: ...

    async def delete_upload(self, upload_id: str) -> bool: ...

    async def save_intent(self, intent: DeletionIntent) -> DeletionIntent:
        """Store the intent unless one exists for the attachment. Returns the stored one."""
        ...

    async def get_intent(self, attachment_id: UUID) -> DeletionIntent | None: ...

    async def delete_intent(self, attachment_id: UUID) -> None: ...

    async def list_expired_intents(self, before: datetime) -> list[DeletionIntent]: ...


class MongoAttachmentStore:
    """AttachmentStore over the attachments, attachment_uploads and attachment_deletions collections."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        self._attachments = database.get_collection("attachments")
        self._uploads = database.get_collection("attachment_uploads")
        self._intents = database.get_collection("attachment_deletions")

    async def create_indexes(self) -> None:
        await self._attachments.create_index([("storage_key", 1)], unique=True)
        await self._attachments.create_index([("owner_type", 1), ("owner_id", 1)])
        await self._attachments.create_index([("project_id", 1)])
        await self._uploads.create_index([("upload_id", 1)], unique=True)
        await self._uploads.create_index([("created_at", 1)], expireAfterSeconds=7 * 24 * 60 * 60)
        await self._intents.create_index([("attachment_id", 1)], unique=True)
        await self._intents.create_index([("expires_at", 1)])

    async def get_attachment(self, attachment_id: UUID) -> Attachment | None:
        with storage_faults("get_attachment", attachment_id=attachment_id):
            doc = await self._attachments.find_one({"_id": attachment_id})
        return Attachment.model_validate(doc) if doc else None

    async def insert_attachment(self, attachment: Attachment) -> None:
        with storage_faults("insert_attachment", attachment_id=attachment.id):
            await self._attachments.insert_one(attachment.to_mongo())

    async def delete_attachment(self, attachment_id: UUID) -> bool:
        with storage_faults("delete_attachment", attachment_id=attachment_id):
            result = await self._attachments.delete_one({"_id": attachment_id})
        return result.deleted_count > 0

    async def list_by_owner(self, owner_type: AttachmentOwnerType, owner_id: UUID) -> list[Attachment]:
        with storage_faults("list_by_owner", owner_type=owner_type, owner_id=owner_id):
            cursor = self._attachments.find({"owner_type": owner_type, "owner_id": owner_id}).sort("created_at", 1)
            return await Attachment.list_cursor(cursor)

    async def list_by_project(self, project_id: UUID) -> list[Attachment]:
        with storage_faults("list_by_project", project_id=project_id):
            return await Attachment.list_cursor(self._attachments.find({"project_id": project_id}))

    async def claim_owner(self, attachment_id: UUID, owner_type: AttachmentOwnerType, owner_id: UUID) -> bool:
        with storage_faults("claim_owner", attachment_id=attachment_id):
            result = await self._attachments.update_one(
                {
                    "_id": attachment_id,
                    "$or": [{"owner_id": None}, {"owner_type": owner_type, "owner_id": owner_id}],
                },
                {"$set": {"owner_type": owner_type, "owner_id": owner_id}},
            )
        return result.matched_count > 0

    async def insert_upload(self, upload: UploadSession) -> None:
        with storage_faults("insert_upload", upload_id=upload.upload_id):
            await self._uploads.insert_one(upload.to_mongo())

    async def get_upload(self, upload_id: str) -> UploadSession | None:
        with storage_faults("get_upload", upload_id=upload_id):
            doc = await self._uploads.find_one({"upload_id": upload_id})
        return UploadSession.model_validate(doc) if doc else None

    async def delete_upload(self, upload_id: str) -> bool:
        with storage_faults("delete_upload", upload_id=upload_id):
            result = await self._uploads.delete_one({"upload_id": upload_id})
        return result.deleted_count > 0

    async def save_intent(self, intent: DeletionIntent) -> DeletionIntent:
        with storage_faults("save_intent", attachment_id=intent.attachment_id):
            # $setOnInsert keeps the first intent (and its token) on repeated prepares
            await self._intents.update_one(
                {"attachment_id": intent.attachment_id}, {"$setOnInsert": intent.to_mongo()}, upsert=True
            )
            doc = await self._intents.find_one({"attachment_id": intent.attachment_id})
        return DeletionIntent.model_validate(doc) if doc else intent

    async def get_intent(self, attachment_id: UUID) -> DeletionIntent | None:
        with storage_faults("get_intent", attachment_id=attachment_id):
            doc = await self._intents.find_one({"attachment_id": attachment_id})
        return DeletionIntent.model_validate(doc) if doc else None

    async def delete_intent(self, attachment_id: UUID) -> None:
        with storage_faults("delete_intent", attachment_id=attachment_id):
            await self._intents.delete_one({"attachment_id": attachment_id})

    async def list_expired_intents(self, before: datetime) -> list[DeletionIntent]:
        with storage_faults("list_expired_intents"):
            return await DeletionIntent.list_cursor(self._intents.find({"expires_at": {"$lt": before}}))
