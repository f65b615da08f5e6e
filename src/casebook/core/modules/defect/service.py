import re
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from casebook.core.core import Service
from casebook.core.modules.attachment.models import AttachmentOwnerType
from casebook.core.modules.defect.models import (
    Defect,
    DefectCreate,
    DefectSeverity,
    DefectStatistics,
    DefectStatus,
    DefectUpdate,
)
from casebook.core.modules.sequence.models import SequencePrefix
from casebook.core.modules.sequence.store import MongoSequenceStore
from casebook.core.modules.testcase.models import Priority
from casebook.core.pagination import PaginationResult, paginate
from casebook.errors import NotFoundError, ValidationError
from casebook.utils import now

logger = structlog.get_logger(__name__)

# Fields that may be explicitly cleared with null
NULLABLE_FIELDS = {"assigned_to", "environment", "due_date", "progress_percentage"}


class DefectService(Service):
    """Manages defects with per-project DEF ids."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("defects")
        self._store = MongoSequenceStore(self._collection, Defect, "project_id", "defect_id")

    async def on_start(self) -> None:
        """Create indexes for project/defect_id lookup and test case links."""
        # Source of truth for defect_id uniqueness, see SequentialIdAllocator
        await self._collection.create_index([("project_id", 1), ("defect_id", 1)], unique=True)
        await self._collection.create_index([("project_id", 1), ("created_at", -1)])
        await self._collection.create_index([("test_case_ids", 1)])

    def _check_assignee(self, project_id: UUID, user_id: UUID | None) -> None:
        if user_id is None:
            return
        project = self.core.services.project.get_project(project_id)
        if user_id not in project.members:
            raise ValidationError(f"Assignee '{user_id}' is not a member of the project")

    async def create_defect(self, project_id: UUID, user_id: UUID, data: DefectCreate) -> Defect:
        """Create a defect with the next free DEF id of the project."""
        self.core.services.project.get_project(project_id)
        if not data.title.strip():
            raise ValidationError("Title cannot be empty")
        self._check_assignee(project_id, data.assigned_to)
        test_case_ids = list(dict.fromkeys(data.test_case_ids))
        if test_case_ids and not await self.core.services.testcase.test_case_ids_exist(project_id, test_case_ids):
            raise ValidationError("Linked test cases must exist in the same project")

        def build(defect_id: str) -> Defect:
            return Defect(
                project_id=project_id,
                defect_id=defect_id,
                created_by=user_id,
                **data.model_dump(exclude={"test_case_ids"}),
                test_case_ids=test_case_ids,
            )

        defect = await self.core.services.sequence.allocate(self._store, project_id, SequencePrefix.DEFECT, build)
        logger.info("defect_created", project_id=project_id, defect_id=defect.defect_id, severity=defect.severity)
        return defect

    async def get_defect(self, defect_id: UUID) -> Defect:
        """Get defect by ID."""
        doc = await self._collection.find_one({"_id": defect_id})
        if doc is None:
            raise NotFoundError(f"Defect not found: {defect_id}")
        return Defect.model_validate(doc)

    async def get_defect_by_defect_id(self, project_id: UUID, defect_id: str) -> Defect:
        """Get defect by project and DEF id."""
        doc = await self._collection.find_one({"project_id": project_id, "defect_id": defect_id})
        if doc is None:
            raise NotFoundError(f"Defect '{defect_id}' not found")
        return Defect.model_validate(doc)

    async def list_defects(
        self,
        project_id: UUID,
        limit: int = 50,
        offset: int = 0,
        status: list[DefectStatus] | None = None,
        severity: list[DefectSeverity] | None = None,
        priority: list[Priority] | None = None,
        assigned_to: UUID | None = None,
        search: str | None = None,
    ) -> PaginationResult[Defect]:
        """Get paginated defects of a project, newest first. List filters match any of their values."""
        query: dict[str, Any] = {"project_id": project_id}
        if status:
            query["status"] = {"$in": status}
        if severity:
            query["severity"] = {"$in": severity}
        if priority:
            query["priority"] = {"$in": priority}
        if assigned_to is not None:
            query["assigned_to"] = assigned_to
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"description": pattern}, {"defect_id": pattern}]

        return await paginate(self._collection, Defect, query, [("created_at", -1)], limit, offset)

    async def update_defect(self, defect_id: UUID, data: DefectUpdate) -> Defect:
        """Update the fields present in the request (partial update)."""
        defect = await self.get_defect(defect_id)

        changes = {
            name: value
            for name, value in data.model_dump(exclude_unset=True).items()
            if value is not None or name in NULLABLE_FIELDS
        }
        if "title" in changes and not changes["title"].strip():
            raise ValidationError("Title cannot be empty")
        if "assigned_to" in changes:
            self._check_assignee(defect.project_id, changes["assigned_to"])
        if not changes:
            return defect

        changes["updated_at"] = now()
        await self._collection.update_one({"_id": defect_id}, {"$set": changes})
        logger.debug("defect_updated", defect_id=defect.defect_id, fields=sorted(changes))
        return await self.get_defect(defect_id)

    async def bulk_update_status(self, project_id: UUID, defect_ids: list[str], status: DefectStatus) -> int:
        """Set the status of several defects of a project. Fails without changing anything if one is unknown."""
        if not defect_ids:
            raise ValidationError("No defects given")

        query = {"project_id": project_id, "defect_id": {"$in": defect_ids}}
        found = {doc["defect_id"] async for doc in self._collection.find(query, projection={"defect_id": 1})}
        missing = sorted(set(defect_ids) - found)
        if missing:
            raise NotFoundError(f"Defects not found: {', '.join(missing)}")

        result = await self._collection.update_many(query, {"$set": {"status": status, "updated_at": now()}})
        logger.info("defects_status_updated", project_id=project_id, status=status, count=result.modified_count)
        return result.modified_count

    async def get_statistics(self, project_id: UUID) -> DefectStatistics:
        """Count defects of a project by status, severity and priority."""
        pipeline: list[dict[str, Any]] = [
            {"$match": {"project_id": project_id}},
            {
                "$facet": {
                    "status": [{"$group": {"_id": "$status", "count": {"$sum": 1}}}],
                    "severity": [{"$group": {"_id": "$severity", "count": {"$sum": 1}}}],
                    "priority": [{"$group": {"_id": "$priority", "count": {"$sum": 1}}}],
                }
            },
        ]
        cursor = await self._collection.aggregate(pipeline)
        facets = (await cursor.to_list())[0]

        def counts(name: str) -> dict[Any, int]:
            return {group["_id"]: group["count"] for group in facets[name]}

        by_status = counts("status")
        return DefectStatistics(
            total=sum(by_status.values()),
            by_status={status: by_status.get(status, 0) for status in DefectStatus},
            by_severity={severity: counts("severity").get(severity, 0) for severity in DefectSeverity},
            by_priority={priority: counts("priority").get(priority, 0) for priority in Priority},
        )

    async def delete_defect(self, defect_id: UUID) -> None:
        """Delete a defect with its comments and all their attachments."""
        defect = await self.get_defect(defect_id)

        # Owners outlive their attachments
        attachments = self.core.services.attachment
        comments = self.core.services.comment
        for comment_id in await comments.get_comment_ids(defect.id):
            await attachments.delete_attachments_by_owner(AttachmentOwnerType.COMMENT, comment_id)
        await attachments.delete_attachments_by_owner(AttachmentOwnerType.DEFECT, defect.id)
        await comments.delete_comments_by_defect(defect.id)

        result = await self._collection.delete_one({"_id": defect_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"Defect not found: {defect_id}")
        logger.info("defect_deleted", project_id=defect.project_id, defect_id=defect.defect_id)

    async def unlink_test_case(self, project_id: UUID, test_case_id: UUID) -> int:
        """Remove a test case from the links of all defects in the project."""
        result = await self._collection.update_many(
            {"project_id": project_id, "test_case_ids": test_case_id}, {"$pull": {"test_case_ids": test_case_id}}
        )
        return result.modified_count

    async def delete_defects_by_project(self, project_id: UUID) -> int:
        """Delete all defects in a project and return count of deleted defects."""
        result = await self._collection.delete_many({"project_id": project_id})
        return result.deleted_count
