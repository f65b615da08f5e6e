from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from casebook.core.core import Service
from casebook.core.modules.comment.models import Comment
from casebook.core.modules.sequence.models import SequencePrefix
from casebook.core.modules.sequence.store import MongoSequenceStore
from casebook.core.pagination import PaginationResult, paginate
from casebook.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class CommentNumberStore(MongoSequenceStore[Comment]):
    """Sequence store over comments of a defect, numbers are kept as integers."""

    def stored_key(self, sequence_id: str) -> Any:
        return int(sequence_id)


class CommentService(Service):
    """Manages comments on defects with sequential numbering per defect."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("comments")
        self._store = CommentNumberStore(self._collection, Comment, "defect_id", "number")

    async def on_start(self) -> None:
        """Create indexes for defect/number lookup."""
        # Source of truth for number uniqueness, see SequentialIdAllocator
        await self._collection.create_index([("defect_id", 1), ("number", 1)], unique=True)
        await self._collection.create_index([("project_id", 1)])

    async def create_comment(self, defect_id: UUID, user_id: UUID, content: str) -> Comment:
        """Create comment with the next free number of the defect."""
        if not content.strip():
            raise ValidationError("Comment cannot be empty")
        defect = await self.core.services.defect.get_defect(defect_id)

        def build(number: str) -> Comment:
            return Comment(
                defect_id=defect_id, project_id=defect.project_id, user_id=user_id, number=int(number), content=content
            )

        comment = await self.core.services.sequence.allocate(self._store, defect_id, SequencePrefix.COMMENT, build)
        logger.debug("comment_created", defect_id=defect_id, number=comment.number)
        return comment

    async def get_comment(self, comment_id: UUID) -> Comment:
        """Get comment by ID."""
        doc = await self._collection.find_one({"_id": comment_id})
        if doc is None:
            raise NotFoundError(f"Comment not found: {comment_id}")
        return Comment.model_validate(doc)

    async def get_defect_comments(self, defect_id: UUID, limit: int = 50, offset: int = 0) -> PaginationResult[Comment]:
        """Get paginated comments for defect, sorted by number descending."""
        return await paginate(self._collection, Comment, {"defect_id": defect_id}, [("number", -1)], limit, offset)

    async def get_comment_ids(self, defect_id: UUID) -> list[UUID]:
        """IDs of all comments of a defect."""
        return [doc["_id"] async for doc in self._collection.find({"defect_id": defect_id}, projection={"_id": 1})]

    async def delete_comments_by_defect(self, defect_id: UUID) -> int:
        """Delete all comments of a defect and return count of deleted comments."""
        result = await self._collection.delete_many({"defect_id": defect_id})
        return result.deleted_count

    async def delete_comments_by_project(self, project_id: UUID) -> int:
        """Delete all comments in a project and return count of deleted comments."""
        result = await self._collection.delete_many({"project_id": project_id})
        return result.deleted_count
