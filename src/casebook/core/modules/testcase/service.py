import re
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from casebook.core.core import Service
from casebook.core.modules.attachment.models import AttachmentOwnerType
from casebook.core.modules.sequence.models import SequencePrefix
from casebook.core.modules.sequence.store import MongoSequenceStore
from casebook.core.modules.testcase.models import (
    Priority,
    TestCase,
    TestCaseCreate,
    TestCaseStatus,
    TestCaseUpdate,
    TestStep,
    TestStepInput,
)
from casebook.core.pagination import PaginationResult, paginate
from casebook.errors import NotFoundError, ValidationError
from casebook.utils import now

logger = structlog.get_logger(__name__)


def build_steps(inputs: list[TestStepInput], existing: list[TestStep] | None = None) -> list[TestStep]:
    """Number steps in the given order, keeping the ids of existing steps that are referenced."""
    known = {step.id for step in existing or []}
    seen: set[UUID] = set()
    steps = []
    for number, item in enumerate(inputs, start=1):
        if item.id is None:
            steps.append(TestStep(step_number=number, action=item.action, expected_result=item.expected_result))
            continue
        if item.id not in known:
            raise ValidationError(f"Step '{item.id}' does not belong to this test case")
        if item.id in seen:
            raise ValidationError(f"Step '{item.id}' is listed more than once")
        seen.add(item.id)
        steps.append(TestStep(id=item.id, step_number=number, action=item.action, expected_result=item.expected_result))
    return steps


class TestCaseService(Service):
    """Manages test cases with per-project tc ids."""

    __test__ = False  # Not a pytest test class

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("test_cases")
        self._store = MongoSequenceStore(self._collection, TestCase, "project_id", "tc_id")

    async def on_start(self) -> None:
        """Create indexes for project/tc_id lookup, step lookup and sorting."""
        # Source of truth for tc_id uniqueness, see SequentialIdAllocator
        await self._collection.create_index([("project_id", 1), ("tc_id", 1)], unique=True)
        await self._collection.create_index([("project_id", 1), ("created_at", -1)])
        await self._collection.create_index([("steps.id", 1)])

    async def create_test_case(self, project_id: UUID, user_id: UUID, data: TestCaseCreate) -> TestCase:
        """Create a test case with the next free tc id of the project."""
        self.core.services.project.get_project(project_id)
        if not data.title.strip():
            raise ValidationError("Title cannot be empty")
        steps = build_steps(data.steps)

        def build(tc_id: str) -> TestCase:
            return TestCase(
                project_id=project_id,
                tc_id=tc_id,
                title=data.title,
                description=data.description,
                preconditions=data.preconditions,
                expected_result=data.expected_result,
                priority=data.priority,
                status=data.status,
                steps=steps,
                created_by=user_id,
            )

        test_case = await self.core.services.sequence.allocate(self._store, project_id, SequencePrefix.TEST_CASE, build)
        logger.info("test_case_created", project_id=project_id, tc_id=test_case.tc_id, step_count=len(steps))
        return test_case

    async def get_test_case(self, test_case_id: UUID) -> TestCase:
        """Get test case by ID."""
        doc = await self._collection.find_one({"_id": test_case_id})
        if doc is None:
            raise NotFoundError(f"Test case not found: {test_case_id}")
        return TestCase.model_validate(doc)

    async def get_test_case_by_tc_id(self, project_id: UUID, tc_id: str) -> TestCase:
        """Get test case by project and tc id."""
        doc = await self._collection.find_one({"project_id": project_id, "tc_id": tc_id})
        if doc is None:
            raise NotFoundError(f"Test case '{tc_id}' not found")
        return TestCase.model_validate(doc)

    async def get_test_case_by_step(self, step_id: UUID) -> TestCase:
        """Get the test case that contains the given step."""
        doc = await self._collection.find_one({"steps.id": step_id})
        if doc is None:
            raise NotFoundError(f"Test step not found: {step_id}")
        return TestCase.model_validate(doc)

    async def list_test_cases(
        self,
        project_id: UUID,
        limit: int = 50,
        offset: int = 0,
        status: TestCaseStatus | None = None,
        priority: Priority | None = None,
        search: str | None = None,
    ) -> PaginationResult[TestCase]:
        """Get paginated test cases of a project, newest first.

        Args:
            project_id: The project to list test cases from
            limit: Maximum number of test cases to return
            offset: Number of test cases to skip
            status: Only test cases with this status
            priority: Only test cases with this priority
            search: Case-insensitive substring of title, description or tc id

        Returns:
            Paginated list of test cases
        """
        query: dict[str, Any] = {"project_id": project_id}
        if status is not None:
            query["status"] = status
        if priority is not None:
            query["priority"] = priority
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"description": pattern}, {"tc_id": pattern}]

        result = await paginate(self._collection, TestCase, query, [("created_at", -1)], limit, offset)
        logger.debug("list_test_cases", project_id=project_id, query=query, total=result.total, returned=len(result.items))
        return result

    async def update_test_case(self, test_case_id: UUID, data: TestCaseUpdate) -> TestCase:
        """Update the given fields of a test case (partial update).

        When steps are given they replace the current steps; attachments of
        steps that are no longer present are deleted.
        """
        test_case = await self.get_test_case(test_case_id)

        changes: dict[str, Any] = data.model_dump(exclude_none=True, exclude={"steps"})
        if "title" in changes and not changes["title"].strip():
            raise ValidationError("Title cannot be empty")

        removed_steps: list[TestStep] = []
        if data.steps is not None:
            steps = build_steps(data.steps, test_case.steps)
            kept = {step.id for step in steps}
            removed_steps = [step for step in test_case.steps if step.id not in kept]
            changes["steps"] = [step.model_dump() for step in steps]

        if not changes:
            return test_case

        changes["updated_at"] = now()
        await self._collection.update_one({"_id": test_case_id}, {"$set": changes})

        for step in removed_steps:
            await self.core.services.attachment.delete_attachments_by_owner(AttachmentOwnerType.TEST_STEP, step.id)

        logger.debug("test_case_updated", test_case_id=test_case_id, fields=sorted(changes))
        return await self.get_test_case(test_case_id)

    async def delete_test_case(self, test_case_id: UUID) -> None:
        """Delete a test case, the attachments of the case and its steps, and its links from defects."""
        test_case = await self.get_test_case(test_case_id)

        attachments = self.core.services.attachment
        await attachments.delete_attachments_by_owner(AttachmentOwnerType.TEST_CASE, test_case.id)
        for step in test_case.steps:
            await attachments.delete_attachments_by_owner(AttachmentOwnerType.TEST_STEP, step.id)
        await self.core.services.defect.unlink_test_case(test_case.project_id, test_case.id)

        result = await self._collection.delete_one({"_id": test_case_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"Test case not found: {test_case_id}")
        logger.info("test_case_deleted", project_id=test_case.project_id, tc_id=test_case.tc_id)

    async def bulk_delete_test_cases(self, project_id: UUID, tc_ids: list[str]) -> int:
        """Delete several test cases of a project. Fails without deleting anything if one is unknown."""
        if not tc_ids:
            raise ValidationError("No test cases given")

        docs = await TestCase.list_cursor(self._collection.find({"project_id": project_id, "tc_id": {"$in": tc_ids}}))
        missing = sorted(set(tc_ids) - {tc.tc_id for tc in docs})
        if missing:
            raise NotFoundError(f"Test cases not found: {', '.join(missing)}")

        for test_case in docs:
            await self.delete_test_case(test_case.id)
        return len(docs)

    async def test_case_ids_exist(self, project_id: UUID, test_case_ids: list[UUID]) -> bool:
        """Check that every given test case belongs to the project."""
        unique_ids = set(test_case_ids)
        count = await self._collection.count_documents({"project_id": project_id, "_id": {"$in": list(unique_ids)}})
        return count == len(unique_ids)

    async def delete_test_cases_by_project(self, project_id: UUID) -> int:
        """Delete all test cases in a project and return count of deleted test cases."""
        result = await self._collection.delete_many({"project_id": project_id})
        return result.deleted_count
