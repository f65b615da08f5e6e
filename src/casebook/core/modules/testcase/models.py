from datetime import datetime
from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from casebook.core.db import MongoModel
from casebook.utils import now


class Priority(StrEnum):
    """Priority shared by test cases and defects."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TestCaseStatus(StrEnum):
    __test__ = False  # Not a pytest test class

    DRAFT = "draft"
    ACTIVE = "active"
    DEPRECATED = "deprecated"


class TestStep(BaseModel):
    """Single step of a test case. Attachments can be linked to a step by its id."""

    __test__ = False  # Not a pytest test class

    id: UUID = Field(default_factory=uuid4)
    step_number: int  # 1-based, contiguous within the test case
    action: str
    expected_result: str = ""


class TestCase(MongoModel):
    """Test case with a per-project sequential id (tc1, tc2, ...)."""

    __test__ = False  # Not a pytest test class

    project_id: UUID
    tc_id: str  # Allocated once on creation, unique per project, used in URLs
    title: str
    description: str = ""
    preconditions: str = ""
    expected_result: str = ""
    priority: Priority = Priority.MEDIUM
    status: TestCaseStatus = TestCaseStatus.DRAFT
    steps: list[TestStep] = Field(default_factory=list)
    created_by: UUID
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime | None = None

    def get_step(self, step_id: UUID) -> TestStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class TestStepInput(BaseModel):
    """Step as sent by clients. Passing the id of an existing step keeps its attachments."""

    __test__ = False  # Not a pytest test class

    id: UUID | None = Field(None, description="ID of an existing step to keep")
    action: str = Field(..., min_length=1, description="What the tester does")
    expected_result: str = Field("", description="What the tester should observe")


class TestCaseCreate(BaseModel):
    """Request to create a test case."""

    __test__ = False  # Not a pytest test class

    title: str = Field(..., min_length=1, description="Test case title")
    description: str = Field("", description="Test case description")
    preconditions: str = Field("", description="State required before running the test")
    expected_result: str = Field("", description="Overall expected result")
    priority: Priority = Field(Priority.MEDIUM, description="Priority")
    status: TestCaseStatus = Field(TestCaseStatus.DRAFT, description="Lifecycle status")
    steps: list[TestStepInput] = Field(default_factory=list, description="Ordered steps")


class TestCaseUpdate(BaseModel):
    """Partial update of a test case. Omitted fields stay unchanged, steps are replaced as a whole."""

    __test__ = False  # Not a pytest test class

    title: str | None = Field(None, min_length=1, description="New title")
    description: str | None = Field(None, description="New description")
    preconditions: str | None = Field(None, description="New preconditions")
    expected_result: str | None = Field(None, description="New overall expected result")
    priority: Priority | None = Field(None, description="New priority")
    status: TestCaseStatus | None = Field(None, description="New status")
    steps: list[TestStepInput] | None = Field(None, description="New ordered steps")
