from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from casebook.core.db import MongoModel
from casebook.core.modules.testcase.models import Priority
from casebook.utils import now


class DefectSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DefectStatus(StrEnum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    FIXED = "fixed"
    TESTED = "tested"
    CLOSED = "closed"


class Defect(MongoModel):
    """Defect with a per-project sequential id (DEF-1, DEF-2, ...)."""

    project_id: UUID
    defect_id: str  # Allocated once on creation, unique per project, used in URLs
    title: str
    description: str = ""
    severity: DefectSeverity
    priority: Priority
    status: DefectStatus = DefectStatus.NEW
    assigned_to: UUID | None = None
    environment: str | None = None
    due_date: datetime | None = None
    progress_percentage: int | None = None
    test_case_ids: list[UUID] = Field(default_factory=list)  # Test cases that revealed the defect
    created_by: UUID
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime | None = None


class DefectCreate(BaseModel):
    """Request to create a defect."""

    title: str = Field(..., min_length=1, description="Defect title")
    description: str = Field("", description="Defect description")
    severity: DefectSeverity = Field(..., description="Severity")
    priority: Priority = Field(..., description="Priority")
    status: DefectStatus = Field(DefectStatus.NEW, description="Initial status")
    assigned_to: UUID | None = Field(None, description="Assignee, must be a project member")
    environment: str | None = Field(None, description="Environment the defect was found in")
    due_date: datetime | None = Field(None, description="Due date")
    progress_percentage: int | None = Field(None, ge=0, le=100, description="Fix progress")
    test_case_ids: list[UUID] = Field(default_factory=list, description="Linked test cases of the same project")


class DefectUpdate(BaseModel):
    """Partial update of a defect. Only fields present in the request are changed."""

    title: str | None = Field(None, min_length=1, description="New title")
    description: str | None = Field(None, description="New description")
    severity: DefectSeverity | None = Field(None, description="New severity")
    priority: Priority | None = Field(None, description="New priority")
    status: DefectStatus | None = Field(None, description="New status")
    assigned_to: UUID | None = Field(None, description="New assignee, null to unassign")
    environment: str | None = Field(None, description="New environment")
    due_date: datetime | None = Field(None, description="New due date, null to clear")
    progress_percentage: int | None = Field(None, ge=0, le=100, description="New fix progress")


class DefectStatistics(BaseModel):
    """Defect counts of a project."""

    total: int = Field(..., description="Number of defects")
    by_status: dict[DefectStatus, int] = Field(..., description="Count per status")
    by_severity: dict[DefectSeverity, int] = Field(..., description="Count per severity")
    by_priority: dict[Priority, int] = Field(..., description="Count per priority")
