"""Project models: the scope that test case and defect numbering is unique in."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from casebook.core.db import MongoModel
from casebook.utils import now


class Project(MongoModel):
    """Container for test cases, defects and their attachments."""

    key: str  # URL-friendly unique ID
    name: str
    description: str = ""
    members: list[UUID]  # Users with access
    created_at: datetime = Field(default_factory=now)
