from datetime import datetime
from uuid import UUID

from pydantic import Field

from casebook.core.db import MongoModel
from casebook.utils import now


class Comment(MongoModel):
    """Comment on a defect."""

    defect_id: UUID
    project_id: UUID
    user_id: UUID
    number: int  # Sequential number per defect
    content: str
    created_at: datetime = Field(default_factory=now)
