"""Login sessions of Casebook users."""

from datetime import datetime
from typing import NewType
from uuid import UUID

from pydantic import Field

from casebook.core.db import MongoModel
from casebook.utils import now

AuthToken = NewType("AuthToken", str)


class Session(MongoModel):
    """Bearer/cookie session of a user.

    Indexed on auth_token - unique, user_id, expires_at (TTL, removed once passed).
    """

    user_id: UUID
    auth_token: str
    created_at: datetime = Field(default_factory=now)
    expires_at: datetime

    def is_expired(self, at: datetime | None = None) -> bool:
        return self.expires_at <= (at or now())
