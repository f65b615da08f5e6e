from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from casebook.core.db import MongoModel


class UserRole(StrEnum):
    ADMIN = "admin"  # Manages users and may delete any project
    MEMBER = "member"


class User(MongoModel):
    """User domain model with credentials."""

    username: str
    password_hash: str  # bcrypt hash
    role: UserRole = UserRole.MEMBER


class UserView(BaseModel):
    """User account information (API representation)."""

    id: UUID = Field(..., description="User ID")
    username: str = Field(..., description="Username")
    role: UserRole = Field(..., description="User role")

    @classmethod
    def from_domain(cls, user: User) -> "UserView":
        """Create view model from domain model."""
        return cls(id=user.id, username=user.username, role=user.role)


class ProfileView(UserView):
    """Current user together with the projects they belong to."""

    projects: list[str] = Field(..., description="Keys of the projects the user is a member of")
