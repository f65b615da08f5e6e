from typing import Any
from uuid import UUID

import bcrypt
import structlog
from pymongo.asynchronous.database import AsyncDatabase

from casebook.core.core import Service
from casebook.core.modules.user.models import User, UserRole
from casebook.core.modules.user.validators import validate_password, validate_username
from casebook.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

ADMIN_USERNAME = "admin"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


class UserService(Service):
    """Manages users with in-memory cache."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("users")
        self._users: dict[UUID, User] = {}

    def get_user(self, user_id: UUID) -> User:
        """Get user by ID from cache."""
        if user_id not in self._users:
            raise NotFoundError(f"User '{user_id}' not found")
        return self._users[user_id]

    def get_user_by_username(self, username: str) -> User:
        """Get user by username from cache."""
        user = next((u for u in self._users.values() if u.username == username), None)
        if user is None:
            raise NotFoundError(f"User '{username}' not found")
        return user

    def has_user(self, user_id: UUID) -> bool:
        return user_id in self._users

    def has_username(self, username: str) -> bool:
        return any(user.username == username for user in self._users.values())

    def get_all_users(self) -> list[User]:
        return list(self._users.values())

    async def create_user(self, username: str, password: str, role: UserRole = UserRole.MEMBER) -> User:
        """Create user with hashed password."""
        validate_username(username)
        if self.has_username(username):
            raise ValidationError(f"User '{username}' already exists")

        validate_password(password)
        user = User(username=username, password_hash=hash_password(password), role=role)
        await self._collection.insert_one(user.to_mongo())
        logger.info("user_created", user_id=user.id, username=username, role=role)
        return await self.update_user_cache(user.id)

    def verify_password(self, username: str, password: str) -> bool:
        """Verify password against stored hash."""
        user = next((u for u in self._users.values() if u.username == username), None)
        if user is None:
            return False
        return check_password(password, user.password_hash)

    async def change_password(self, user_id: UUID, old_password: str, new_password: str) -> None:
        """Change user password after verifying current password."""
        user = self.get_user(user_id)
        if not check_password(old_password, user.password_hash):
            raise ValidationError("Invalid current password")

        validate_password(new_password)
        await self._collection.update_one({"_id": user_id}, {"$set": {"password_hash": hash_password(new_password)}})
        await self.update_user_cache(user_id)

    async def set_role(self, user_id: UUID, role: UserRole) -> User:
        """Change the role of a user. At least one admin always remains."""
        user = self.get_user(user_id)
        if user.role == role:
            return user
        if user.role == UserRole.ADMIN and not any(u.role == UserRole.ADMIN and u.id != user_id for u in self._users.values()):
            raise ValidationError("Cannot remove the role of the last admin")

        await self._collection.update_one({"_id": user_id}, {"$set": {"role": role}})
        logger.info("user_role_changed", user_id=user_id, role=role)
        return await self.update_user_cache(user_id)

    async def delete_user(self, user_id: UUID) -> None:
        """Delete a user who is not a member of any project."""
        if not self.has_user(user_id):
            raise NotFoundError(f"User '{user_id}' not found")

        if self.core.services.project.is_user_member_of_any_project(user_id):
            raise ValidationError("Cannot delete user: member of one or more projects")

        await self._collection.delete_one({"_id": user_id})
        del self._users[user_id]
        logger.info("user_deleted", user_id=user_id)

    async def ensure_admin_user_exists(self) -> None:
        """Create default admin user if not exists."""
        if not self.has_username(ADMIN_USERNAME):
            await self.create_user(ADMIN_USERNAME, self.core.config.admin_password, UserRole.ADMIN)

    async def update_all_users_cache(self) -> None:
        """Reload all users cache from database."""
        users = await User.list_cursor(self._collection.find())
        self._users = {user.id: user for user in users}

    async def update_user_cache(self, user_id: UUID) -> User:
        """Reload a specific user cache from database."""
        user = await self._collection.find_one({"_id": user_id})
        if user is None:
            raise NotFoundError(f"User '{user_id}' not found")
        self._users[user_id] = User.model_validate(user)
        return self._users[user_id]

    async def on_start(self) -> None:
        """Initialize indexes, cache, and admin user."""
        await self._collection.create_index([("username", 1)], unique=True)
        await self.update_all_users_cache()
        await self.ensure_admin_user_exists()
        logger.debug("user_service_started", user_count=len(self._users))
