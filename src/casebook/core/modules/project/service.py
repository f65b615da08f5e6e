from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from casebook import utils
from casebook.core.core import Service
from casebook.core.modules.project.models import Project
from casebook.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class ProjectService(Service):
    """Service for managing projects with in-memory caching."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("projects")
        self._projects: dict[UUID, Project] = {}

    async def on_start(self) -> None:
        await self._collection.create_index([("key", 1)], unique=True)
        await self.update_all_projects_cache()
        logger.debug("project_service_started", project_count=len(self._projects))

    async def update_all_projects_cache(self) -> None:
        """Reload all projects cache from database."""
        projects = await Project.list_cursor(self._collection.find())
        self._projects = {project.id: project for project in projects}

    async def update_project_cache(self, project_id: UUID) -> Project:
        """Reload a specific project cache from database."""
        project = await self._collection.find_one({"_id": project_id})
        if project is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        self._projects[project_id] = Project.model_validate(project)
        return self._projects[project_id]

    def get_project(self, project_id: UUID) -> Project:
        """Get a project by ID."""
        if project_id not in self._projects:
            raise NotFoundError(f"Project '{project_id}' not found")
        return self._projects[project_id]

    def get_project_by_key(self, key: str) -> Project:
        """Get a project by key."""
        for project in self._projects.values():
            if project.key == key:
                return project
        raise NotFoundError(f"Project with key '{key}' not found")

    def get_projects_by_member(self, member: UUID) -> list[Project]:
        """Get all projects where the user is a member."""
        return [project for project in self._projects.values() if member in project.members]

    def get_all_projects(self) -> list[Project]:
        return list(self._projects.values())

    def is_user_member_of_any_project(self, user_id: UUID) -> bool:
        """Check if a user is a member of any project."""
        return any(user_id in project.members for project in self._projects.values())

    def has_key(self, key: str) -> bool:
        """Check if a project exists by key."""
        return any(project.key == key for project in self._projects.values())

    async def create_project(self, key: str, name: str, description: str, member: UUID) -> Project:
        """Create a new project with validation."""
        if not self.core.services.user.has_user(member):
            raise ValidationError(f"User '{member}' does not exist")
        if not utils.is_slug(key):
            raise ValidationError(f"Invalid project key format: '{key}'")
        if self.has_key(key):
            raise ValidationError(f"Project with key '{key}' already exists")
        if not name.strip():
            raise ValidationError("Project name cannot be empty")

        res = await self._collection.insert_one(
            Project(key=key, name=name, description=description, members=[member]).to_mongo()
        )
        logger.info("project_created", project_id=res.inserted_id, key=key)
        return await self.update_project_cache(res.inserted_id)

    async def add_member(self, project_id: UUID, user_id: UUID) -> Project:
        """Add a member to a project."""
        project = self.get_project(project_id)

        if not self.core.services.user.has_user(user_id):
            raise NotFoundError(f"User '{user_id}' not found")

        if user_id in project.members:
            raise ValidationError("User is already a member of this project")

        await self._collection.update_one({"_id": project_id}, {"$push": {"members": user_id}})
        return await self.update_project_cache(project_id)

    async def remove_member(self, project_id: UUID, user_id: UUID) -> None:
        """Remove a member from a project."""
        project = self.get_project(project_id)

        if user_id not in project.members:
            raise ValidationError("User is not a member of this project")

        if len(project.members) == 1:
            raise ValidationError("Cannot remove the last member from a project")

        await self._collection.update_one({"_id": project_id}, {"$pull": {"members": user_id}})
        await self.update_project_cache(project_id)

    async def update_project(self, project_id: UUID, name: str | None = None, description: str | None = None) -> Project:
        """Update name and/or description of a project."""
        self.get_project(project_id)

        changes: dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Project name cannot be empty")
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if not changes:
            return self.get_project(project_id)

        await self._collection.update_one({"_id": project_id}, {"$set": changes})
        return await self.update_project_cache(project_id)

    async def delete_project(self, project_id: UUID) -> None:
        """Delete a project with all of its comments, defects, test cases and attachments."""
        self.get_project(project_id)

        services = self.core.services
        await services.comment.delete_comments_by_project(project_id)
        await services.defect.delete_defects_by_project(project_id)
        await services.testcase.delete_test_cases_by_project(project_id)
        await services.attachment.delete_attachments_by_project(project_id)

        result = await self._collection.delete_one({"_id": project_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"Project '{project_id}' not found")

        self._projects.pop(project_id, None)
        logger.info("project_deleted", project_id=project_id)
