from uuid import UUID

from casebook.core.core import Service
from casebook.core.modules.project.models import Project
from casebook.core.modules.session.models import AuthToken
from casebook.core.modules.user.models import User, UserRole
from casebook.errors import AccessDeniedError


class AccessService(Service):
    async def ensure_authenticated(self, auth_token: AuthToken) -> User:
        """Ensure the user is authenticated."""
        return await self.core.services.session.get_authenticated_user(auth_token)

    async def ensure_project_member(self, auth_token: AuthToken, project_id: UUID) -> User:
        """Ensure the authenticated user is a member of the specified project.

        Admins pass for every project.
        """
        user = await self.core.services.session.get_authenticated_user(auth_token)
        project = self.core.services.project.get_project(project_id)
        if not is_project_member(user, project):
            raise AccessDeniedError(f"Access denied: user '{user.id}' is not a member of project '{project.key}'")
        return user

    async def ensure_admin(self, auth_token: AuthToken) -> User:
        """Ensure the authenticated user is admin, raise AccessDeniedError if not."""
        user = await self.core.services.session.get_authenticated_user(auth_token)
        if user.role != UserRole.ADMIN:
            raise AccessDeniedError("Admin privileges required")
        return user


def is_project_member(user: User, project: Project) -> bool:
    return user.role == UserRole.ADMIN or user.id in project.members
