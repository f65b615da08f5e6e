from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from uuid import UUID

from casebook.config import Config
from casebook.core.core import Core
from casebook.core.modules.attachment.models import (
    Attachment,
    AttachmentOwnerType,
    AttachmentStatus,
    DeletePreparation,
    DownloadUrl,
    UploadLimits,
    UploadPart,
    UploadTicket,
)
from casebook.core.modules.attachment.storage import BlobStore
from casebook.core.modules.comment.models import Comment
from casebook.core.modules.defect.models import (
    Defect,
    DefectCreate,
    DefectSeverity,
    DefectStatistics,
    DefectStatus,
    DefectUpdate,
)
from casebook.core.modules.project.models import Project
from casebook.core.modules.session.models import AuthToken
from casebook.core.modules.testcase.models import Priority, TestCase, TestCaseCreate, TestCaseStatus, TestCaseUpdate
from casebook.core.modules.user.models import ProfileView, User, UserRole, UserView
from casebook.core.pagination import PaginationResult
from casebook.errors import AuthenticationError, ValidationError


class App:
    """Facade for all application operations, validates permissions before delegating to Core."""

    def __init__(self, config: Config, blob_store: BlobStore | None = None) -> None:
        self._core = Core(config, blob_store)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    # === Auth and users ===
    async def is_auth_token_valid(self, auth_token: AuthToken) -> bool:
        """Check if authentication token is valid."""
        return await self._core.services.session.is_auth_token_valid(auth_token)

    async def login(self, username: str, password: str) -> AuthToken:
        """Authenticate user and create session."""
        if not self._core.services.user.verify_password(username, password):
            raise AuthenticationError
        user = self._resolve_user(username)
        return await self._core.services.session.create_session(user.id)

    async def logout(self, auth_token: AuthToken) -> None:
        """Invalidate user session."""
        await self._core.services.access.ensure_authenticated(auth_token)
        await self._core.services.session.invalidate_session(auth_token)

    async def get_current_user(self, auth_token: AuthToken) -> ProfileView:
        """Get current authenticated user profile with the keys of their projects."""
        current_user = await self._core.services.access.ensure_authenticated(auth_token)
        projects = self._core.services.project.get_projects_by_member(current_user.id)
        view = UserView.from_domain(current_user)
        return ProfileView(**view.model_dump(), projects=[project.key for project in projects])

    async def change_password(self, auth_token: AuthToken, old_password: str, new_password: str) -> None:
        """Change password for current user and end their other sessions."""
        current_user = await self._core.services.access.ensure_authenticated(auth_token)
        await self._core.services.user.change_password(current_user.id, old_password, new_password)
        await self._core.services.session.invalidate_user_sessions(current_user.id, keep=auth_token)

    async def get_all_users(self, auth_token: AuthToken) -> list[UserView]:
        """Get all users (requires authentication)."""
        await self._core.services.access.ensure_authenticated(auth_token)
        users = self._core.services.user.get_all_users()
        return [UserView.from_domain(user) for user in users]

    async def create_user(
        self, auth_token: AuthToken, username: str, password: str, role: UserRole = UserRole.MEMBER
    ) -> UserView:
        """Create a new user (admin only)."""
        await self._core.services.access.ensure_admin(auth_token)
        user = await self._core.services.user.create_user(username, password, role)
        return UserView.from_domain(user)

    async def delete_user(self, auth_token: AuthToken, username: str) -> None:
        """Delete a user (admin only, cannot delete self or users in projects)."""
        current_user = await self._core.services.access.ensure_admin(auth_token)
        user = self._resolve_user(username)

        if user.id == current_user.id:
            raise ValidationError("Cannot delete yourself")

        await self._core.services.user.delete_user(user.id)
        await self._core.services.session.invalidate_user_sessions(user.id)

    async def set_user_role(self, auth_token: AuthToken, username: str, role: UserRole) -> UserView:
        """Change the role of a user (admin only)."""
        await self._core.services.access.ensure_admin(auth_token)
        user = self._resolve_user(username)
        return UserView.from_domain(await self._core.services.user.set_role(user.id, role))

    # === Projects ===
    async def get_projects_by_member(self, auth_token: AuthToken) -> list[Project]:
        """Get projects where current user is a member, or all projects for admins."""
        current_user = await self._core.services.access.ensure_authenticated(auth_token)
        if current_user.role == UserRole.ADMIN:
            return self._core.services.project.get_all_projects()
        return self._core.services.project.get_projects_by_member(current_user.id)

    async def get_project(self, auth_token: AuthToken, project_key: str) -> Project:
        """Get project by key (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return project

    async def create_project(self, auth_token: AuthToken, key: str, name: str, description: str) -> Project:
        """Create new project with current user as first member."""
        current_user = await self._core.services.access.ensure_authenticated(auth_token)
        return await self._core.services.project.create_project(key, name, description, current_user.id)

    async def update_project(
        self, auth_token: AuthToken, project_key: str, name: str | None = None, description: str | None = None
    ) -> Project:
        """Update project name and/or description (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.project.update_project(project.id, name, description)

    async def add_project_member(self, auth_token: AuthToken, project_key: str, username: str) -> Project:
        """Add a member to a project (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        user = self._resolve_user(username)
        return await self._core.services.project.add_member(project.id, user.id)

    async def remove_project_member(self, auth_token: AuthToken, project_key: str, username: str) -> None:
        """Remove a member from a project (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        user = self._resolve_user(username)
        await self._core.services.project.remove_member(project.id, user.id)

    async def delete_project(self, auth_token: AuthToken, project_key: str) -> None:
        """Delete a project and all its data (admin only)."""
        await self._core.services.access.ensure_admin(auth_token)
        project = self._resolve_project(project_key)
        await self._core.services.project.delete_project(project.id)

    # === Test cases ===
    async def get_test_cases(
        self,
        auth_token: AuthToken,
        project_key: str,
        limit: int = 50,
        offset: int = 0,
        status: TestCaseStatus | None = None,
        priority: Priority | None = None,
        search: str | None = None,
    ) -> PaginationResult[TestCase]:
        """Get paginated test cases of a project (members only), optionally filtered."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.testcase.list_test_cases(project.id, limit, offset, status, priority, search)

    async def get_test_case(self, auth_token: AuthToken, project_key: str, tc_id: str) -> TestCase:
        """Get test case by tc id (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.testcase.get_test_case_by_tc_id(project.id, tc_id)

    async def create_test_case(self, auth_token: AuthToken, project_key: str, data: TestCaseCreate) -> TestCase:
        """Create test case with the next tc id of the project (members only)."""
        project = self._resolve_project(project_key)
        current_user = await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.testcase.create_test_case(project.id, current_user.id, data)

    async def update_test_case(self, auth_token: AuthToken, project_key: str, tc_id: str, data: TestCaseUpdate) -> TestCase:
        """Update test case fields (partial update, members only)."""
        project, test_case = await self._resolve_test_case(project_key, tc_id)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.testcase.update_test_case(test_case.id, data)

    async def delete_test_case(self, auth_token: AuthToken, project_key: str, tc_id: str) -> None:
        """Delete test case with its attachments (members only)."""
        project, test_case = await self._resolve_test_case(project_key, tc_id)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        await self._core.services.testcase.delete_test_case(test_case.id)

    async def bulk_delete_test_cases(self, auth_token: AuthToken, project_key: str, tc_ids: list[str]) -> int:
        """Delete several test cases at once (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.testcase.bulk_delete_test_cases(project.id, tc_ids)

    # === Defects ===
    async def get_defects(
        self,
        auth_token: AuthToken,
        project_key: str,
        limit: int = 50,
        offset: int = 0,
        status: list[DefectStatus] | None = None,
        severity: list[DefectSeverity] | None = None,
        priority: list[Priority] | None = None,
        assignee: str | None = None,
        search: str | None = None,
    ) -> PaginationResult[Defect]:
        """Get paginated defects of a project (members only), optionally filtered."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        assigned_to = self._resolve_user(assignee).id if assignee else None
        return await self._core.services.defect.list_defects(
            project.id, limit, offset, status, severity, priority, assigned_to, search
        )

    async def get_defect(self, auth_token: AuthToken, project_key: str, defect_id: str) -> Defect:
        """Get defect by DEF id (members only)."""
        project, defect = await self._resolve_defect(project_key, defect_id)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return defect

    async def create_defect(self, auth_token: AuthToken, project_key: str, data: DefectCreate) -> Defect:
        """Create defect with the next DEF id of the project (members only)."""
        project = self._resolve_project(project_key)
        current_user = await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.defect.create_defect(project.id, current_user.id, data)

    async def update_defect(self, auth_token: AuthToken, project_key: str, defect_id: str, data: DefectUpdate) -> Defect:
        """Update defect fields (partial update, members only)."""
        project, defect = await self._resolve_defect(project_key, defect_id)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.defect.update_defect(defect.id, data)

    async def bulk_update_defect_status(
        self, auth_token: AuthToken, project_key: str, defect_ids: list[str], status: DefectStatus
    ) -> int:
        """Set the status of several defects at once (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.defect.bulk_update_status(project.id, defect_ids, status)

    async def get_defect_statistics(self, auth_token: AuthToken, project_key: str) -> DefectStatistics:
        """Get defect counts of a project (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.defect.get_statistics(project.id)

    async def delete_defect(self, auth_token: AuthToken, project_key: str, defect_id: str) -> None:
        """Delete defect with its comments and attachments (members only)."""
        project, defect = await self._resolve_defect(project_key, defect_id)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        await self._core.services.defect.delete_defect(defect.id)

    # === Comments ===
    async def get_defect_comments(
        self, auth_token: AuthToken, project_key: str, defect_id: str, limit: int = 50, offset: int = 0
    ) -> PaginationResult[Comment]:
        """Get paginated comments for defect (members only)."""
        project, defect = await self._resolve_defect(project_key, defect_id)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.comment.get_defect_comments(defect.id, limit, offset)

    async def create_comment(self, auth_token: AuthToken, project_key: str, defect_id: str, content: str) -> Comment:
        """Add comment to defect (members only)."""
        project, defect = await self._resolve_defect(project_key, defect_id)
        current_user = await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.comment.create_comment(defect.id, current_user.id, content)

    # === Attachments ===
    async def get_upload_limits(self, auth_token: AuthToken) -> UploadLimits:
        """Get upload size, chunking and type limits (requires authentication)."""
        await self._core.services.access.ensure_authenticated(auth_token)
        return self._core.services.attachment.get_upload_limits()

    async def initialize_upload(
        self, auth_token: AuthToken, project_key: str, filename: str, file_size: int, mime_type: str
    ) -> UploadTicket:
        """Start a multipart upload into the project (members only)."""
        project = self._resolve_project(project_key)
        current_user = await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.attachment.initialize_upload(project.id, current_user.id, filename, file_size, mime_type)

    async def complete_upload(
        self,
        auth_token: AuthToken,
        project_key: str,
        upload_id: str,
        storage_key: str,
        parts: list[UploadPart],
        owner_type: AttachmentOwnerType | None = None,
        owner_id: UUID | None = None,
    ) -> Attachment:
        """Finish a multipart upload and store the attachment (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.attachment.complete_upload(
            project.id, upload_id, storage_key, parts, owner_type, owner_id
        )

    async def abort_upload(self, auth_token: AuthToken, project_key: str, upload_id: str, storage_key: str) -> bool:
        """Cancel a multipart upload (members only)."""
        project = self._resolve_project(project_key)
        await self._core.services.access.ensure_project_member(auth_token, project.id)
        return await self._core.services.attachment.abort_upload(project.id, upload_id, storage_key)

    async def get_owner_attachments(
        self, auth_token: AuthToken, owner_type: AttachmentOwnerType, owner_id: UUID
    ) -> list[Attachment]:
        """List attachments of a test case, step, defect or comment (members of its project only)."""
        project_id = await self._core.services.attachment.get_owner_project_id(owner_type, owner_id)
        await self._core.services.access.ensure_project_member(auth_token, project_id)
        return await self._core.services.attachment.list_owner_attachments(owner_type, owner_id)

    async def get_attachment_download_url(self, auth_token: AuthToken, attachment_id: UUID) -> DownloadUrl:
        """Get a presigned download link (members only)."""
        await self._resolve_attachment(auth_token, attachment_id)
        return await self._core.services.attachment.get_download_url(attachment_id)

    async def get_attachment_status(self, auth_token: AuthToken, attachment_id: UUID) -> AttachmentStatus:
        """Get the deletion lifecycle status of an attachment (members only)."""
        await self._resolve_attachment(auth_token, attachment_id)
        return await self._core.services.attachment.get_status(attachment_id)

    async def link_attachment(
        self, auth_token: AuthToken, attachment_id: UUID, owner_type: AttachmentOwnerType, owner_id: UUID
    ) -> Attachment:
        """Attach an unowned attachment to an entity (members only)."""
        await self._resolve_attachment(auth_token, attachment_id)
        return await self._core.services.attachment.link_attachment(attachment_id, owner_type, owner_id)

    async def prepare_attachment_delete(self, auth_token: AuthToken, attachment_id: UUID) -> DeletePreparation:
        """First phase of an attachment deletion (members only)."""
        await self._resolve_attachment(auth_token, attachment_id)
        return await self._core.services.attachment.prepare_delete(attachment_id)

    async def confirm_attachment_delete(self, auth_token: AuthToken, attachment_id: UUID, token: str | None = None) -> bool:
        """Second phase of an attachment deletion (members only)."""
        await self._resolve_attachment(auth_token, attachment_id)
        return await self._core.services.attachment.confirm_delete(attachment_id, token)

    # === Metadata ===
    async def get_version(self, auth_token: AuthToken) -> dict[str, str]:
        """Get package version and build information (requires authentication)."""
        await self._core.services.access.ensure_authenticated(auth_token)
        try:
            package_version = version("casebook")
        except PackageNotFoundError:
            package_version = "unknown"
        config = self._core.config
        return {
            "version": package_version,
            "git_commit_hash": config.git_commit_hash,
            "git_commit_date": config.git_commit_date,
            "build_time": config.build_time,
        }

    # === Private resolver methods ===
    def _resolve_project(self, key: str) -> Project:
        """Resolve project key to Project object. Raises NotFoundError if not found."""
        return self._core.services.project.get_project_by_key(key)

    def _resolve_user(self, username: str) -> User:
        """Resolve username to User object. Raises NotFoundError if not found."""
        return self._core.services.user.get_user_by_username(username)

    async def _resolve_test_case(self, project_key: str, tc_id: str) -> tuple[Project, TestCase]:
        project = self._resolve_project(project_key)
        test_case = await self._core.services.testcase.get_test_case_by_tc_id(project.id, tc_id)
        return project, test_case

    async def _resolve_defect(self, project_key: str, defect_id: str) -> tuple[Project, Defect]:
        project = self._resolve_project(project_key)
        defect = await self._core.services.defect.get_defect_by_defect_id(project.id, defect_id)
        return project, defect

    async def _resolve_attachment(self, auth_token: AuthToken, attachment_id: UUID) -> Attachment:
        """Load an attachment and check the caller is a member of its project."""
        await self._core.services.access.ensure_authenticated(auth_token)
        attachment = await self._core.services.attachment.get_attachment(attachment_id)
        await self._core.services.access.ensure_project_member(auth_token, attachment.project_id)
        return attachment
