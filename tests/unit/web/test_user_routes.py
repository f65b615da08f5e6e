"""Tests for the user administration and metadata endpoints."""

from unittest.mock import AsyncMock

import pytest

from casebook.core.modules.attachment.models import UploadLimits
from casebook.core.modules.session.models import AuthToken
from casebook.core.modules.user.models import UserRole, UserView
from casebook.web.routers.metadata import get_upload_limits
from casebook.web.routers.users import CreateUserRequest, SetRoleRequest, create_user, set_user_role

TOKEN = AuthToken("session-token")


@pytest.fixture
def app(mock_user):
    mock_app = AsyncMock()
    mock_app.create_user.return_value = UserView.from_domain(mock_user)
    mock_app.set_user_role.return_value = UserView.from_domain(mock_user.model_copy(update={"role": UserRole.ADMIN}))
    mock_app.get_upload_limits.return_value = UploadLimits(
        max_file_size=1024, chunk_size=512, max_chunks=10000, allowed_mime_types=["image/png"]
    )
    return mock_app


class TestUserRoutes:
    @pytest.mark.asyncio
    async def test_create_user_defaults_to_member(self, app):
        await create_user(CreateUserRequest(username="tester", password="secret"), app, TOKEN)

        app.create_user.assert_awaited_once_with(TOKEN, "tester", "secret", UserRole.MEMBER)

    @pytest.mark.asyncio
    async def test_set_role(self, app):
        result = await set_user_role("testuser", SetRoleRequest(role=UserRole.ADMIN), app, TOKEN)

        assert result.role == UserRole.ADMIN
        app.set_user_role.assert_awaited_once_with(TOKEN, "testuser", UserRole.ADMIN)


class TestMetadataRoutes:
    @pytest.mark.asyncio
    async def test_upload_limits(self, app):
        limits = await get_upload_limits(app, TOKEN)

        assert limits.chunk_size == 512
        app.get_upload_limits.assert_awaited_once_with(TOKEN)
