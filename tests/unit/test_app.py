"""Tests for App facade operations on the current user and user accounts."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from casebook.app import App
from casebook.core.modules.session.models import AuthToken
from casebook.errors import ValidationError

TOKEN = AuthToken("session-token")


@pytest.fixture
def services(mock_user, mock_admin, mock_project):
    users = {user.username: user for user in (mock_user, mock_admin)}
    return SimpleNamespace(
        access=SimpleNamespace(
            ensure_authenticated=AsyncMock(return_value=mock_user), ensure_admin=AsyncMock(return_value=mock_admin)
        ),
        user=SimpleNamespace(
            get_user_by_username=MagicMock(side_effect=users.__getitem__), delete_user=AsyncMock(), change_password=AsyncMock()
        ),
        session=SimpleNamespace(invalidate_user_sessions=AsyncMock(return_value=2)),
        project=SimpleNamespace(get_projects_by_member=MagicMock(return_value=[mock_project])),
    )


@pytest.fixture
def app(services):
    facade = App.__new__(App)
    facade._core = SimpleNamespace(services=services)
    return facade


class TestCurrentUser:
    @pytest.mark.asyncio
    async def test_profile_lists_project_keys(self, app, services, mock_user):
        profile = await app.get_current_user(TOKEN)

        assert profile.username == mock_user.username
        assert profile.projects == ["checkout"]
        services.project.get_projects_by_member.assert_called_once_with(mock_user.id)


class TestDeleteUser:
    @pytest.mark.asyncio
    async def test_deleted_user_loses_sessions(self, app, services, mock_user):
        await app.delete_user(TOKEN, mock_user.username)

        services.user.delete_user.assert_awaited_once_with(mock_user.id)
        services.session.invalidate_user_sessions.assert_awaited_once_with(mock_user.id)

    @pytest.mark.asyncio
    async def test_cannot_delete_self(self, app, services, mock_admin):
        with pytest.raises(ValidationError, match="yourself"):
            await app.delete_user(TOKEN, mock_admin.username)

        services.user.delete_user.assert_not_awaited()
        services.session.invalidate_user_sessions.assert_not_awaited()


class TestChangePassword:
    @pytest.mark.asyncio
    async def test_other_sessions_ended(self, app, services, mock_user):
        await app.change_password(TOKEN, "old-secret", "new-secret")

        services.user.change_password.assert_awaited_once_with(mock_user.id, "old-secret", "new-secret")
        services.session.invalidate_user_sessions.assert_awaited_once_with(mock_user.id, keep=TOKEN)

    @pytest.mark.asyncio
    async def test_sessions_kept_when_change_fails(self, app, services):
        services.user.change_password.side_effect = ValidationError("Invalid current password")

        with pytest.raises(ValidationError):
            await app.change_password(TOKEN, "wrong", "new-secret")

        services.session.invalidate_user_sessions.assert_not_awaited()
