"""Tests for session expiry and invalidation."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from casebook.core.modules.session.models import AuthToken, Session
from casebook.core.modules.session.service import SESSION_TTL, SessionService
from casebook.errors import AuthenticationError
from casebook.utils import now


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.delete_one = AsyncMock()
    collection.delete_many = AsyncMock(return_value=SimpleNamespace(deleted_count=2))
    return collection


@pytest.fixture
def users(mock_user):
    return {mock_user.id: mock_user}


@pytest.fixture
def service(collection, users):
    database = MagicMock()
    database.get_collection.return_value = collection
    core = SimpleNamespace(
        services=SimpleNamespace(user=SimpleNamespace(has_user=users.__contains__, get_user=users.__getitem__))
    )
    session_service = SessionService(database)
    session_service.set_core(core)
    return session_service


class TestSessions:
    @pytest.mark.asyncio
    async def test_new_session_expires_after_ttl(self, service, collection, mock_user):
        token = await service.create_session(mock_user.id)

        stored = collection.insert_one.await_args.args[0]
        assert stored["auth_token"] == token
        lifetime = stored["expires_at"] - stored["created_at"]
        assert abs(lifetime.total_seconds() - SESSION_TTL) < 5

    @pytest.mark.asyncio
    async def test_new_session_served_from_cache(self, service, collection, mock_user):
        token = await service.create_session(mock_user.id)

        assert await service.get_authenticated_user(token) == mock_user
        collection.find_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stored_session_loaded(self, service, collection, mock_user):
        session = Session(user_id=mock_user.id, auth_token="stored", expires_at=now() + timedelta(hours=1))
        collection.find_one.return_value = session.to_mongo()

        assert await service.is_auth_token_valid(AuthToken("stored"))

    @pytest.mark.asyncio
    async def test_expired_stored_session_rejected(self, service, collection, mock_user):
        """Expired sessions may still be in the collection until the TTL monitor removes them."""
        session = Session(user_id=mock_user.id, auth_token="old", expires_at=now() - timedelta(seconds=1))
        collection.find_one.return_value = session.to_mongo()

        with pytest.raises(AuthenticationError):
            await service.get_authenticated_user(AuthToken("old"))

    @pytest.mark.asyncio
    async def test_cached_session_expires(self, service, mock_user):
        token = await service.create_session(mock_user.id)
        service._sessions[token] = service._sessions[token].model_copy(update={"expires_at": now() - timedelta(seconds=1)})

        assert not await service.is_auth_token_valid(token)
        assert token not in service._sessions

    @pytest.mark.asyncio
    async def test_unknown_token(self, service):
        assert not await service.is_auth_token_valid(AuthToken("nope"))

    @pytest.mark.asyncio
    async def test_deleted_user_loses_session(self, service, users, mock_user):
        token = await service.create_session(mock_user.id)
        users.clear()

        with pytest.raises(AuthenticationError):
            await service.get_authenticated_user(token)


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_session(self, service, collection, mock_user):
        token = await service.create_session(mock_user.id)

        await service.invalidate_session(token)

        collection.delete_one.assert_awaited_once_with({"auth_token": token})
        assert not await service.is_auth_token_valid(token)

    @pytest.mark.asyncio
    async def test_invalidate_all_sessions_of_user(self, service, collection, mock_user):
        first = await service.create_session(mock_user.id)
        second = await service.create_session(mock_user.id)

        assert await service.invalidate_user_sessions(mock_user.id) == 2

        collection.delete_many.assert_awaited_once_with({"user_id": mock_user.id})
        assert first not in service._sessions
        assert second not in service._sessions

    @pytest.mark.asyncio
    async def test_keep_current_session(self, service, collection, mock_user):
        current = await service.create_session(mock_user.id)
        other = await service.create_session(mock_user.id)

        await service.invalidate_user_sessions(mock_user.id, keep=current)

        collection.delete_many.assert_awaited_once_with({"user_id": mock_user.id, "auth_token": {"$ne": current}})
        assert current in service._sessions
        assert other not in service._sessions
