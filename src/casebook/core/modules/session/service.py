import secrets
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from casebook.core.core import Service
from casebook.core.modules.session.models import AuthToken, Session
from casebook.core.modules.user.models import User
from casebook.errors import AuthenticationError
from casebook.utils import expires_in

logger = structlog.get_logger(__name__)

SESSION_TTL = 30 * 24 * 60 * 60  # 30 days


class SessionService(Service):
    """Service for managing user sessions."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("sessions")
        self._sessions: dict[AuthToken, Session] = {}

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self._collection.create_index([("auth_token", 1)], unique=True)
        await self._collection.create_index([("user_id", 1)])
        await self._collection.create_index([("expires_at", 1)], expireAfterSeconds=0)

    async def create_session(self, user_id: UUID) -> AuthToken:
        auth_token = AuthToken(secrets.token_urlsafe(32))
        new_session = Session(user_id=user_id, auth_token=auth_token, expires_at=expires_in(SESSION_TTL))
        await self._collection.insert_one(new_session.to_mongo())
        self._sessions[auth_token] = new_session
        logger.debug("session_created", user_id=user_id, expires_at=new_session.expires_at)
        return auth_token

    async def _get_session(self, auth_token: AuthToken) -> Session:
        session = self._sessions.get(auth_token)
        if session is None:
            doc = await self._collection.find_one({"auth_token": auth_token})
            if doc is None:
                raise AuthenticationError("Invalid or expired session")
            session = Session.model_validate(doc)

        # The TTL monitor runs about once a minute, expired sessions may still be stored
        if session.is_expired():
            self._sessions.pop(auth_token, None)
            raise AuthenticationError("Invalid or expired session")
        return session

    async def get_authenticated_user(self, auth_token: AuthToken) -> User:
        session = await self._get_session(auth_token)

        # Users deleted after login lose their sessions immediately
        if not self.core.services.user.has_user(session.user_id):
            self._sessions.pop(auth_token, None)
            raise AuthenticationError("Invalid or expired session")

        self._sessions[auth_token] = session
        return self.core.services.user.get_user(session.user_id)

    async def is_auth_token_valid(self, auth_token: AuthToken) -> bool:
        try:
            await self.get_authenticated_user(auth_token)
        except AuthenticationError:
            return False
        return True

    async def invalidate_session(self, auth_token: AuthToken) -> None:
        """Invalidate a session by removing it from the database."""
        self._sessions.pop(auth_token, None)
        await self._collection.delete_one({"auth_token": auth_token})

    async def invalidate_user_sessions(self, user_id: UUID, keep: AuthToken | None = None) -> int:
        """Remove the sessions of a user, except the one given as keep."""
        for token in [token for token, session in self._sessions.items() if session.user_id == user_id and token != keep]:
            del self._sessions[token]
        query: dict[str, Any] = {"user_id": user_id}
        if keep is not None:
            query["auth_token"] = {"$ne": keep}
        result = await self._collection.delete_many(query)
        logger.debug("user_sessions_invalidated", user_id=user_id, count=result.deleted_count)
        return result.deleted_count
