from typing import Annotated, cast

from fastapi import Depends, Path, Query, Request
from fastapi.security import APIKeyCookie, HTTPAuthorizationCredentials, HTTPBearer

from casebook.app import App
from casebook.core.modules.session.models import AuthToken
from casebook.errors import AuthenticationError
from casebook.utils import SLUG_RE

AUTH_COOKIE = "auth_token"
MAX_PAGE_SIZE = 500

bearer_scheme = HTTPBearer(auto_error=False)
cookie_scheme = APIKeyCookie(name=AUTH_COOKIE, auto_error=False)


async def get_app(request: Request) -> App:
    return cast(App, request.app.state.app)


async def get_auth_token(
    app: Annotated[App, Depends(get_app)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
    token_cookie: Annotated[str | None, Depends(cookie_scheme)] = None,
) -> AuthToken:
    """Return the first valid session token, Bearer header before cookie.

    A stale Bearer token does not hide a valid cookie.
    """
    candidates = []
    if credentials is not None and credentials.scheme == "Bearer":
        candidates.append(credentials.credentials)
    if token_cookie:
        candidates.append(token_cookie)

    for candidate in candidates:
        if await app.is_auth_token_valid(AuthToken(candidate)):
            return AuthToken(candidate)
    raise AuthenticationError


AppDep = Annotated[App, Depends(get_app)]
AuthTokenDep = Annotated[AuthToken, Depends(get_auth_token)]

# Path and query parameters shared by the project-scoped routers
ProjectKey = Annotated[str, Path(pattern=SLUG_RE.pattern, description="Project key (slug), e.g. 'checkout'")]
PageLimit = Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE, description="Maximum items to return")]
PageOffset = Annotated[int, Query(ge=0, description="Number of items to skip")]
