from collections.abc import Callable, Mapping
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from desk.core.config import get_settings
from desk.tickets.state import ActorRole


class User:
    """Simple representation of an authenticated user."""

    def __init__(self, user_id: str, role: ActorRole):
        self.user_id = user_id
        self.role = role

    def has_role(self, *roles: ActorRole) -> bool:
        return self.role in roles


bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None, token_map: Mapping[str, str]) -> User:
    """Return the user behind a static ``<user_id>:<role>`` bearer token."""

    if token is None or token not in token_map:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user_id, _, role = token_map[token].partition(":")
    try:
        return User(user_id=user_id, role=ActorRole(role))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials") from None


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Very small authentication stub.

    Tokens are mapped to users through ``Settings.api_tokens``; account
    management lives outside this service.
    """

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token, get_settings().api_tokens)
    request.state.user = user
    return user


def role_required(*roles: ActorRole) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has one of the requested roles."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
