"""FastAPI dependencies for the acting identity and its roles."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User
from ..services.role_authority import EffectiveRoles, Role, RoleAuthority
from ..services.users import UserDirectory
from .database import get_session
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Represents the acting user and their effective roles."""

    def __init__(self, user: User, roles: EffectiveRoles):
        self.user = user
        self.roles = roles

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def email(self) -> str:
        return self.user.email

    @property
    def name(self) -> str:
        return self.user.name

    @property
    def is_system_admin(self) -> bool:
        return self.roles.is_system_admin

    @property
    def primary_role(self) -> Role:
        return self.roles.primary_role


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def resolve_current_user(
    session: AsyncSession,
    token: str | None = None,
    requester_email: str | None = None,
) -> CurrentUser | None:
    """Resolve the acting user from a bearer token, else a requester email.

    Returns None when neither is supplied; raises 401 when one is supplied
    but does not resolve to a known user.
    """
    user: User | None = None
    if token:
        payload = decode_token(token)
        if not payload:
            raise _unauthorized("Invalid or expired token")
        try:
            user_id = UUID(payload.sub)
        except ValueError:
            raise _unauthorized("Invalid token subject") from None
        user = await session.get(User, user_id)
        if user is None:
            raise _unauthorized("User not found")
    elif requester_email:
        user = await UserDirectory(session).get_by_email(requester_email)
        if user is None:
            logger.warning(f"Unknown requester email: {requester_email}")
            raise _unauthorized("Requester not found")
    else:
        return None

    roles = await RoleAuthority(session).effective_roles(user.id)
    return CurrentUser(user=user, roles=roles)


async def get_current_user_optional(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
    x_requester_email: Annotated[str | None, Header()] = None,
) -> CurrentUser | None:
    """Optional identity - returns None if no credentials were sent."""
    return await resolve_current_user(
        session,
        token=credentials.credentials if credentials else None,
        requester_email=x_requester_email,
    )


async def get_current_user(
    current_user: Annotated[CurrentUser | None, Depends(get_current_user_optional)],
) -> CurrentUser:
    """Dependency to get the acting user.

    Accepts ``Authorization: Bearer <jwt>`` or an ``X-Requester-Email``
    header naming an existing user.
    """
    if current_user is None:
        raise _unauthorized("Not authenticated")
    return current_user


def require_system_admin(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Require the system admin role."""
    if not current_user.is_system_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System admin privileges required",
        )
    return current_user


# Type aliases for dependency injection
SessionDep = Annotated[AsyncSession, Depends(get_session)]
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
OptionalUserDep = Annotated[CurrentUser | None, Depends(get_current_user_optional)]
SystemAdminDep = Annotated[CurrentUser, Depends(require_system_admin)]
