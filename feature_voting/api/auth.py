"""Authentication API routes.

Identity itself comes from an external provider; these endpoints only
describe the acting user and, outside production, issue tokens for
existing users.
"""

from fastapi import APIRouter, HTTPException, status

from ..core.config import get_settings
from ..core.dependencies import CurrentUserDep, SessionDep
from ..core.security import create_access_token
from ..schemas import DevLoginRequest, RolesResponse, TokenResponse, UserResponse
from ..services import RoleAuthority, UserDirectory

router = APIRouter(prefix="/auth", tags=["authentication"])


def _user_response(user, roles) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        roles=RolesResponse.from_roles(roles),
    )


@router.post("/dev-login", response_model=TokenResponse)
async def dev_login(request: DevLoginRequest, session: SessionDep):
    """
    Development login - issues a token without any credential check.

    Disabled in production.
    """
    if get_settings().environment == "production":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )

    user = await UserDirectory(session).get_by_email(request.email)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with email {request.email} not found",
        )

    roles = await RoleAuthority(session).effective_roles(user.id)
    return TokenResponse(
        access_token=create_access_token(user_id=user.id, email=user.email),
        user=_user_response(user, roles),
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUserDep):
    """The acting user and their effective roles."""
    return _user_response(current_user.user, current_user.roles)
