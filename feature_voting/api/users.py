"""User API Routes: listing users under a role lens and deleting users."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core.dependencies import CurrentUserDep, SessionDep
from ..schemas import DeleteUserResponse, RolesResponse, UserResponse
from ..services import Forbidden, RoleAuthority, ViewMode

router = APIRouter(prefix="/users", tags=["users"])


def get_role_authority(session: SessionDep) -> RoleAuthority:
    return RoleAuthority(session)


RoleAuthorityDep = Annotated[RoleAuthority, Depends(get_role_authority)]


@router.get("", response_model=list[UserResponse])
async def list_users(
    current_user: CurrentUserDep,
    authority: RoleAuthorityDep,
    view_mode: Annotated[ViewMode, Query(alias="viewMode")] = ViewMode.SYSTEM_ADMIN,
):
    """Users visible to the acting user.

    ``system-admin`` lists everyone; ``product-owner`` lists members of the
    products the acting user owns.
    """
    visible = await authority.visible_users(current_user.id, view_mode)
    return [
        UserResponse(
            id=entry.user.id,
            name=entry.user.name,
            email=entry.user.email,
            created_at=entry.user.created_at,
            roles=RolesResponse.from_roles(entry.roles),
        )
        for entry in visible
    ]


@router.get("/{user_id}/roles", response_model=RolesResponse)
async def get_user_roles(
    user_id: UUID,
    current_user: CurrentUserDep,
    authority: RoleAuthorityDep,
):
    if user_id != current_user.id and not current_user.is_system_admin:
        raise Forbidden("Only system admins can view other users' roles")
    return RolesResponse.from_roles(await authority.effective_roles(user_id))


@router.delete("/{user_id}", response_model=DeleteUserResponse)
async def delete_user(
    user_id: UUID,
    current_user: CurrentUserDep,
    authority: RoleAuthorityDep,
):
    """Delete a user with all of their role grants."""
    deleted = await authority.delete_user(current_user.id, user_id)
    return DeleteUserResponse(
        message=f"Deleted user {deleted.email}",
        user_id=deleted.id,
    )
