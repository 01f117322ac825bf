"""Role API Routes: system admin grants."""

from uuid import UUID

from fastapi import APIRouter

from ..core.dependencies import CurrentUserDep
from ..schemas import SystemAdminRequest, SystemAdminResponse
from .users import RoleAuthorityDep

router = APIRouter(prefix="/roles", tags=["roles"])


@router.post("/system-admins", response_model=SystemAdminResponse)
async def grant_system_admin(
    request: SystemAdminRequest,
    current_user: CurrentUserDep,
    authority: RoleAuthorityDep,
):
    outcome = await authority.grant_system_admin(current_user.id, request.user_id)
    return SystemAdminResponse(user_id=request.user_id, outcome=outcome)


@router.delete("/system-admins/{user_id}", response_model=SystemAdminResponse)
async def revoke_system_admin(
    user_id: UUID,
    current_user: CurrentUserDep,
    authority: RoleAuthorityDep,
):
    outcome = await authority.revoke_system_admin(current_user.id, user_id)
    return SystemAdminResponse(user_id=user_id, outcome=outcome)
