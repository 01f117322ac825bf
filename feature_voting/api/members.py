"""
Member API Routes: add or remove product-level role grants.

The acting user comes from the bearer token, the ``X-Requester-Email``
header, or ``requesterEmail`` in the body, in that order.
"""

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import CurrentUser, OptionalUserDep, SessionDep, resolve_current_user
from ..schemas import MemberRequest, MemberResponse
from ..services import GrantOutcome, GrantResult, RoleAuthority

router = APIRouter(prefix="/members", tags=["members"])


async def _requester(
    session: AsyncSession,
    current_user: CurrentUser | None,
    request: MemberRequest,
) -> CurrentUser:
    if current_user is not None:
        return current_user
    requester = await resolve_current_user(session, requester_email=request.requester_email)
    if requester is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return requester


def _response(result: GrantResult) -> MemberResponse:
    return MemberResponse(
        success=result.outcome in (GrantOutcome.GRANTED, GrantOutcome.REVOKED),
        message=result.message,
        outcome=result.outcome,
        user_id=result.user_id,
    )


@router.post("/add", response_model=MemberResponse)
async def add_member(
    request: MemberRequest,
    session: SessionDep,
    current_user: OptionalUserDep,
):
    """Grant a stakeholder or product-owner role on a product.

    A grant the user already holds is reported as ``already_assigned``.
    """
    requester = await _requester(session, current_user, request)
    result = await RoleAuthority(session).grant_role(
        requester.id,
        product_id=request.product_id,
        role_type=request.role_type,
        user_email=request.user_email,
        user_name=request.user_name,
        user_id=request.user_id,
    )
    return _response(result)


@router.post("/remove", response_model=MemberResponse)
async def remove_member(
    request: MemberRequest,
    session: SessionDep,
    current_user: OptionalUserDep,
):
    requester = await _requester(session, current_user, request)
    result = await RoleAuthority(session).revoke_role(
        requester.id,
        product_id=request.product_id,
        role_type=request.role_type,
        user_email=request.user_email,
        user_id=request.user_id,
    )
    return _response(result)
