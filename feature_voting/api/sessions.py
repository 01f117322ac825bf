"""
Session API Routes: voting session lifecycle.

Sessions are visible to system admins and to owners and stakeholders of the
session's product; only users who can manage the product may change them.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..core.dependencies import CurrentUser, CurrentUserDep, SessionDep
from ..models import VotingSession
from ..schemas import (
    EndSessionEarlyRequest,
    MessageResponse,
    ReopenSessionRequest,
    SessionCreate,
    SessionResponse,
    SessionUpdate,
    StakeholderResponse,
    StatusNoteResponse,
)
from ..services import Forbidden, RoleAuthority, SessionService

router = APIRouter(prefix="/sessions", tags=["sessions"])


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_session_service(session: SessionDep) -> SessionService:
    return SessionService(session)


SessionServiceDep = Annotated[SessionService, Depends(get_session_service)]


# =============================================================================
# ACCESS HELPERS
# =============================================================================


async def load_visible_session(
    service: SessionService,
    current_user: CurrentUser,
    session_id: UUID,
) -> VotingSession:
    voting_session = await service.get(session_id)
    if not current_user.roles.can_vote_on_product(voting_session.product_id):
        raise Forbidden("You do not have access to this session")
    return voting_session


async def load_managed_session(
    service: SessionService,
    current_user: CurrentUser,
    session_id: UUID,
) -> VotingSession:
    voting_session = await service.get(session_id)
    if not current_user.roles.can_manage_product(voting_session.product_id):
        raise Forbidden("You do not have permission to manage this session")
    return voting_session


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.get("", response_model=list[SessionResponse])
async def list_sessions(
    current_user: CurrentUserDep,
    session: SessionDep,
    service: SessionServiceDep,
):
    """Sessions of every product the user owns or holds a stakeholder grant on."""
    sessions = await RoleAuthority(session).visible_sessions(current_user.id)
    return await service.reconcile_loaded(sessions)


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    request: SessionCreate,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    if not current_user.roles.can_manage_product(request.product_id):
        raise Forbidden("You do not have permission to manage this product")
    return await service.create(
        product_id=request.product_id,
        title=request.title,
        goal=request.goal,
        votes_per_user=request.votes_per_user,
        use_auto_votes=request.use_auto_votes,
        start_date=request.start_date,
        end_date=request.end_date,
        created_by=current_user.id,
    )


@router.get("/code/{session_code}", response_model=SessionResponse)
async def get_session_by_code(
    session_code: str,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    voting_session = await service.get_by_code(session_code)
    if not current_user.roles.can_vote_on_product(voting_session.product_id):
        raise Forbidden("You do not have access to this session")
    return voting_session


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: UUID,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    return await load_visible_session(service, current_user, session_id)


@router.patch("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: UUID,
    request: SessionUpdate,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    await load_managed_session(service, current_user, session_id)
    return await service.update(session_id, request.model_dump(exclude_unset=True))


@router.delete("/{session_id}", response_model=MessageResponse)
async def delete_session(
    session_id: UUID,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    """Delete a session with all of its features and votes."""
    voting_session = await load_managed_session(service, current_user, session_id)
    title = voting_session.title
    await service.delete(session_id)
    return MessageResponse(message=f"Deleted session {title}")


# -----------------------------------------------------------------------------
# Date changes
# -----------------------------------------------------------------------------


@router.post("/{session_id}/end-early", response_model=SessionResponse)
async def end_session_early(
    session_id: UUID,
    request: EndSessionEarlyRequest,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    voting_session = await load_managed_session(service, current_user, session_id)
    await service.clock.end_early(
        voting_session,
        reason=request.reason,
        actor_name=current_user.name,
        actor_id=current_user.id,
        details=request.details,
    )
    return voting_session


@router.post("/{session_id}/reopen", response_model=SessionResponse)
async def reopen_session(
    session_id: UUID,
    request: ReopenSessionRequest,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    voting_session = await load_managed_session(service, current_user, session_id)
    await service.clock.reopen(
        voting_session,
        new_end_date=request.new_end_date,
        reason=request.reason,
        actor_name=current_user.name,
        actor_id=current_user.id,
        details=request.details,
    )
    return voting_session


@router.get("/{session_id}/status-notes", response_model=list[StatusNoteResponse])
async def list_status_notes(
    session_id: UUID,
    current_user: CurrentUserDep,
    service: SessionServiceDep,
):
    await load_visible_session(service, current_user, session_id)
    return await service.status_notes(session_id)


@router.get("/{session_id}/stakeholders", response_model=list[StakeholderResponse])
async def list_stakeholders(
    session_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
    service: SessionServiceDep,
):
    """Stakeholders of the session's product and whether each has voted."""
    voting_session = await load_managed_session(service, current_user, session_id)
    return await RoleAuthority(session).product_stakeholders(voting_session.product_id)
