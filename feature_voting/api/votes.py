"""Vote API Routes: submit a ballot, read it back, reset a session."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from ..core.dependencies import CurrentUserDep, SessionDep
from ..schemas import BallotResponse, ResetResponse, VoteRecordResponse, VoteSubmission
from ..services import VotingService
from .sessions import SessionServiceDep, load_managed_session

router = APIRouter(prefix="/sessions/{session_id}/votes", tags=["votes"])


def get_voting_service(session: SessionDep) -> VotingService:
    return VotingService(session)


VotingServiceDep = Annotated[VotingService, Depends(get_voting_service)]


@router.get("/me", response_model=BallotResponse)
async def get_my_ballot(
    session_id: UUID,
    current_user: CurrentUserDep,
    voting: VotingServiceDep,
):
    """What the acting user has committed in this session."""
    return await voting.get_ballot(session_id, current_user.user)


@router.put("/me", response_model=list[VoteRecordResponse])
async def submit_votes(
    session_id: UUID,
    request: VoteSubmission,
    current_user: CurrentUserDep,
    voting: VotingServiceDep,
):
    """Submit a full allocation, replacing any earlier submission.

    The whole budget must be spent and the session must be open; nothing is
    written otherwise.
    """
    return await voting.submit(session_id, current_user.user, request.allocations)


@router.delete("", response_model=ResetResponse)
async def reset_session_votes(
    session_id: UUID,
    current_user: CurrentUserDep,
    sessions: SessionServiceDep,
    voting: VotingServiceDep,
):
    """Remove every vote in the session."""
    await load_managed_session(sessions, current_user, session_id)
    return ResetResponse(removed=await voting.reset_session(session_id))
