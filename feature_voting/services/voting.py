"""
Voting Service: a stakeholder's ballot for one session.

Ties the pieces together for the HTTP layer: loads (and reconciles) the
session, checks the voter may vote on the session's product, replays the
submitted allocation through a ``VoteBudget`` and commits it to the ledger.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Feature, ProductStakeholder, User, VotingSession, utcnow
from .errors import Forbidden, NotFound
from .role_authority import RoleAuthority
from .session_clock import is_open
from .sessions import SessionService
from .vote_budget import VoteBudget, effective_votes_per_user
from .vote_ledger import VoteLedger, VoteRecord

logger = logging.getLogger(__name__)


@dataclass
class Ballot:
    """What a voter has committed in a session and what is left."""
    session_id: UUID
    votes_per_user: int
    is_open: bool
    use_auto_votes: bool = False
    allocations: dict[UUID, int] = field(default_factory=dict)

    @property
    def used_votes(self) -> int:
        return sum(self.allocations.values())

    @property
    def remaining_votes(self) -> int:
        return self.votes_per_user - self.used_votes

    @property
    def has_submitted(self) -> bool:
        return bool(self.allocations)


class VotingService:
    def __init__(
        self,
        session: AsyncSession,
        authority: RoleAuthority | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.now = now
        self.sessions = SessionService(session, now=now)
        self.ledger = VoteLedger(session)
        self.authority = authority or RoleAuthority(session)

    async def _voting_session_for(self, session_id: UUID, voter: User) -> VotingSession:
        voting_session = await self.sessions.get(session_id)
        roles = await self.authority.effective_roles(voter.id)
        if not roles.can_vote_on_product(voting_session.product_id):
            raise Forbidden("You are not a stakeholder of this session's product")
        return voting_session

    async def votes_per_user(self, voting_session: VotingSession) -> int:
        """The budget each voter must spend, after the auto-votes rule."""
        result = await self.session.execute(
            select(func.count(Feature.id)).where(Feature.session_id == voting_session.id)
        )
        return effective_votes_per_user(voting_session, result.scalar_one())

    async def get_ballot(self, session_id: UUID, voter: User) -> Ballot:
        voting_session = await self._voting_session_for(session_id, voter)
        return Ballot(
            session_id=voting_session.id,
            votes_per_user=await self.votes_per_user(voting_session),
            is_open=is_open(voting_session, self.now()),
            use_auto_votes=bool(voting_session.use_auto_votes),
            allocations=await self.ledger.user_allocations(session_id, voter.id),
        )

    async def submit(
        self,
        session_id: UUID,
        voter: User,
        allocations: Mapping[UUID, int],
    ) -> list[VoteRecord]:
        """Commit a full allocation, replacing the voter's earlier one."""
        voting_session = await self._voting_session_for(session_id, voter)
        await self._ensure_features_in_session(session_id, allocations.keys())

        budget = VoteBudget.from_allocations(
            voting_session,
            user_id=voter.id,
            user_name=voter.name,
            user_email=voter.email,
            allocations=allocations,
            now=self.now,
            votes_per_user=await self.votes_per_user(voting_session),
        )
        records = await budget.submit(self.ledger)
        await self._mark_voted(voting_session.product_id, voter.email)
        return records

    async def reset_session(self, session_id: UUID) -> int:
        await self.sessions.get(session_id)
        return await self.ledger.reset_all(session_id)

    async def _ensure_features_in_session(self, session_id: UUID, feature_ids) -> None:
        wanted = set(feature_ids)
        if not wanted:
            return
        result = await self.session.execute(
            select(Feature.id).where(Feature.session_id == session_id, Feature.id.in_(wanted))
        )
        missing = wanted - set(result.scalars())
        if missing:
            raise NotFound("feature", sorted(str(m) for m in missing)[0])

    async def _mark_voted(self, product_id: UUID, email: str) -> None:
        await self.session.execute(
            update(ProductStakeholder)
            .where(
                ProductStakeholder.product_id == product_id,
                ProductStakeholder.user_email == email.lower(),
            )
            .values(has_voted=True, voted_at=self.now())
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Marked {email} as voted on product {product_id}")
