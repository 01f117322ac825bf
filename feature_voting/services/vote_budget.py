"""
Vote Budget: one stakeholder's pending allocation for one session.

Nothing touches the ledger until ``submit``. At every point:
- ``used_votes == sum(pending_allocations.values())``
- ``0 <= used_votes <= votes_per_user``
- allocation entries are always > 0 (zero entries are removed)

``votes_per_user`` is the session's configured budget unless the caller
passes an effective one (see ``effective_votes_per_user``).

States: EMPTY -> ALLOCATING -> SUBMITTED (terminal).
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID

from ..models import VotingSession, utcnow
from .errors import (
    BudgetExhausted,
    IncompleteAllocation,
    InvalidRequest,
    NothingToRemove,
)
from .session_clock import ensure_open
from .vote_ledger import VoteLedger, VoteRecord

logger = logging.getLogger(__name__)


class BudgetState(str, Enum):
    EMPTY = "empty"
    ALLOCATING = "allocating"
    SUBMITTED = "submitted"


class BudgetSession(Protocol):
    id: UUID
    votes_per_user: int
    start_date: datetime
    end_date: datetime


def auto_votes_per_user(feature_count: int) -> int:
    """Half the features, rounded down, and never less than one."""
    return max(1, feature_count // 2)


def effective_votes_per_user(voting_session: VotingSession, feature_count: int) -> int:
    if voting_session.use_auto_votes:
        return auto_votes_per_user(feature_count)
    return voting_session.votes_per_user


class VoteBudget:
    """Provisional vote allocation, validated before any write."""

    def __init__(
        self,
        voting_session: BudgetSession,
        user_id: UUID,
        user_name: str,
        user_email: str,
        now: Callable[[], datetime] = utcnow,
        votes_per_user: int | None = None,
    ):
        if votes_per_user is None:
            votes_per_user = voting_session.votes_per_user
        if votes_per_user <= 0:
            raise InvalidRequest("votes_per_user must be positive")
        self.voting_session = voting_session
        self.user_id = user_id
        self.user_name = user_name
        self.user_email = user_email
        self.now = now
        self._votes_per_user = votes_per_user
        self.pending_allocations: dict[UUID, int] = {}
        self.used_votes = 0
        self._submitted = False

    @classmethod
    def from_allocations(
        cls,
        voting_session: BudgetSession,
        user_id: UUID,
        user_name: str,
        user_email: str,
        allocations: Mapping[UUID, int],
        now: Callable[[], datetime] = utcnow,
        votes_per_user: int | None = None,
    ) -> "VoteBudget":
        """Build a budget by replaying increments for each allocation."""
        budget = cls(
            voting_session, user_id, user_name, user_email,
            now=now, votes_per_user=votes_per_user,
        )
        for feature_id, count in allocations.items():
            if count < 0:
                raise InvalidRequest(f"Negative allocation for feature {feature_id}")
            for _ in range(count):
                budget.increment(feature_id)
        return budget

    # -------------------------------------------------------------------------
    # STATE
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> UUID:
        return self.voting_session.id

    @property
    def votes_per_user(self) -> int:
        return self._votes_per_user

    @property
    def remaining_votes(self) -> int:
        return self.votes_per_user - self.used_votes

    @property
    def state(self) -> BudgetState:
        if self._submitted:
            return BudgetState.SUBMITTED
        if self.pending_allocations:
            return BudgetState.ALLOCATING
        return BudgetState.EMPTY

    def allocation(self, feature_id: UUID) -> int:
        return self.pending_allocations.get(feature_id, 0)

    def _ensure_not_submitted(self) -> None:
        if self._submitted:
            raise InvalidRequest("Votes for this session have already been submitted")

    # -------------------------------------------------------------------------
    # OPERATIONS
    # -------------------------------------------------------------------------

    def increment(self, feature_id: UUID) -> int:
        """Add one vote to a feature. Returns the feature's new allocation."""
        self._ensure_not_submitted()
        ensure_open(self.voting_session, self.now())
        if self.used_votes >= self.votes_per_user:
            raise BudgetExhausted()

        self.pending_allocations[feature_id] = self.allocation(feature_id) + 1
        self.used_votes += 1
        return self.pending_allocations[feature_id]

    def decrement(self, feature_id: UUID) -> int:
        """Remove one vote from a feature.

        Allowed after the session closes so an in-flight allocation can be
        corrected; submission is still gated by the clock.
        """
        self._ensure_not_submitted()
        current = self.allocation(feature_id)
        if current <= 0:
            raise NothingToRemove()

        if current == 1:
            del self.pending_allocations[feature_id]
        else:
            self.pending_allocations[feature_id] = current - 1
        self.used_votes -= 1
        return current - 1

    def to_records(self) -> list[VoteRecord]:
        return [
            VoteRecord(
                feature_id=feature_id,
                session_id=self.session_id,
                user_id=self.user_id,
                user_name=self.user_name,
                user_email=self.user_email,
                vote_count=count,
            )
            for feature_id, count in self.pending_allocations.items()
            if count > 0
        ]

    async def submit(
        self,
        ledger: VoteLedger,
        replace_previous: bool = True,
    ) -> list[VoteRecord]:
        """Flush the whole allocation to the ledger.

        The entire budget must be spent. On any failure the pending
        allocation is left untouched so the caller can retry.
        """
        self._ensure_not_submitted()
        ensure_open(self.voting_session, self.now())
        if self.used_votes != self.votes_per_user:
            raise IncompleteAllocation(self.used_votes, self.votes_per_user)

        records = self.to_records()
        if replace_previous:
            # Drop earlier votes on features that are no longer allocated
            await ledger.delete_votes_by_user(
                self.session_id,
                self.user_id,
                keep_feature_ids=[r.feature_id for r in records],
            )
        await ledger.upsert_many(records)

        logger.info(
            f"User {self.user_id} submitted {self.used_votes} votes across "
            f"{len(records)} features in session {self.session_id}"
        )
        self.pending_allocations = {}
        self.used_votes = 0
        self._submitted = True
        return records
