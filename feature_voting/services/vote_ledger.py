"""
Vote Ledger: the durable record of committed votes.

Guarantees:
- At most one row per (feature_id, user_id); writes are upserts, so a
  retried submission leaves the same state
- Tallies and voter rosters are always read from the store, never from a
  cached copy
- Resets are irreversible and only reachable through privileged callers
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Vote, utcnow
from .errors import InvalidRequest, PersistenceFailure

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class VoteRecord:
    """One stakeholder's committed votes on one feature."""
    feature_id: UUID
    session_id: UUID
    user_id: UUID
    user_name: str
    user_email: str
    vote_count: int

    def to_row(self) -> dict:
        return {
            "feature_id": self.feature_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email.lower(),
            "vote_count": self.vote_count,
        }


@dataclass(frozen=True)
class VoterInfo:
    """A voter on a feature, as shown in result views."""
    user_id: UUID
    name: str
    email: str
    vote_count: int


# =============================================================================
# LEDGER
# =============================================================================


_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class VoteLedger:
    """Upsert, read and reset committed votes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        try:
            return _UPSERT_DIALECTS[dialect]
        except KeyError:
            raise PersistenceFailure(f"upsert is not supported on {dialect}") from None

    # -------------------------------------------------------------------------
    # WRITES
    # -------------------------------------------------------------------------

    async def upsert(self, record: VoteRecord) -> None:
        """Insert or replace the row keyed by (feature_id, user_id)."""
        await self.upsert_many([record])

    async def upsert_many(self, records: Sequence[VoteRecord]) -> None:
        """Upsert a batch of records in one statement.

        Any failure fails the whole batch; the enclosing transaction is
        rolled back by the caller.
        """
        if not records:
            return
        for record in records:
            if record.vote_count <= 0:
                raise InvalidRequest(
                    f"vote_count must be positive (feature {record.feature_id})"
                )

        seen: set[tuple[UUID, UUID]] = set()
        for record in records:
            key = (record.feature_id, record.user_id)
            if key in seen:
                raise InvalidRequest(f"Duplicate vote record for feature {record.feature_id}")
            seen.add(key)

        stmt = self._insert()(Vote).values([r.to_row() for r in records])
        stmt = stmt.on_conflict_do_update(
            index_elements=[Vote.feature_id, Vote.user_id],
            set_={
                "vote_count": stmt.excluded.vote_count,
                "user_name": stmt.excluded.user_name,
                "user_email": stmt.excluded.user_email,
                "session_id": stmt.excluded.session_id,
                "updated_at": utcnow(),
            },
        )
        try:
            await self.session.execute(stmt)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Vote upsert failed for {len(records)} records: {e}")
            raise PersistenceFailure(str(e)) from e

    async def reset_feature(self, feature_id: UUID) -> int:
        """Delete every vote on a feature. Returns the number of rows removed."""
        removed = await self._delete(Vote.feature_id == feature_id)
        logger.info(f"Reset {removed} vote records on feature {feature_id}")
        return removed

    async def reset_all(self, session_id: UUID | None = None) -> int:
        """Delete every vote in a session, or in the whole ledger.

        Without ``session_id`` this clears votes of every session.
        """
        if session_id is None:
            removed = await self._delete()
            logger.warning(f"Unscoped ledger reset removed {removed} vote records")
        else:
            removed = await self._delete(Vote.session_id == session_id)
            logger.info(f"Reset {removed} vote records in session {session_id}")
        return removed

    async def delete_votes_by_user(
        self,
        session_id: UUID,
        user_id: UUID,
        keep_feature_ids: Iterable[UUID] = (),
    ) -> int:
        """Remove a user's votes in a session, except on ``keep_feature_ids``."""
        conditions = [Vote.session_id == session_id, Vote.user_id == user_id]
        keep = list(keep_feature_ids)
        if keep:
            conditions.append(Vote.feature_id.not_in(keep))
        return await self._delete(*conditions)

    async def _delete(self, *conditions) -> int:
        try:
            result = await self.session.execute(
                delete(Vote).where(*conditions).execution_options(synchronize_session=False)
            )
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Vote delete failed: {e}")
            raise PersistenceFailure(str(e)) from e
        return result.rowcount or 0

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    async def total_votes(self, feature_id: UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Vote.vote_count), 0)).where(
                Vote.feature_id == feature_id
            )
        )
        return int(result.scalar_one())

    async def voters(self, feature_id: UUID) -> list[VoterInfo]:
        rosters = await self.voters_by_feature([feature_id])
        return rosters.get(feature_id, [])

    async def voters_by_feature(
        self, feature_ids: Sequence[UUID]
    ) -> dict[UUID, list[VoterInfo]]:
        """Voter rosters (vote_count > 0) for several features at once."""
        if not feature_ids:
            return {}
        result = await self.session.execute(
            select(Vote)
            .where(Vote.feature_id.in_(feature_ids), Vote.vote_count > 0)
            .order_by(Vote.vote_count.desc(), Vote.user_name)
            .execution_options(populate_existing=True)
        )
        rosters: dict[UUID, list[VoterInfo]] = defaultdict(list)
        for vote in result.scalars():
            rosters[vote.feature_id].append(
                VoterInfo(
                    user_id=vote.user_id,
                    name=vote.user_name,
                    email=vote.user_email,
                    vote_count=vote.vote_count,
                )
            )
        return dict(rosters)

    async def tallies(self, session_id: UUID) -> dict[UUID, int]:
        """Total votes per feature for a session (features with votes only)."""
        result = await self.session.execute(
            select(Vote.feature_id, func.sum(Vote.vote_count))
            .where(Vote.session_id == session_id)
            .group_by(Vote.feature_id)
        )
        return {feature_id: int(total) for feature_id, total in result.all()}

    async def user_allocations(self, session_id: UUID, user_id: UUID) -> dict[UUID, int]:
        """What a user has already committed in a session."""
        result = await self.session.execute(
            select(Vote.feature_id, Vote.vote_count).where(
                Vote.session_id == session_id,
                Vote.user_id == user_id,
                Vote.vote_count > 0,
            )
        )
        return {feature_id: count for feature_id, count in result.all()}
