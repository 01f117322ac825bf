"""
Session Service: create, load and edit voting sessions.

Every load reconciles the cached ``is_active`` flag against the date range
before the session is returned.
"""

import logging
import secrets
import string
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Feature, Product, SessionStatusNote, VotingSession, utcnow
from .errors import InvalidRequest, NotFound, PersistenceFailure
from .session_clock import SessionClock, as_utc
from .vote_ledger import VoteLedger

logger = logging.getLogger(__name__)

SESSION_CODE_ALPHABET = string.ascii_uppercase + string.digits
SESSION_CODE_LENGTH = 8
EDITABLE_FIELDS = frozenset(
    {"title", "goal", "votes_per_user", "use_auto_votes", "start_date", "end_date"}
)


def generate_session_code() -> str:
    return "".join(secrets.choice(SESSION_CODE_ALPHABET) for _ in range(SESSION_CODE_LENGTH))


def _validate_schedule(votes_per_user: int, start_date: datetime, end_date: datetime) -> None:
    if votes_per_user is None or votes_per_user <= 0:
        raise InvalidRequest("votes_per_user must be a positive integer")
    if as_utc(end_date) < as_utc(start_date):
        raise InvalidRequest("end_date must not be before start_date")


class SessionService:
    def __init__(
        self,
        session: AsyncSession,
        now: Callable[[], datetime] = utcnow,
        ledger: VoteLedger | None = None,
    ):
        self.session = session
        self.now = now
        self.clock = SessionClock(session, now=now)
        self.ledger = ledger or VoteLedger(session)

    async def create(
        self,
        product_id: UUID,
        title: str,
        votes_per_user: int,
        start_date: datetime,
        end_date: datetime,
        goal: str = "",
        created_by: UUID | None = None,
        use_auto_votes: bool = False,
    ) -> VotingSession:
        title = (title or "").strip()
        if not title:
            raise InvalidRequest("Session title is required")
        _validate_schedule(votes_per_user, start_date, end_date)
        if await self.session.get(Product, product_id) is None:
            raise NotFound("product", product_id)

        voting_session = VotingSession(
            product_id=product_id,
            title=title,
            goal=goal or "",
            votes_per_user=votes_per_user,
            use_auto_votes=use_auto_votes,
            start_date=as_utc(start_date),
            end_date=as_utc(end_date),
            is_active=False,
            session_code=await self._unique_code(),
            created_by=created_by,
        )
        self.clock.reconcile(voting_session)
        self.session.add(voting_session)
        await self._flush("create session")
        logger.info(
            f"Created session {voting_session.id} ({voting_session.session_code}) "
            f"for product {product_id}"
        )
        return voting_session

    async def get(self, session_id: UUID) -> VotingSession:
        """Load a session and reconcile ``is_active`` on the way out."""
        voting_session = await self.session.get(VotingSession, session_id)
        if voting_session is None:
            raise NotFound("voting session", session_id)
        if self.clock.reconcile(voting_session):
            await self._flush("reconcile session")
        return voting_session

    async def get_by_code(self, session_code: str) -> VotingSession:
        result = await self.session.execute(
            select(VotingSession).where(
                VotingSession.session_code == (session_code or "").strip().upper()
            )
        )
        voting_session = result.scalar_one_or_none()
        if voting_session is None:
            raise NotFound("voting session", session_code)
        if self.clock.reconcile(voting_session):
            await self._flush("reconcile session")
        return voting_session

    async def reconcile_loaded(self, sessions: Sequence[VotingSession]) -> Sequence[VotingSession]:
        if self.clock.reconcile_many(sessions):
            await self._flush("reconcile sessions")
        return sessions

    async def update(self, session_id: UUID, changes: Mapping[str, Any]) -> VotingSession:
        voting_session = await self.get(session_id)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidRequest(f"Unknown session fields: {', '.join(sorted(unknown))}")

        values = dict(changes)
        if "title" in values:
            values["title"] = (values["title"] or "").strip()
            if not values["title"]:
                raise InvalidRequest("Session title cannot be empty")
        if "goal" in values and values["goal"] is None:
            values["goal"] = ""
        for name in ("start_date", "end_date"):
            if values.get(name) is not None:
                values[name] = as_utc(values[name])

        _validate_schedule(
            values.get("votes_per_user", voting_session.votes_per_user),
            values.get("start_date") or voting_session.start_date,
            values.get("end_date") or voting_session.end_date,
        )
        for name, value in values.items():
            if value is not None:
                setattr(voting_session, name, value)

        self.clock.reconcile(voting_session)
        await self._flush("update session")
        logger.info(f"Updated session {session_id}: {sorted(values)}")
        return voting_session

    async def delete(self, session_id: UUID) -> None:
        """Delete a session with its votes, features and status notes."""
        voting_session = await self.get(session_id)
        votes = await self.ledger.reset_all(session_id)
        try:
            await self.session.execute(
                delete(Feature)
                .where(Feature.session_id == session_id)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                delete(SessionStatusNote)
                .where(SessionStatusNote.session_id == session_id)
                .execution_options(synchronize_session=False)
            )
            await self.session.delete(voting_session)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete session {session_id}: {e}")
            raise PersistenceFailure(str(e)) from e
        logger.info(f"Deleted session {session_id} and {votes} vote records")

    async def status_notes(self, session_id: UUID) -> Sequence[SessionStatusNote]:
        await self.get(session_id)
        result = await self.session.execute(
            select(SessionStatusNote)
            .where(SessionStatusNote.session_id == session_id)
            .order_by(SessionStatusNote.created_at.desc())
        )
        return result.scalars().all()

    async def _unique_code(self, attempts: int = 10) -> str:
        for _ in range(attempts):
            code = generate_session_code()
            result = await self.session.execute(
                select(VotingSession.id).where(VotingSession.session_code == code)
            )
            if result.first() is None:
                return code
        raise PersistenceFailure("Could not generate a unique session code")

    async def _flush(self, action: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceFailure(str(e)) from e

