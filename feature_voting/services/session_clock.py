"""
Session Clock: whether a voting session currently accepts votes.

The date range is the only source of truth. ``VotingSession.is_active`` is a
cache that is corrected whenever a session is loaded and by the periodic
reconciliation job; it is never toggled on its own.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import SessionStatusNote, StatusNoteType, VotingSession, utcnow
from .errors import InvalidRequest, PersistenceFailure, SessionClosed

logger = logging.getLogger(__name__)


class DatedSession(Protocol):
    start_date: datetime
    end_date: datetime


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_open(session: DatedSession, now: datetime | None = None) -> bool:
    """True when ``start_date <= now <= end_date``."""
    now = as_utc(now or utcnow())
    return as_utc(session.start_date) <= now <= as_utc(session.end_date)


def ensure_open(session: DatedSession, now: datetime | None = None) -> None:
    if not is_open(session, now):
        raise SessionClosed()


def _require_reason(reason: str) -> None:
    if not (reason or "").strip():
        raise InvalidRequest("A reason is required")


def reconcile(session: VotingSession, now: datetime | None = None) -> bool:
    """Bring ``is_active`` in line with the date range.

    Returns True when the cached flag was corrected.
    """
    open_now = is_open(session, now)
    if session.is_active == open_now:
        return False
    logger.info(
        f"Session {session.id} is_active {session.is_active} -> {open_now}"
    )
    session.is_active = open_now
    return True


class SessionClock:
    """Reconciles stored sessions and moves session end dates."""

    def __init__(
        self,
        session: AsyncSession,
        now: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.now = now

    def is_open(self, voting_session: DatedSession) -> bool:
        return is_open(voting_session, self.now())

    def ensure_open(self, voting_session: DatedSession) -> None:
        ensure_open(voting_session, self.now())

    def reconcile(self, voting_session: VotingSession) -> bool:
        return reconcile(voting_session, self.now())

    def reconcile_many(self, sessions: Sequence[VotingSession]) -> int:
        return sum(1 for s in sessions if reconcile(s, self.now()))

    async def reconcile_all(self, session_ids: Sequence[UUID] | None = None) -> int:
        """Reconcile every stored session (or the given ones).

        Idempotent: concurrent runs converge on the same value.
        """
        query = select(VotingSession)
        if session_ids is not None:
            query = query.where(VotingSession.id.in_(session_ids))
        result = await self.session.execute(query)
        corrected = self.reconcile_many(result.scalars().all())
        if corrected:
            await self.session.flush()
        return corrected

    async def end_early(
        self,
        voting_session: VotingSession,
        reason: str,
        actor_name: str,
        actor_id: UUID | None = None,
        details: str | None = None,
    ) -> SessionStatusNote:
        """Close an open session now by moving its end date."""
        _require_reason(reason)
        now = as_utc(self.now())
        if not is_open(voting_session, now):
            raise InvalidRequest("Only an open session can be ended early")

        # bounds are inclusive, so the last open instant is just before now
        end_date = now - timedelta(seconds=1)
        if end_date < as_utc(voting_session.start_date):
            raise InvalidRequest(
                "The session started less than a second ago; try ending it again"
            )
        voting_session.end_date = end_date
        reconcile(voting_session, now)
        return await self._add_note(
            voting_session, StatusNoteType.ENDED_EARLY, reason, actor_name, actor_id, details
        )

    async def reopen(
        self,
        voting_session: VotingSession,
        new_end_date: datetime,
        reason: str,
        actor_name: str,
        actor_id: UUID | None = None,
        details: str | None = None,
    ) -> SessionStatusNote:
        """Extend a session's end date into the future."""
        _require_reason(reason)
        now = as_utc(self.now())
        new_end_date = as_utc(new_end_date)
        if new_end_date <= now:
            raise InvalidRequest("New end date must be in the future")
        if new_end_date < as_utc(voting_session.start_date):
            raise InvalidRequest("New end date is before the session start date")

        voting_session.end_date = new_end_date
        reconcile(voting_session, now)
        return await self._add_note(
            voting_session, StatusNoteType.REOPEN, reason, actor_name, actor_id, details
        )

    async def _add_note(
        self,
        voting_session: VotingSession,
        note_type: StatusNoteType,
        reason: str,
        actor_name: str,
        actor_id: UUID | None,
        details: str | None,
    ) -> SessionStatusNote:
        note = SessionStatusNote(
            session_id=voting_session.id,
            type=note_type,
            reason=reason.strip(),
            details=details,
            actor_id=actor_id,
            actor_name=actor_name or "Admin",
        )
        self.session.add(note)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record {note_type.value} for session {voting_session.id}: {e}")
            raise PersistenceFailure(str(e)) from e
        logger.info(
            f"Session {voting_session.id} {note_type.value} by {actor_name}: {reason}"
        )
        return note
