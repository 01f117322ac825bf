"""User directory: lookup and on-demand creation of users by email."""

import logging
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import User
from .errors import InvalidRequest, NotFound, PersistenceFailure

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str:
    """Lowercase and validate an email address."""
    normalized = (email or "").strip().lower()
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise InvalidRequest(f"Invalid email address: {email!r}")
    return normalized


def default_display_name(email: str) -> str:
    """``jane.doe@example.com`` -> ``jane doe``."""
    return email.split("@", 1)[0].replace(".", " ")


class UserDirectory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: UUID) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFound("user", user_id)
        return user

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, email: str, name: str | None = None) -> User:
        """Return the user with this email, creating the row if needed."""
        email = normalize_email(email)
        user = await self.get_by_email(email)
        if user is not None:
            return user

        user = User(email=email, name=(name or "").strip() or default_display_name(email))
        self.session.add(user)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create user {email}: {e}")
            raise PersistenceFailure(str(e)) from e
        logger.info(f"Created user {user.id} ({email})")
        return user

    async def list_all(self) -> Sequence[User]:
        result = await self.session.execute(
            select(User).order_by(User.created_at.desc(), User.email)
        )
        return result.scalars().all()
