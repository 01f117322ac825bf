"""SQLAlchemy ORM Models for Feature Voting.

Table and column names match the hosted schema the web client talks to
(``votes.feature_id``, ``voting_sessions.votes_per_user`` and so on).
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# ENUMS
# =============================================================================


class StatusNoteType(str, PyEnum):
    """Why an admin moved a session's dates."""
    REOPEN = "reopen"
    ENDED_EARLY = "ended-early"


# =============================================================================
# USERS & PRODUCTS
# =============================================================================


class User(Base, UUIDMixin):
    """Application user. Email is the natural identity."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_users_email", "email"),
    )


class Product(Base, UUIDMixin):
    """A product owns voting sessions; role grants are expressed per product."""

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    color_hex: Mapped[str | None] = mapped_column(String(7))
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    sessions: Mapped[list["VotingSession"]] = relationship(
        back_populates="product", passive_deletes=True
    )


# =============================================================================
# SESSIONS
# =============================================================================


class VotingSession(Base, UUIDMixin, TimestampMixin):
    """A time-boxed voting session.

    ``is_active`` is a cache of "now is within [start_date, end_date]"; the
    date range is the only source of truth. With ``use_auto_votes`` the
    budget follows the feature count instead of ``votes_per_user``.
    """

    __tablename__ = "voting_sessions"

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    goal: Mapped[str] = mapped_column(Text, default="", nullable=False)
    votes_per_user: Mapped[int] = mapped_column(Integer, nullable=False)
    use_auto_votes: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    session_code: Mapped[str] = mapped_column(String(8), unique=True, nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )

    product: Mapped["Product"] = relationship(back_populates="sessions")

    __table_args__ = (
        CheckConstraint("votes_per_user > 0", name="votes_per_user_positive"),
        CheckConstraint("end_date >= start_date", name="date_range"),
        Index("idx_voting_sessions_product", "product_id"),
    )


class SessionStatusNote(Base, UUIDMixin):
    """Audit note recorded when a session is ended early or reopened."""

    __tablename__ = "session_status_notes"

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("voting_sessions.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[StatusNoteType] = mapped_column(
        Enum(StatusNoteType, name="status_note_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str | None] = mapped_column(Text)
    actor_id: Mapped[UUID | None] = mapped_column()
    actor_name: Mapped[str] = mapped_column(String(255), default="Admin", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_status_notes_session", "session_id"),
    )


# =============================================================================
# FEATURES & VOTES
# =============================================================================


class Feature(Base, UUIDMixin, TimestampMixin):
    """A votable feature, entered locally or imported from Azure DevOps."""

    __tablename__ = "features"

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("voting_sessions.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    epic: Mapped[str | None] = mapped_column(String(255))
    state: Mapped[str | None] = mapped_column(String(100))
    area_path: Mapped[str | None] = mapped_column(String(500))
    tags: Mapped[list[str] | None] = mapped_column(JSONType)
    external_id: Mapped[str | None] = mapped_column(
        String(64), comment="Azure DevOps work item id"
    )
    external_url: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        Index("idx_features_session", "session_id"),
        Index("idx_features_external", "session_id", "external_id"),
    )


class Vote(Base, UUIDMixin, TimestampMixin):
    """Committed votes of one stakeholder on one feature."""

    __tablename__ = "votes"

    feature_id: Mapped[UUID] = mapped_column(
        ForeignKey("features.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("voting_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("feature_id", "user_id"),
        CheckConstraint("vote_count >= 0", name="vote_count_non_negative"),
        Index("idx_votes_session", "session_id"),
        Index("idx_votes_feature", "feature_id"),
    )


# =============================================================================
# ROLE GRANTS
# =============================================================================


class SystemAdmin(Base, UUIDMixin):
    """System admin grant."""

    __tablename__ = "system_admins"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"), unique=True, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class ProductOwner(Base, UUIDMixin):
    """Product owner grant, for one product or for all of them."""

    __tablename__ = "product_product_owners"

    product_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE")
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    applies_to_all_products: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("product_id", "user_id"),
        Index("idx_product_owners_user", "user_id"),
    )


class ProductStakeholder(Base, UUIDMixin):
    """Stakeholder grant, keyed by email so it can precede the user row."""

    __tablename__ = "product_stakeholders"

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    votes_allocated: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    has_voted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    voted_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("product_id", "user_email"),
        Index("idx_product_stakeholders_email", "user_email"),
    )
