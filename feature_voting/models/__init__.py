"""SQLAlchemy ORM Models for Feature Voting."""

from .base import Base, TimestampMixin, UUIDMixin
from .models import (
    # Enums
    StatusNoteType,
    # Users & products
    Product,
    User,
    # Sessions
    SessionStatusNote,
    VotingSession,
    # Features & votes
    Feature,
    Vote,
    # Role grants
    ProductOwner,
    ProductStakeholder,
    SystemAdmin,
    utcnow,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    # Enums
    "StatusNoteType",
    # Users & products
    "User",
    "Product",
    # Sessions
    "VotingSession",
    "SessionStatusNote",
    # Features & votes
    "Feature",
    "Vote",
    # Role grants
    "SystemAdmin",
    "ProductOwner",
    "ProductStakeholder",
]
