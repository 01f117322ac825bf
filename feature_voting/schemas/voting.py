"""Schemas for products, sessions, features and votes."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator

from ..models import StatusNoteType
from .base import VotingBaseModel


# =============================================================================
# PRODUCTS
# =============================================================================


class ProductCreate(VotingBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    color_hex: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class ProductUpdate(VotingBaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    color_hex: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class ProductResponse(VotingBaseModel):
    id: UUID
    name: str
    color_hex: str | None = None
    created_at: datetime


# =============================================================================
# SESSIONS
# =============================================================================


class SessionCreate(VotingBaseModel):
    """Request to create a voting session."""

    product_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    goal: str = ""
    votes_per_user: int = Field(..., gt=0)
    use_auto_votes: bool = False
    start_date: datetime
    end_date: datetime


class SessionUpdate(VotingBaseModel):
    """Partial update; omitted fields are left unchanged."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    goal: str | None = None
    votes_per_user: int | None = Field(default=None, gt=0)
    use_auto_votes: bool | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class SessionResponse(VotingBaseModel):
    id: UUID
    product_id: UUID
    title: str
    goal: str
    votes_per_user: int
    use_auto_votes: bool = False
    start_date: datetime
    end_date: datetime
    is_active: bool
    session_code: str
    created_by: UUID | None = None
    created_at: datetime


class StakeholderResponse(VotingBaseModel):
    """A stakeholder of the session's product and whether they have voted."""

    user_email: str
    user_name: str
    votes_allocated: int
    has_voted: bool
    voted_at: datetime | None = None


class EndSessionEarlyRequest(VotingBaseModel):
    reason: str = Field(..., min_length=1)
    details: str | None = None


class ReopenSessionRequest(VotingBaseModel):
    new_end_date: datetime
    reason: str = Field(..., min_length=1)
    details: str | None = None


class StatusNoteResponse(VotingBaseModel):
    id: UUID
    session_id: UUID
    type: StatusNoteType
    reason: str
    details: str | None = None
    actor_id: UUID | None = None
    actor_name: str
    created_at: datetime


# =============================================================================
# FEATURES
# =============================================================================


class FeatureCreate(VotingBaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    epic: str | None = None
    state: str | None = None
    area_path: str | None = None
    tags: list[str] | None = None
    external_id: str | None = Field(default=None, max_length=64)
    external_url: str | None = None


class FeatureUpdate(VotingBaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    epic: str | None = None
    state: str | None = None
    area_path: str | None = None
    tags: list[str] | None = None
    external_id: str | None = Field(default=None, max_length=64)
    external_url: str | None = None


class VoterResponse(VotingBaseModel):
    user_id: UUID
    name: str
    email: str
    vote_count: int


class FeatureResponse(VotingBaseModel):
    """A feature with its tally and voter roster."""

    id: UUID
    session_id: UUID
    title: str
    description: str
    epic: str | None = None
    state: str | None = None
    area_path: str | None = None
    tags: list[str] | None = None
    external_id: str | None = None
    external_url: str | None = None
    votes: int = 0
    voters: list[VoterResponse] = []
    created_at: datetime | None = None


class ImportedFeature(VotingBaseModel):
    """A work item supplied directly in an import request."""

    external_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=500)
    url: str | None = None
    description: str | None = None
    tags: list[str] = []
    epic: str | None = None
    state: str | None = None
    area_path: str | None = None


class FeatureImportRequest(VotingBaseModel):
    """Import payload; without ``features`` the configured tracker is queried.

    ``states`` and ``area_path`` narrow the tracker query. ``replace_all``
    deletes every existing feature (and its votes) instead of merging.
    """

    features: list[ImportedFeature] | None = None
    states: list[str] | None = None
    area_path: str | None = Field(default=None, max_length=500)
    replace_all: bool = False


class ImportSummaryResponse(VotingBaseModel):
    updated: int
    created: int
    removed: int = 0


# =============================================================================
# VOTES
# =============================================================================


class VoteSubmission(VotingBaseModel):
    """A full allocation: feature id -> number of votes."""

    allocations: dict[UUID, int]

    @field_validator("allocations")
    @classmethod
    def non_negative(cls, value: dict[UUID, int]) -> dict[UUID, int]:
        if any(count < 0 for count in value.values()):
            raise ValueError("Vote counts must not be negative")
        return value


class VoteRecordResponse(VotingBaseModel):
    feature_id: UUID
    session_id: UUID
    user_id: UUID
    user_name: str
    user_email: str
    vote_count: int


class BallotResponse(VotingBaseModel):
    session_id: UUID
    votes_per_user: int
    use_auto_votes: bool = False
    used_votes: int
    remaining_votes: int
    is_open: bool
    has_submitted: bool
    allocations: dict[UUID, int]


class ResetResponse(VotingBaseModel):
    removed: int
