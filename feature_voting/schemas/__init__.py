"""Feature Voting API Schemas.

Schemas are organized by domain:
- base: common configuration, error responses, references
- voting: products, sessions, features, votes
- admin: users, role grants, membership changes
"""

from .admin import (
    DeleteUserResponse,
    DevLoginRequest,
    MemberRequest,
    MemberResponse,
    RolesResponse,
    SystemAdminRequest,
    SystemAdminResponse,
    TokenResponse,
    UserResponse,
)
from .base import (
    ErrorDetail,
    ErrorResponse,
    MessageResponse,
    UserRef,
    VotingBaseModel,
)
from .voting import (
    BallotResponse,
    EndSessionEarlyRequest,
    FeatureCreate,
    FeatureImportRequest,
    FeatureResponse,
    FeatureUpdate,
    ImportedFeature,
    ImportSummaryResponse,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    ReopenSessionRequest,
    ResetResponse,
    SessionCreate,
    SessionResponse,
    SessionUpdate,
    StakeholderResponse,
    StatusNoteResponse,
    VoterResponse,
    VoteRecordResponse,
    VoteSubmission,
)

__all__ = [
    # Base
    "VotingBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    "MessageResponse",
    "UserRef",
    # Products
    "ProductCreate",
    "ProductUpdate",
    "ProductResponse",
    # Sessions
    "SessionCreate",
    "SessionUpdate",
    "SessionResponse",
    "StakeholderResponse",
    "EndSessionEarlyRequest",
    "ReopenSessionRequest",
    "StatusNoteResponse",
    # Features
    "FeatureCreate",
    "FeatureUpdate",
    "FeatureResponse",
    "VoterResponse",
    "ImportedFeature",
    "FeatureImportRequest",
    "ImportSummaryResponse",
    # Votes
    "VoteSubmission",
    "VoteRecordResponse",
    "BallotResponse",
    "ResetResponse",
    # Users and roles
    "RolesResponse",
    "UserResponse",
    "DevLoginRequest",
    "TokenResponse",
    "MemberRequest",
    "MemberResponse",
    "SystemAdminRequest",
    "SystemAdminResponse",
    "DeleteUserResponse",
]
