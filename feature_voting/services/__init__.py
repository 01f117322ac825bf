"""Business logic services for Feature Voting."""

from .errors import (
    BudgetExhausted,
    Forbidden,
    ImportFailed,
    IncompleteAllocation,
    InvalidRequest,
    NothingToRemove,
    NotFound,
    PersistenceFailure,
    SessionClosed,
    VotingError,
)
from .feature_catalog import (
    ExternalFeature,
    FeatureCatalog,
    FeatureSource,
    FeatureView,
    ImportSummary,
    merge_imported,
)
from .products import ProductService
from .role_authority import (
    EffectiveRoles,
    GrantOutcome,
    GrantResult,
    Role,
    RoleAuthority,
    RoleType,
    RoleView,
    UserWithRoles,
    ViewMode,
    primary_role,
    role_view,
)
from .session_clock import SessionClock, ensure_open, is_open, reconcile
from .sessions import SessionService, generate_session_code
from .users import UserDirectory, normalize_email
from .vote_budget import (
    BudgetState,
    VoteBudget,
    auto_votes_per_user,
    effective_votes_per_user,
)
from .vote_ledger import VoteLedger, VoteRecord, VoterInfo
from .voting import Ballot, VotingService

__all__ = [
    # Errors
    "VotingError",
    "SessionClosed",
    "BudgetExhausted",
    "NothingToRemove",
    "IncompleteAllocation",
    "ImportFailed",
    "Forbidden",
    "NotFound",
    "PersistenceFailure",
    "InvalidRequest",
    # Core components
    "SessionClock",
    "is_open",
    "ensure_open",
    "reconcile",
    "VoteBudget",
    "auto_votes_per_user",
    "effective_votes_per_user",
    "BudgetState",
    "VoteLedger",
    "VoteRecord",
    "VoterInfo",
    "FeatureCatalog",
    "FeatureView",
    "FeatureSource",
    "ExternalFeature",
    "ImportSummary",
    "merge_imported",
    "RoleAuthority",
    "EffectiveRoles",
    "Role",
    "RoleType",
    "RoleView",
    "ViewMode",
    "GrantOutcome",
    "GrantResult",
    "UserWithRoles",
    "primary_role",
    "role_view",
    # Supporting services
    "SessionService",
    "generate_session_code",
    "ProductService",
    "UserDirectory",
    "normalize_email",
    "VotingService",
    "Ballot",
]
