"""Exceptions raised by the voting and role services.

Budget and session errors (``SessionClosed``, ``BudgetExhausted``,
``NothingToRemove``, ``IncompleteAllocation``) are validation outcomes the
caller shows inline. ``Forbidden``, ``NotFound``, ``ImportFailed`` and
``PersistenceFailure`` are surfaced as explicit failures; the caller retries
the whole operation.
"""


class VotingError(Exception):
    """Base exception for voting operations."""

    code = "voting_error"

    def __init__(self, message: str | None = None):
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        super().__init__(self.message)


class SessionClosed(VotingError):
    """The voting session is not open."""

    code = "session_closed"


class BudgetExhausted(VotingError):
    """All votes for this session are already allocated."""

    code = "budget_exhausted"


class NothingToRemove(VotingError):
    """No votes are allocated to this feature."""

    code = "nothing_to_remove"


class IncompleteAllocation(VotingError):
    """The entire vote budget must be allocated before submitting."""

    code = "incomplete_allocation"

    def __init__(self, used_votes: int, votes_per_user: int):
        super().__init__(
            f"Allocate all {votes_per_user} votes before submitting "
            f"({used_votes} allocated)"
        )
        self.used_votes = used_votes
        self.votes_per_user = votes_per_user


class ImportFailed(VotingError):
    """Importing features from the external tracker failed."""

    code = "import_failed"

    def __init__(self, cause: str):
        super().__init__(f"Feature import failed: {cause}")
        self.cause = cause


class Forbidden(VotingError):
    """The acting user is not allowed to perform this operation."""

    code = "forbidden"


class NotFound(VotingError):
    """The requested entity does not exist."""

    code = "not_found"

    def __init__(self, entity: str, identifier: object | None = None):
        detail = f"{entity} not found" if identifier is None else f"{entity} {identifier} not found"
        super().__init__(detail[0].upper() + detail[1:])
        self.entity = entity
        self.identifier = identifier


class PersistenceFailure(VotingError):
    """The data store rejected or failed the operation."""

    code = "persistence_failure"

    def __init__(self, cause: str):
        super().__init__(f"Persistence failure: {cause}")
        self.cause = cause


class InvalidRequest(VotingError):
    """The request is malformed or not allowed in the current state."""

    code = "invalid_request"
