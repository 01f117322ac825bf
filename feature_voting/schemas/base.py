"""Base schemas and common types for the Feature Voting API."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class VotingBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(VotingBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(VotingBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class UserRef(VotingBaseModel):
    """Minimal user reference for embedding in responses."""

    id: UUID
    name: str
    email: EmailStr


class MessageResponse(VotingBaseModel):
    success: bool = True
    message: str
