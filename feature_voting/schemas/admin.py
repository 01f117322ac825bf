"""Schemas for users, role grants and membership changes."""

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field

from ..services.role_authority import EffectiveRoles, GrantOutcome, Role, RoleType, role_view
from .base import VotingBaseModel


class RolesResponse(VotingBaseModel):
    """Effective roles of a user."""

    primary_role: Role
    is_system_admin: bool
    owned_product_ids: list[UUID] = []
    stakeholder_product_ids: list[UUID] = []
    # Products the primary role applies to
    role_product_ids: list[UUID] = []

    @classmethod
    def from_roles(cls, roles: EffectiveRoles) -> "RolesResponse":
        view = role_view(roles)
        return cls(
            primary_role=view.role,
            is_system_admin=roles.is_system_admin,
            owned_product_ids=sorted(roles.owned_product_ids, key=str),
            stakeholder_product_ids=sorted(roles.stakeholder_product_ids, key=str),
            role_product_ids=sorted(view.product_ids, key=str),
        )


class UserResponse(VotingBaseModel):
    id: UUID
    name: str
    email: str
    created_at: datetime
    roles: RolesResponse | None = None


class DevLoginRequest(VotingBaseModel):
    """Development login: issue a token for an existing user by email."""

    email: EmailStr


class TokenResponse(VotingBaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# =============================================================================
# MEMBERSHIP (privileged mutations)
# =============================================================================


class MemberRequest(VotingBaseModel):
    """Add or remove a product-level role grant."""

    product_id: UUID = Field(..., alias="productId")
    role_type: RoleType = Field(..., alias="roleType")
    user_email: EmailStr = Field(..., alias="userEmail")
    user_name: str | None = Field(default=None, alias="userName")
    user_id: UUID | None = Field(default=None, alias="userId")
    requester_email: EmailStr | None = Field(default=None, alias="requesterEmail")


class MemberResponse(VotingBaseModel):
    success: bool
    message: str
    outcome: GrantOutcome
    user_id: UUID | None = Field(default=None, alias="userId")


class SystemAdminRequest(VotingBaseModel):
    user_id: UUID


class SystemAdminResponse(VotingBaseModel):
    user_id: UUID
    outcome: GrantOutcome


class DeleteUserResponse(VotingBaseModel):
    success: bool = True
    message: str
    user_id: UUID = Field(..., alias="userId")
