"""
Role Authority: effective roles, visibility scope and role grants.

Roles are never stored on the user. They are computed from three grant
tables:
- ``system_admins`` (plus the configured fallback admin emails)
- ``product_product_owners`` (one product, or every product when
  ``applies_to_all_products`` is set)
- ``product_stakeholders`` (keyed by email, so a grant can exist before the
  user ever signs in)

Every privileged mutation is gated here.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..models import (
    Product,
    ProductOwner,
    ProductStakeholder,
    SystemAdmin,
    User,
    VotingSession,
)
from .errors import Forbidden, InvalidRequest, NotFound, PersistenceFailure
from .users import UserDirectory, normalize_email

logger = logging.getLogger(__name__)


# =============================================================================
# ROLES
# =============================================================================


class Role(str, Enum):
    SYSTEM_ADMIN = "system-admin"
    PRODUCT_OWNER = "product-owner"
    STAKEHOLDER = "stakeholder"
    NONE = "none"


class RoleType(str, Enum):
    """Roles that can be granted per product."""
    STAKEHOLDER = "stakeholder"
    PRODUCT_OWNER = "product-owner"


class ViewMode(str, Enum):
    SYSTEM_ADMIN = "system-admin"
    PRODUCT_OWNER = "product-owner"


class GrantOutcome(str, Enum):
    GRANTED = "granted"
    ALREADY_ASSIGNED = "already_assigned"
    REVOKED = "revoked"
    NOT_ASSIGNED = "not_assigned"


@dataclass(frozen=True)
class EffectiveRoles:
    """The union of a user's grants."""
    user_id: UUID
    is_system_admin: bool = False
    owned_product_ids: frozenset[UUID] = frozenset()
    stakeholder_product_ids: frozenset[UUID] = frozenset()

    @property
    def is_product_owner(self) -> bool:
        return bool(self.owned_product_ids)

    @property
    def is_stakeholder(self) -> bool:
        return bool(self.stakeholder_product_ids)

    @property
    def primary_role(self) -> "Role":
        return primary_role(self)

    def can_manage_product(self, product_id: UUID) -> bool:
        return self.is_system_admin or product_id in self.owned_product_ids

    def can_vote_on_product(self, product_id: UUID) -> bool:
        return (
            product_id in self.stakeholder_product_ids
            or self.can_manage_product(product_id)
        )


@dataclass(frozen=True)
class RoleView:
    """Primary role, tagged with the products it applies to."""
    role: Role
    product_ids: frozenset[UUID] = frozenset()


def primary_role(roles: EffectiveRoles) -> Role:
    """System admin > product owner > stakeholder > none."""
    if roles.is_system_admin:
        return Role.SYSTEM_ADMIN
    if roles.owned_product_ids:
        return Role.PRODUCT_OWNER
    if roles.stakeholder_product_ids:
        return Role.STAKEHOLDER
    return Role.NONE


def role_view(roles: EffectiveRoles) -> RoleView:
    role = primary_role(roles)
    if role is Role.PRODUCT_OWNER:
        return RoleView(role, roles.owned_product_ids)
    if role is Role.STAKEHOLDER:
        return RoleView(role, roles.stakeholder_product_ids)
    return RoleView(role)


@dataclass
class UserWithRoles:
    user: User
    roles: EffectiveRoles

    @property
    def primary_role(self) -> Role:
        return primary_role(self.roles)


@dataclass
class GrantResult:
    outcome: GrantOutcome
    user_id: UUID | None = None
    message: str = ""


# =============================================================================
# AUTHORITY
# =============================================================================


class RoleAuthority:
    """Computes effective roles and applies role grants."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        users: UserDirectory | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.users = users or UserDirectory(session)

    # -------------------------------------------------------------------------
    # EFFECTIVE ROLES
    # -------------------------------------------------------------------------

    async def effective_roles(self, user_id: UUID) -> EffectiveRoles:
        user = await self.users.get(user_id)
        roles = await self._roles_for([user])
        return roles[user.id]

    async def _roles_for(self, users: Sequence[User]) -> dict[UUID, EffectiveRoles]:
        """Compute effective roles for several users with one query per table."""
        if not users:
            return {}
        user_ids = [u.id for u in users]
        emails = [u.email.lower() for u in users]
        fallback_admins = set(self.settings.fallback_system_admin_emails)

        admin_ids = set(
            (
                await self.session.execute(
                    select(SystemAdmin.user_id).where(SystemAdmin.user_id.in_(user_ids))
                )
            ).scalars()
        )

        owner_rows = (
            await self.session.execute(
                select(
                    ProductOwner.user_id,
                    ProductOwner.product_id,
                    ProductOwner.applies_to_all_products,
                ).where(ProductOwner.user_id.in_(user_ids))
            )
        ).all()

        stakeholder_rows = (
            await self.session.execute(
                select(ProductStakeholder.user_email, ProductStakeholder.product_id).where(
                    ProductStakeholder.user_email.in_(emails)
                )
            )
        ).all()

        all_product_ids: frozenset[UUID] | None = None
        if any(applies_to_all for _, _, applies_to_all in owner_rows):
            all_product_ids = frozenset(
                (await self.session.execute(select(Product.id))).scalars()
            )

        owned: dict[UUID, set[UUID]] = {uid: set() for uid in user_ids}
        for uid, product_id, applies_to_all in owner_rows:
            if applies_to_all:
                owned[uid].update(all_product_ids or ())
            elif product_id is not None:
                owned[uid].add(product_id)

        stakeholder_of: dict[str, set[UUID]] = {email: set() for email in emails}
        for email, product_id in stakeholder_rows:
            stakeholder_of.setdefault(email.lower(), set()).add(product_id)

        return {
            u.id: EffectiveRoles(
                user_id=u.id,
                is_system_admin=u.id in admin_ids or u.email.lower() in fallback_admins,
                owned_product_ids=frozenset(owned[u.id]),
                stakeholder_product_ids=frozenset(stakeholder_of[u.email.lower()]),
            )
            for u in users
        }

    async def can_manage_product(self, user_id: UUID, product_id: UUID) -> bool:
        roles = await self.effective_roles(user_id)
        return roles.can_manage_product(product_id)

    async def require_product_manager(self, user_id: UUID, product_id: UUID) -> EffectiveRoles:
        roles = await self.effective_roles(user_id)
        if not roles.can_manage_product(product_id):
            raise Forbidden("You do not have permission to manage this product")
        return roles

    async def require_system_admin(self, user_id: UUID) -> EffectiveRoles:
        roles = await self.effective_roles(user_id)
        if not roles.is_system_admin:
            raise Forbidden("Only system admins can perform this operation")
        return roles

    # -------------------------------------------------------------------------
    # VISIBILITY
    # -------------------------------------------------------------------------

    async def visible_users(
        self,
        acting_user_id: UUID,
        view_mode: ViewMode | str = ViewMode.SYSTEM_ADMIN,
    ) -> list[UserWithRoles]:
        """Users the actor may see under the given lens.

        The product-owner lens narrows to users holding a grant on a product
        the actor owns and hides every system admin except the actor.
        """
        try:
            view_mode = ViewMode(view_mode)
        except ValueError:
            raise InvalidRequest(f"Unknown view mode: {view_mode}") from None

        actor = await self.effective_roles(acting_user_id)
        all_users = list(await self.users.list_all())
        roles = await self._roles_for(all_users)

        if view_mode is ViewMode.SYSTEM_ADMIN:
            if not actor.is_system_admin:
                raise Forbidden("Only system admins can view all users")
            return [UserWithRoles(u, roles[u.id]) for u in all_users]

        if not actor.is_product_owner and not actor.is_system_admin:
            raise Forbidden("Only product owners can view product members")

        owned = actor.owned_product_ids
        visible = []
        for user in all_users:
            user_roles = roles[user.id]
            if user_roles.is_system_admin and user.id != acting_user_id:
                continue
            if user.id == acting_user_id or (
                user_roles.owned_product_ids & owned
                or user_roles.stakeholder_product_ids & owned
            ):
                visible.append(UserWithRoles(user, user_roles))
        return visible

    async def visible_product_ids(self, user_id: UUID) -> frozenset[UUID] | None:
        """Products whose sessions the user may see; None means all."""
        roles = await self.effective_roles(user_id)
        if roles.is_system_admin:
            return None
        return roles.owned_product_ids | roles.stakeholder_product_ids

    async def visible_sessions(self, user_id: UUID) -> Sequence[VotingSession]:
        product_ids = await self.visible_product_ids(user_id)
        query = select(VotingSession).order_by(VotingSession.start_date.desc())
        if product_ids is not None:
            if not product_ids:
                return []
            query = query.where(VotingSession.product_id.in_(product_ids))
        result = await self.session.execute(query)
        return result.scalars().all()

    async def product_stakeholders(self, product_id: UUID) -> Sequence[ProductStakeholder]:
        """Stakeholder grants of a product by name, with their voting status."""
        await self._require_product(product_id)
        result = await self.session.execute(
            select(ProductStakeholder)
            .where(ProductStakeholder.product_id == product_id)
            .order_by(ProductStakeholder.user_name, ProductStakeholder.user_email)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    # -------------------------------------------------------------------------
    # PRODUCT GRANTS
    # -------------------------------------------------------------------------

    async def _require_product(self, product_id: UUID) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None:
            raise NotFound("product", product_id)
        return product

    @staticmethod
    def _role_type(role_type: RoleType | str) -> RoleType:
        try:
            return RoleType(role_type)
        except ValueError:
            raise InvalidRequest(
                f"Invalid roleType {role_type!r}; expected 'stakeholder' or 'product-owner'"
            ) from None

    async def grant_role(
        self,
        actor_id: UUID,
        product_id: UUID,
        role_type: RoleType | str,
        user_email: str,
        user_name: str | None = None,
        user_id: UUID | None = None,
    ) -> GrantResult:
        role_type = self._role_type(role_type)
        email = normalize_email(user_email)
        product = await self._require_product(product_id)
        await self.require_product_manager(actor_id, product_id)

        if role_type is RoleType.PRODUCT_OWNER:
            if user_id is not None:
                target = await self.users.get(user_id)
            else:
                target = await self.users.get_or_create(email, user_name)
            existing = await self.session.execute(
                select(ProductOwner.id).where(
                    ProductOwner.user_id == target.id,
                    (ProductOwner.product_id == product_id)
                    | ProductOwner.applies_to_all_products.is_(True),
                )
            )
            if existing.first() is not None:
                return GrantResult(
                    GrantOutcome.ALREADY_ASSIGNED,
                    target.id,
                    f"{target.email} is already a product owner of {product.name}",
                )
            self.session.add(ProductOwner(product_id=product_id, user_id=target.id))
        else:
            target = await self.users.get_or_create(email, user_name)
            existing = await self.session.execute(
                select(ProductStakeholder.id).where(
                    ProductStakeholder.product_id == product_id,
                    ProductStakeholder.user_email == email,
                )
            )
            if existing.first() is not None:
                return GrantResult(
                    GrantOutcome.ALREADY_ASSIGNED,
                    target.id,
                    f"{email} is already a stakeholder of {product.name}",
                )
            self.session.add(
                ProductStakeholder(
                    product_id=product_id,
                    user_email=email,
                    user_name=(user_name or "").strip() or target.name,
                    votes_allocated=self.settings.default_votes_allocated,
                )
            )

        await self._flush(f"grant {role_type.value}")
        logger.info(
            f"User {actor_id} granted {role_type.value} on product {product_id} "
            f"to {email}"
        )
        return GrantResult(
            GrantOutcome.GRANTED,
            target.id,
            f"Added {email} as {role_type.value} of {product.name}",
        )

    async def revoke_role(
        self,
        actor_id: UUID,
        product_id: UUID,
        role_type: RoleType | str,
        user_email: str,
        user_id: UUID | None = None,
    ) -> GrantResult:
        role_type = self._role_type(role_type)
        email = normalize_email(user_email)
        product = await self._require_product(product_id)
        await self.require_product_manager(actor_id, product_id)

        if role_type is RoleType.PRODUCT_OWNER:
            target = (
                await self.users.get(user_id)
                if user_id is not None
                else await self.users.get_by_email(email)
            )
            if target is None:
                raise NotFound("user", email)
            removed = await self._delete(
                ProductOwner,
                ProductOwner.product_id == product_id,
                ProductOwner.user_id == target.id,
            )
            target_id = target.id
        else:
            removed = await self._delete(
                ProductStakeholder,
                ProductStakeholder.product_id == product_id,
                ProductStakeholder.user_email == email,
            )
            target = await self.users.get_by_email(email)
            target_id = target.id if target else None

        if not removed:
            return GrantResult(
                GrantOutcome.NOT_ASSIGNED,
                target_id,
                f"{email} is not a {role_type.value} of {product.name}",
            )
        logger.info(
            f"User {actor_id} revoked {role_type.value} on product {product_id} "
            f"from {email}"
        )
        return GrantResult(
            GrantOutcome.REVOKED,
            target_id,
            f"Removed {email} as {role_type.value} of {product.name}",
        )

    # -------------------------------------------------------------------------
    # SYSTEM ADMIN GRANTS
    # -------------------------------------------------------------------------

    async def grant_system_admin(self, actor_id: UUID, user_id: UUID) -> GrantOutcome:
        await self.require_system_admin(actor_id)
        target = await self.users.get(user_id)
        existing = await self.session.execute(
            select(SystemAdmin.id).where(SystemAdmin.user_id == target.id)
        )
        if existing.first() is not None:
            return GrantOutcome.ALREADY_ASSIGNED

        self.session.add(SystemAdmin(user_id=target.id))
        await self._flush("grant system admin")
        logger.info(f"User {actor_id} granted system admin to {target.email}")
        return GrantOutcome.GRANTED

    async def revoke_system_admin(self, actor_id: UUID, user_id: UUID) -> GrantOutcome:
        await self.require_system_admin(actor_id)
        target = await self.users.get(user_id)
        if target.id in await self.protected_user_ids():
            raise Forbidden(f"{target.email} is a protected account")

        removed = await self._delete(SystemAdmin, SystemAdmin.user_id == target.id)
        if not removed:
            return GrantOutcome.NOT_ASSIGNED
        logger.info(f"User {actor_id} revoked system admin from {target.email}")
        return GrantOutcome.REVOKED

    # -------------------------------------------------------------------------
    # USER DELETION
    # -------------------------------------------------------------------------

    async def protected_user_ids(self) -> set[UUID]:
        """Configured protected emails plus the earliest system admin."""
        protected: set[UUID] = set()

        emails = self.settings.protected_user_emails
        if emails:
            result = await self.session.execute(select(User.id).where(User.email.in_(emails)))
            protected.update(result.scalars())

        result = await self.session.execute(
            select(SystemAdmin.user_id).order_by(SystemAdmin.created_at).limit(1)
        )
        first_admin = result.scalar_one_or_none()
        if first_admin is not None:
            protected.add(first_admin)
        return protected

    async def delete_user(self, actor_id: UUID, user_id: UUID) -> User:
        """Delete a user and every grant that references them.

        All steps run in the caller's transaction; any failure rolls back
        the whole deletion.
        """
        await self.require_system_admin(actor_id)
        if actor_id == user_id:
            raise InvalidRequest("You cannot delete your own account")

        target = await self.users.get(user_id)
        if target.id in await self.protected_user_ids():
            raise Forbidden(f"{target.email} is a protected account and cannot be deleted")

        owners = await self._delete(ProductOwner, ProductOwner.user_id == target.id)
        stakeholders = await self._delete(
            ProductStakeholder, ProductStakeholder.user_email == target.email.lower()
        )
        await self._delete(SystemAdmin, SystemAdmin.user_id == target.id)
        try:
            await self.session.execute(
                update(VotingSession)
                .where(VotingSession.created_by == target.id)
                .values(created_by=None)
                .execution_options(synchronize_session=False)
            )
            await self.session.delete(target)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete user {user_id}: {e}")
            raise PersistenceFailure(str(e)) from e

        logger.info(
            f"User {actor_id} deleted user {target.email} "
            f"({owners} owner grants, {stakeholders} stakeholder grants)"
        )
        return target

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    async def _delete(self, model, *conditions) -> int:
        try:
            result = await self.session.execute(
                delete(model).where(*conditions).execution_options(synchronize_session=False)
            )
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete {model.__tablename__} rows: {e}")
            raise PersistenceFailure(str(e)) from e
        return result.rowcount or 0

    async def _flush(self, action: str) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceFailure(str(e)) from e
