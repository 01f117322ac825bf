"""
Tests for the Role Authority - effective roles, visibility and grants.

These tests verify:
1. PRECEDENCE: system admin > product owner > stakeholder > none
2. VISIBILITY: the product-owner lens hides other admins and foreign users
3. GRANTS: duplicate grants are reported, not duplicated
4. PROTECTION: protected accounts cannot be deleted or demoted
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feature_voting.core.config import Settings
from feature_voting.models import ProductOwner, ProductStakeholder, User
from feature_voting.services import (
    Forbidden,
    GrantOutcome,
    InvalidRequest,
    NotFound,
    Role,
    RoleAuthority,
    RoleType,
    ViewMode,
    role_view,
)

from .conftest import make_user


@pytest.fixture
def authority(session: AsyncSession, settings: Settings) -> RoleAuthority:
    return RoleAuthority(session, settings=settings)


# =============================================================================
# TEST: EFFECTIVE ROLES
# =============================================================================


class TestEffectiveRoles:
    """Roles are derived from grant rows, never stored on the user."""

    async def test_primary_role_precedence(
        self, authority: RoleAuthority, admin, owner, stakeholder, outsider
    ):
        assert (await authority.effective_roles(admin.id)).primary_role is Role.SYSTEM_ADMIN
        assert (await authority.effective_roles(owner.id)).primary_role is Role.PRODUCT_OWNER
        assert (await authority.effective_roles(stakeholder.id)).primary_role is Role.STAKEHOLDER
        assert (await authority.effective_roles(outsider.id)).primary_role is Role.NONE

    async def test_owner_and_stakeholder_reports_owner(
        self, session: AsyncSession, authority: RoleAuthority, product, other_product, owner
    ):
        session.add(
            ProductStakeholder(
                product_id=other_product.id,
                user_email=owner.email,
                user_name=owner.name,
            )
        )
        await session.flush()

        roles = await authority.effective_roles(owner.id)
        view = role_view(roles)

        assert roles.is_product_owner and roles.is_stakeholder
        assert view.role is Role.PRODUCT_OWNER
        assert view.product_ids == frozenset({product.id})

    async def test_applies_to_all_products(
        self, session: AsyncSession, authority: RoleAuthority, product, other_product, outsider
    ):
        session.add(
            ProductOwner(product_id=None, user_id=outsider.id, applies_to_all_products=True)
        )
        await session.flush()

        roles = await authority.effective_roles(outsider.id)

        assert roles.owned_product_ids == frozenset({product.id, other_product.id})
        assert roles.can_manage_product(other_product.id)

    async def test_fallback_admin_email(self, session: AsyncSession, outsider):
        settings = Settings(
            _env_file=None,
            PROTECTED_USER_EMAILS="",
            FALLBACK_SYSTEM_ADMIN_EMAILS="Otto@Example.com",
        )
        authority = RoleAuthority(session, settings=settings)

        roles = await authority.effective_roles(outsider.id)

        assert roles.is_system_admin
        assert roles.primary_role is Role.SYSTEM_ADMIN

    async def test_stakeholder_can_vote_but_not_manage(
        self, authority: RoleAuthority, product, other_product, stakeholder
    ):
        roles = await authority.effective_roles(stakeholder.id)

        assert roles.can_vote_on_product(product.id)
        assert not roles.can_vote_on_product(other_product.id)
        assert not roles.can_manage_product(product.id)


# =============================================================================
# TEST: VISIBILITY
# =============================================================================


class TestVisibility:
    """Which users and sessions an actor may see."""

    async def test_admin_lens_lists_everyone(
        self, authority: RoleAuthority, admin, owner, stakeholder, outsider
    ):
        visible = await authority.visible_users(admin.id, ViewMode.SYSTEM_ADMIN)

        assert {u.user.email for u in visible} == {
            admin.email,
            owner.email,
            stakeholder.email,
            outsider.email,
        }

    async def test_admin_lens_requires_admin(self, authority: RoleAuthority, owner):
        with pytest.raises(Forbidden):
            await authority.visible_users(owner.id, ViewMode.SYSTEM_ADMIN)

    async def test_owner_lens_hides_admins_and_strangers(
        self,
        session: AsyncSession,
        authority: RoleAuthority,
        product,
        admin,
        owner,
        stakeholder,
        second_stakeholder,
        outsider,
    ):
        # an admin who is also a stakeholder on the owner's product
        session.add(
            ProductStakeholder(product_id=product.id, user_email=admin.email, user_name=admin.name)
        )
        await session.flush()

        visible = await authority.visible_users(owner.id, "product-owner")

        assert {u.user.email for u in visible} == {
            owner.email,
            stakeholder.email,
            second_stakeholder.email,
        }

    async def test_stakeholder_cannot_use_owner_lens(self, authority: RoleAuthority, stakeholder):
        with pytest.raises(Forbidden):
            await authority.visible_users(stakeholder.id, ViewMode.PRODUCT_OWNER)

    async def test_unknown_view_mode(self, authority: RoleAuthority, admin):
        with pytest.raises(InvalidRequest):
            await authority.visible_users(admin.id, "auditor")

    async def test_visible_sessions(
        self, authority: RoleAuthority, admin, stakeholder, outsider, open_session, closed_session
    ):
        assert {s.id for s in await authority.visible_sessions(stakeholder.id)} == {
            open_session.id,
            closed_session.id,
        }
        assert len(await authority.visible_sessions(admin.id)) == 2
        assert await authority.visible_sessions(outsider.id) == []


# =============================================================================
# TEST: PRODUCT GRANTS
# =============================================================================


class TestProductGrants:
    """Granting and revoking stakeholder and product-owner roles."""

    async def test_grant_stakeholder_creates_user(
        self, session: AsyncSession, authority: RoleAuthority, product, owner
    ):
        result = await authority.grant_role(
            owner.id, product.id, RoleType.STAKEHOLDER, "New.Person@Example.com"
        )

        assert result.outcome is GrantOutcome.GRANTED
        user = await session.get(User, result.user_id)
        assert user.email == "new.person@example.com"
        assert user.name == "new person"
        grant = await session.scalar(
            select(ProductStakeholder).where(ProductStakeholder.user_email == user.email)
        )
        assert grant.votes_allocated == 10
        assert (await authority.effective_roles(user.id)).primary_role is Role.STAKEHOLDER

    async def test_duplicate_grant_is_reported(
        self, session: AsyncSession, authority: RoleAuthority, product, owner, stakeholder
    ):
        result = await authority.grant_role(
            owner.id, product.id, "stakeholder", "SAM@example.com"
        )

        assert result.outcome is GrantOutcome.ALREADY_ASSIGNED
        assert result.user_id == stakeholder.id
        rows = await session.scalar(
            select(func.count(ProductStakeholder.id)).where(
                ProductStakeholder.user_email == stakeholder.email
            )
        )
        assert rows == 1

    async def test_grant_product_owner(
        self, authority: RoleAuthority, admin, other_product, owner, product
    ):
        result = await authority.grant_role(
            admin.id, other_product.id, RoleType.PRODUCT_OWNER, owner.email, user_id=owner.id
        )

        assert result.outcome is GrantOutcome.GRANTED
        roles = await authority.effective_roles(owner.id)
        assert roles.owned_product_ids == frozenset({product.id, other_product.id})

        again = await authority.grant_role(
            admin.id, other_product.id, RoleType.PRODUCT_OWNER, owner.email
        )
        assert again.outcome is GrantOutcome.ALREADY_ASSIGNED

    async def test_owner_cannot_grant_on_foreign_product(
        self, authority: RoleAuthority, other_product, owner
    ):
        with pytest.raises(Forbidden):
            await authority.grant_role(
                owner.id, other_product.id, RoleType.STAKEHOLDER, "x@example.com"
            )

    async def test_stakeholder_cannot_grant(self, authority: RoleAuthority, product, stakeholder):
        with pytest.raises(Forbidden):
            await authority.grant_role(
                stakeholder.id, product.id, RoleType.STAKEHOLDER, "friend@example.com"
            )

    async def test_invalid_grant_requests(self, authority: RoleAuthority, product, owner):
        with pytest.raises(InvalidRequest):
            await authority.grant_role(owner.id, product.id, "voter", "x@example.com")
        with pytest.raises(InvalidRequest):
            await authority.grant_role(owner.id, product.id, RoleType.STAKEHOLDER, "not-an-email")
        with pytest.raises(NotFound):
            await authority.grant_role(owner.id, uuid4(), RoleType.STAKEHOLDER, "x@example.com")

    async def test_revoke_stakeholder(self, authority: RoleAuthority, product, owner, stakeholder):
        first = await authority.revoke_role(
            owner.id, product.id, RoleType.STAKEHOLDER, stakeholder.email
        )
        second = await authority.revoke_role(
            owner.id, product.id, RoleType.STAKEHOLDER, stakeholder.email
        )

        assert first.outcome is GrantOutcome.REVOKED
        assert second.outcome is GrantOutcome.NOT_ASSIGNED
        assert (await authority.effective_roles(stakeholder.id)).primary_role is Role.NONE


# =============================================================================
# TEST: SYSTEM ADMINS AND DELETION
# =============================================================================


class TestSystemAdmins:
    """System admin grants and user deletion."""

    async def test_grant_and_revoke_system_admin(self, authority: RoleAuthority, admin, outsider):
        assert await authority.grant_system_admin(admin.id, outsider.id) is GrantOutcome.GRANTED
        assert (
            await authority.grant_system_admin(admin.id, outsider.id)
            is GrantOutcome.ALREADY_ASSIGNED
        )
        assert await authority.revoke_system_admin(admin.id, outsider.id) is GrantOutcome.REVOKED
        assert (
            await authority.revoke_system_admin(admin.id, outsider.id)
            is GrantOutcome.NOT_ASSIGNED
        )

    async def test_earliest_admin_cannot_be_demoted(
        self, authority: RoleAuthority, admin, outsider
    ):
        await authority.grant_system_admin(admin.id, outsider.id)

        with pytest.raises(Forbidden):
            await authority.revoke_system_admin(outsider.id, admin.id)

    async def test_only_admins_grant_admin(self, authority: RoleAuthority, owner, outsider):
        with pytest.raises(Forbidden):
            await authority.grant_system_admin(owner.id, outsider.id)

    async def test_delete_user_removes_grants(
        self,
        session: AsyncSession,
        authority: RoleAuthority,
        admin,
        owner,
        open_session,
    ):
        open_session.created_by = owner.id
        await session.flush()
        owner_id = owner.id

        await authority.delete_user(admin.id, owner_id)

        assert await session.get(User, owner_id) is None
        remaining = await session.scalar(
            select(func.count(ProductOwner.id)).where(ProductOwner.user_id == owner_id)
        )
        assert remaining == 0
        await session.refresh(open_session)
        assert open_session.created_by is None

    async def test_delete_stakeholder_removes_email_grants(
        self, session: AsyncSession, authority: RoleAuthority, admin, stakeholder
    ):
        await authority.delete_user(admin.id, stakeholder.id)

        remaining = await session.scalar(
            select(func.count(ProductStakeholder.id)).where(
                ProductStakeholder.user_email == "sam@example.com"
            )
        )
        assert remaining == 0

    async def test_cannot_delete_self(self, authority: RoleAuthority, admin):
        with pytest.raises(InvalidRequest):
            await authority.delete_user(admin.id, admin.id)

    async def test_cannot_delete_protected_admin(
        self, authority: RoleAuthority, admin, outsider
    ):
        await authority.grant_system_admin(admin.id, outsider.id)

        with pytest.raises(Forbidden):
            await authority.delete_user(outsider.id, admin.id)

    async def test_configured_protected_email(self, session: AsyncSession, admin):
        settings = Settings(
            _env_file=None,
            PROTECTED_USER_EMAILS="vip@example.com",
            FALLBACK_SYSTEM_ADMIN_EMAILS="",
        )
        authority = RoleAuthority(session, settings=settings)
        vip = await make_user(session, "vip@example.com", "Very Important")

        with pytest.raises(Forbidden):
            await authority.delete_user(admin.id, vip.id)

    async def test_non_admin_cannot_delete(self, authority: RoleAuthority, owner, outsider):
        with pytest.raises(Forbidden):
            await authority.delete_user(owner.id, outsider.id)
