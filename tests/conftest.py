"""Shared fixtures: an in-memory SQLite database with a small product setup."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from feature_voting.core.config import Settings
from feature_voting.core.database import init_db
from feature_voting.models import (
    Feature,
    Product,
    ProductOwner,
    ProductStakeholder,
    SystemAdmin,
    User,
    VotingSession,
)


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def fixed_now() -> datetime:
    return NOW


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        PROTECTED_USER_EMAILS="",
        FALLBACK_SYSTEM_ADMIN_EMAILS="",
    )


# =============================================================================
# USERS, PRODUCTS AND GRANTS
# =============================================================================


async def make_user(session: AsyncSession, email: str, name: str) -> User:
    user = User(email=email, name=name)
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def admin(session: AsyncSession) -> User:
    user = await make_user(session, "ada@example.com", "Ada Admin")
    session.add(SystemAdmin(user_id=user.id, created_at=NOW - timedelta(days=30)))
    await session.flush()
    return user


@pytest.fixture
async def product(session: AsyncSession) -> Product:
    product = Product(name="Checkout", color_hex="#3366FF")
    session.add(product)
    await session.flush()
    return product


@pytest.fixture
async def other_product(session: AsyncSession) -> Product:
    product = Product(name="Search")
    session.add(product)
    await session.flush()
    return product


@pytest.fixture
async def owner(session: AsyncSession, product: Product) -> User:
    user = await make_user(session, "olivia@example.com", "Olivia Owner")
    session.add(ProductOwner(product_id=product.id, user_id=user.id))
    await session.flush()
    return user


@pytest.fixture
async def stakeholder(session: AsyncSession, product: Product) -> User:
    user = await make_user(session, "sam@example.com", "Sam Stakeholder")
    session.add(
        ProductStakeholder(
            product_id=product.id,
            user_email=user.email,
            user_name=user.name,
        )
    )
    await session.flush()
    return user


@pytest.fixture
async def second_stakeholder(session: AsyncSession, product: Product) -> User:
    user = await make_user(session, "tess@example.com", "Tess Stakeholder")
    session.add(
        ProductStakeholder(
            product_id=product.id,
            user_email=user.email,
            user_name=user.name,
        )
    )
    await session.flush()
    return user


@pytest.fixture
async def outsider(session: AsyncSession) -> User:
    return await make_user(session, "otto@example.com", "Otto Outsider")


# =============================================================================
# SESSIONS AND FEATURES
# =============================================================================


@pytest.fixture
async def open_session(session: AsyncSession, product: Product) -> VotingSession:
    voting_session = VotingSession(
        product_id=product.id,
        title="Q2 priorities",
        goal="Pick the next quarter's work",
        votes_per_user=10,
        start_date=NOW - timedelta(days=1),
        end_date=NOW + timedelta(days=6),
        is_active=True,
        session_code="OPEN0001",
    )
    session.add(voting_session)
    await session.flush()
    return voting_session


@pytest.fixture
async def closed_session(session: AsyncSession, product: Product) -> VotingSession:
    voting_session = VotingSession(
        product_id=product.id,
        title="Q1 priorities",
        votes_per_user=5,
        start_date=NOW - timedelta(days=30),
        end_date=NOW - timedelta(days=2),
        is_active=False,
        session_code="DONE0001",
    )
    session.add(voting_session)
    await session.flush()
    return voting_session


@pytest.fixture
async def features(session: AsyncSession, open_session: VotingSession) -> list[Feature]:
    items = [
        Feature(session_id=open_session.id, title="One-click reorder", epic="Checkout"),
        Feature(session_id=open_session.id, title="Saved carts", epic="Checkout"),
        Feature(
            session_id=open_session.id,
            title="Gift cards",
            external_id="101",
            external_url="https://dev.azure.com/acme/shop/_workitems/edit/101",
        ),
    ]
    session.add_all(items)
    await session.flush()
    return items
