#!/usr/bin/env python3
"""
Seed Data Script for Feature Voting

Creates a small "web shop" scenario with:
- 5 Users (Alice admin, Bob product owner, three stakeholders)
- 2 Products (Checkout, Search)
- 3 Voting sessions:
  - Q3 Checkout priorities: OPEN, two stakeholders have voted
  - Q2 Checkout priorities: CLOSED, ended early with a status note
  - Search discovery: UPCOMING, starts next week
- Features with Azure DevOps style external ids, so a re-import can be tried

Run with: python seed_data.py
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feature_voting.core.config import get_settings
from feature_voting.core.database import build_engine, init_db
from feature_voting.models import (
    Feature,
    Product,
    ProductOwner,
    ProductStakeholder,
    SessionStatusNote,
    StatusNoteType,
    SystemAdmin,
    User,
    VotingSession,
)
from feature_voting.services import VoteBudget, VoteLedger

settings = get_settings()


async def seed_database():
    """Main seeding function."""

    engine = build_engine(settings.database_url_async)
    await init_db(bind=engine)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    now = datetime.now(timezone.utc)

    async with async_session() as session:
        print("🌱 Starting database seed...")

        result = await session.execute(text("SELECT COUNT(*) FROM products"))
        count = result.scalar()
        if count and count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # CREATE USERS
        # =================================================================
        print("\n👥 Creating users...")

        alice = User(email="alice@shop.example", name="Alice Chen")
        bob = User(email="bob@shop.example", name="Bob Martinez")
        carol = User(email="carol@shop.example", name="Carol Davis")
        dan = User(email="dan@shop.example", name="Dan Okafor")
        erin = User(email="erin@shop.example", name="Erin Walsh")

        session.add_all([alice, bob, carol, dan, erin])
        await session.flush()

        print("   ✓ Alice Chen (System admin)")
        print("   ✓ Bob Martinez (Product owner, Checkout)")
        print("   ✓ Carol, Dan, Erin (Stakeholders)")

        # =================================================================
        # CREATE PRODUCTS
        # =================================================================
        print("\n📦 Creating products...")

        checkout = Product(name="Checkout", color_hex="#3366FF")
        search = Product(name="Search", color_hex="#22AA66")
        session.add_all([checkout, search])
        await session.flush()
        print(f"   ✓ {checkout.name}, {search.name}")

        # =================================================================
        # CREATE ROLE GRANTS
        # =================================================================
        print("\n🔗 Creating role grants...")

        session.add(SystemAdmin(user_id=alice.id))
        session.add(ProductOwner(product_id=checkout.id, user_id=bob.id))
        for user in (carol, dan, erin):
            session.add(
                ProductStakeholder(
                    product_id=checkout.id,
                    user_email=user.email,
                    user_name=user.name,
                    votes_allocated=settings.default_votes_allocated,
                )
            )
        session.add(
            ProductStakeholder(
                product_id=search.id,
                user_email=erin.email,
                user_name=erin.name,
                votes_allocated=settings.default_votes_allocated,
            )
        )
        await session.flush()
        print("   ✓ 1 system admin, 1 product owner, 4 stakeholder grants")

        # =================================================================
        # CREATE VOTING SESSIONS
        # =================================================================
        print("\n🗳️  Creating voting sessions...")

        q3 = VotingSession(
            product_id=checkout.id,
            title="Q3 Checkout priorities",
            goal="Pick the three checkout improvements for next quarter",
            votes_per_user=10,
            start_date=now - timedelta(days=2),
            end_date=now + timedelta(days=5),
            is_active=True,
            session_code="CHKQ3OPN",
            created_by=bob.id,
        )
        q2 = VotingSession(
            product_id=checkout.id,
            title="Q2 Checkout priorities",
            votes_per_user=5,
            start_date=now - timedelta(days=60),
            end_date=now - timedelta(days=40),
            is_active=False,
            session_code="CHKQ2END",
            created_by=bob.id,
        )
        discovery = VotingSession(
            product_id=search.id,
            title="Search discovery",
            goal="Which search gaps hurt the most?",
            votes_per_user=8,
            start_date=now + timedelta(days=7),
            end_date=now + timedelta(days=21),
            is_active=False,
            session_code="SRCHDISC",
            created_by=alice.id,
        )
        session.add_all([q3, q2, discovery])
        await session.flush()

        session.add(
            SessionStatusNote(
                session_id=q2.id,
                type=StatusNoteType.ENDED_EARLY,
                reason="Clear winner after the first week",
                actor_id=bob.id,
                actor_name=bob.name,
            )
        )
        print(f"   ✓ {q3.title} [OPEN] code {q3.session_code}")
        print(f"   ✓ {q2.title} [CLOSED, ended early]")
        print(f"   ✓ {discovery.title} [UPCOMING]")

        # =================================================================
        # CREATE FEATURES
        # =================================================================
        print("\n✨ Creating features...")

        def work_item(voting_session, item_id, title, epic):
            return Feature(
                session_id=voting_session.id,
                title=title,
                description=f"Feature #{item_id}",
                epic=epic,
                state="Active",
                tags=[epic],
                external_id=str(item_id),
                external_url=(
                    f"https://dev.azure.com/shop/web/_workitems/edit/{item_id}"
                ),
            )

        one_click = work_item(q3, 101, "One-click reorder", "Payments")
        gift_cards = work_item(q3, 102, "Gift cards", "Payments")
        saved_carts = work_item(q3, 103, "Saved carts", "Retention")
        guest = Feature(
            session_id=q3.id,
            title="Guest checkout without account",
            description="Entered by hand during the kickoff",
            epic="Conversion",
        )
        session.add_all(
            [
                one_click,
                gift_cards,
                saved_carts,
                guest,
                work_item(q2, 90, "Apple Pay", "Payments"),
                work_item(discovery, 201, "Typo tolerance", "Relevance"),
                work_item(discovery, 202, "Search suggestions", "Relevance"),
            ]
        )
        await session.flush()
        print("   ✓ 4 features in Q3, 1 in Q2, 2 in Search discovery")

        # =================================================================
        # CAST VOTES
        # =================================================================
        print("\n📊 Casting votes...")

        ledger = VoteLedger(session)
        ballots = {
            carol: {one_click.id: 4, gift_cards.id: 6},
            dan: {one_click.id: 2, saved_carts.id: 5, guest.id: 3},
        }
        for voter, allocations in ballots.items():
            budget = VoteBudget.from_allocations(
                q3,
                user_id=voter.id,
                user_name=voter.name,
                user_email=voter.email,
                allocations=allocations,
            )
            await budget.submit(ledger)
            print(f"   ✓ {voter.name} spent {q3.votes_per_user} votes")

        tallies = await ledger.tallies(q3.id)

        await session.commit()

    await engine.dispose()

    print("\n" + "=" * 60)
    print("✅ DATABASE SEEDED SUCCESSFULLY!")
    print("=" * 60)
    print(f"""
📊 Summary:
   • 5 Users: Alice (admin), Bob (owner), Carol, Dan, Erin
   • 2 Products: Checkout, Search
   • 3 Sessions: Q3 [OPEN], Q2 [CLOSED], Search discovery [UPCOMING]
   • Q3 tallies: One-click reorder {tallies.get(one_click.id, 0)}, \
Gift cards {tallies.get(gift_cards.id, 0)}, Saved carts {tallies.get(saved_carts.id, 0)}, \
Guest checkout {tallies.get(guest.id, 0)}

🧪 What you can test:
   1. Vote as Erin (X-Requester-Email: erin@shop.example) in code {q3.session_code}
   2. Try submitting fewer than 10 votes: the ballot is rejected
   3. Vote in the closed Q2 session: rejected as closed
   4. Reopen Q2 as Bob and watch is_active follow the new end date
""")


async def clear_database(session: AsyncSession):
    """Clear all data from the database (in correct order for FK constraints)."""
    tables = [
        "votes",
        "features",
        "session_status_notes",
        "voting_sessions",
        "product_stakeholders",
        "product_product_owners",
        "system_admins",
        "products",
        "users",
    ]

    for table in tables:
        await session.execute(text(f"DELETE FROM {table}"))

    await session.commit()
    print("   ✓ Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
