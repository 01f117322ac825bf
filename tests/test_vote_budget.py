"""
Tests for the Vote Budget - a stakeholder's pending allocation.

These tests verify:
1. INCREMENT / DECREMENT keep used_votes == sum(allocations) within the budget
2. SESSION GATING: increment and submit need an open session, decrement does not
3. SUBMIT: requires the full budget and writes nothing otherwise
4. FAILURE: a failed submission keeps the pending allocation intact
5. AUTO VOTES: the budget can follow the number of features in the session
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from feature_voting.models import Vote
from feature_voting.services import (
    BudgetExhausted,
    BudgetState,
    IncompleteAllocation,
    InvalidRequest,
    NothingToRemove,
    PersistenceFailure,
    SessionClosed,
    VoteBudget,
    VoteLedger,
    VotingService,
    auto_votes_per_user,
)

from .conftest import NOW, fixed_now


@dataclass
class FakeSession:
    id: UUID
    votes_per_user: int
    start_date: datetime
    end_date: datetime


def open_fake(votes_per_user: int = 10) -> FakeSession:
    return FakeSession(uuid4(), votes_per_user, NOW - timedelta(hours=1), NOW + timedelta(hours=1))


def closed_fake(votes_per_user: int = 10) -> FakeSession:
    return FakeSession(uuid4(), votes_per_user, NOW - timedelta(days=2), NOW - timedelta(days=1))


def make_budget(voting_session, user_id: UUID | None = None) -> VoteBudget:
    return VoteBudget(
        voting_session,
        user_id=user_id or uuid4(),
        user_name="Sam Stakeholder",
        user_email="sam@example.com",
        now=fixed_now,
    )


class FailingLedger:
    """Ledger whose writes always fail."""

    async def delete_votes_by_user(self, *args, **kwargs) -> int:
        return 0

    async def upsert_many(self, records) -> None:
        raise PersistenceFailure("connection reset")


# =============================================================================
# TEST: INCREMENT / DECREMENT
# =============================================================================


class TestAllocation:
    """Tests for increment and decrement."""

    def test_increment_adds_one_vote(self):
        budget = make_budget(open_fake())
        feature_id = uuid4()

        assert budget.increment(feature_id) == 1
        assert budget.increment(feature_id) == 2
        assert budget.used_votes == 2
        assert budget.remaining_votes == 8
        assert budget.state == BudgetState.ALLOCATING

    def test_increment_past_budget_raises(self):
        budget = make_budget(open_fake(votes_per_user=2))
        feature_id = uuid4()
        budget.increment(feature_id)
        budget.increment(feature_id)

        with pytest.raises(BudgetExhausted):
            budget.increment(uuid4())

        assert budget.used_votes == 2

    def test_decrement_removes_key_at_zero(self):
        budget = make_budget(open_fake())
        feature_id = uuid4()
        budget.increment(feature_id)

        assert budget.decrement(feature_id) == 0
        assert feature_id not in budget.pending_allocations
        assert budget.used_votes == 0
        assert budget.state == BudgetState.EMPTY

    def test_decrement_without_votes_raises(self):
        budget = make_budget(open_fake())

        with pytest.raises(NothingToRemove):
            budget.decrement(uuid4())

    def test_budget_invariant_under_random_sequences(self):
        """used_votes always equals the sum of allocations and stays in range."""
        rng = random.Random(42)
        budget = make_budget(open_fake(votes_per_user=7))
        feature_ids = [uuid4() for _ in range(4)]

        for _ in range(500):
            feature_id = rng.choice(feature_ids)
            try:
                if rng.random() < 0.6:
                    budget.increment(feature_id)
                else:
                    budget.decrement(feature_id)
            except (BudgetExhausted, NothingToRemove):
                pass

            assert budget.used_votes == sum(budget.pending_allocations.values())
            assert 0 <= budget.used_votes <= 7
            assert all(count > 0 for count in budget.pending_allocations.values())

    def test_non_positive_budget_is_rejected(self):
        with pytest.raises(InvalidRequest):
            make_budget(open_fake(votes_per_user=0))


# =============================================================================
# TEST: SESSION GATING
# =============================================================================


class TestSessionGating:
    """Closed sessions refuse new votes but allow corrections."""

    def test_increment_on_closed_session_raises(self):
        budget = make_budget(closed_fake())

        with pytest.raises(SessionClosed):
            budget.increment(uuid4())

    def test_decrement_allowed_after_close(self):
        voting_session = open_fake()
        budget = make_budget(voting_session)
        feature_id = uuid4()
        budget.increment(feature_id)

        voting_session.end_date = NOW - timedelta(minutes=1)

        assert budget.decrement(feature_id) == 0

    async def test_submit_on_closed_session_raises(self, session: AsyncSession):
        voting_session = open_fake(votes_per_user=1)
        budget = make_budget(voting_session)
        budget.increment(uuid4())
        voting_session.end_date = NOW - timedelta(minutes=1)

        with pytest.raises(SessionClosed):
            await budget.submit(VoteLedger(session))

        assert budget.used_votes == 1

    def test_session_bounds_are_inclusive(self):
        voting_session = FakeSession(uuid4(), 3, NOW, NOW)
        budget = make_budget(voting_session)

        assert budget.increment(uuid4()) == 1


# =============================================================================
# TEST: SUBMIT
# =============================================================================


class TestSubmit:
    """Tests for flushing a budget to the ledger."""

    async def test_incomplete_allocation_writes_nothing(
        self,
        session: AsyncSession,
        open_session,
        features,
        stakeholder,
    ):
        budget = make_budget(open_session, stakeholder.id)
        budget.increment(features[0].id)

        with pytest.raises(IncompleteAllocation) as exc_info:
            await budget.submit(VoteLedger(session))

        assert exc_info.value.used_votes == 1
        assert exc_info.value.votes_per_user == 10
        count = await session.scalar(select(func.count(Vote.id)))
        assert count == 0
        assert budget.state == BudgetState.ALLOCATING

    async def test_four_and_six_of_ten(
        self,
        session: AsyncSession,
        open_session,
        features,
        stakeholder,
    ):
        """4 votes on A and 6 on B produce exactly two records."""
        ledger = VoteLedger(session)
        a, b = features[0].id, features[1].id
        budget = VoteBudget.from_allocations(
            open_session,
            user_id=stakeholder.id,
            user_name=stakeholder.name,
            user_email=stakeholder.email,
            allocations={a: 4, b: 6},
            now=fixed_now,
        )

        records = await budget.submit(ledger)

        assert {(r.feature_id, r.vote_count) for r in records} == {(a, 4), (b, 6)}
        assert await ledger.total_votes(a) == 4
        assert await ledger.total_votes(b) == 6
        assert await ledger.total_votes(features[2].id) == 0
        assert budget.state == BudgetState.SUBMITTED
        assert budget.pending_allocations == {}

    async def test_submitted_budget_is_terminal(
        self,
        session: AsyncSession,
        open_session,
        features,
        stakeholder,
    ):
        budget = VoteBudget.from_allocations(
            open_session,
            stakeholder.id,
            stakeholder.name,
            stakeholder.email,
            {features[0].id: 10},
            now=fixed_now,
        )
        await budget.submit(VoteLedger(session))

        with pytest.raises(InvalidRequest):
            budget.increment(features[0].id)
        with pytest.raises(InvalidRequest):
            await budget.submit(VoteLedger(session))

    async def test_resubmission_replaces_previous_allocation(
        self,
        session: AsyncSession,
        open_session,
        features,
        stakeholder,
    ):
        ledger = VoteLedger(session)
        a, b, c = (f.id for f in features)
        first = VoteBudget.from_allocations(
            open_session, stakeholder.id, stakeholder.name, stakeholder.email,
            {a: 5, b: 5}, now=fixed_now,
        )
        await first.submit(ledger)

        second = VoteBudget.from_allocations(
            open_session, stakeholder.id, stakeholder.name, stakeholder.email,
            {a: 3, c: 7}, now=fixed_now,
        )
        await second.submit(ledger)

        assert await ledger.user_allocations(open_session.id, stakeholder.id) == {a: 3, c: 7}
        assert await ledger.total_votes(b) == 0

    async def test_failed_submission_keeps_allocation(self):
        voting_session = open_fake(votes_per_user=3)
        budget = make_budget(voting_session)
        feature_id = uuid4()
        for _ in range(3):
            budget.increment(feature_id)

        with pytest.raises(PersistenceFailure):
            await budget.submit(FailingLedger())

        assert budget.pending_allocations == {feature_id: 3}
        assert budget.used_votes == 3
        assert budget.state == BudgetState.ALLOCATING

    def test_from_allocations_rejects_negative_counts(self):
        with pytest.raises(InvalidRequest):
            VoteBudget.from_allocations(
                open_fake(), uuid4(), "Sam", "sam@example.com", {uuid4(): -1}, now=fixed_now
            )

    def test_from_allocations_over_budget_raises(self):
        with pytest.raises(BudgetExhausted):
            VoteBudget.from_allocations(
                open_fake(votes_per_user=3), uuid4(), "Sam", "sam@example.com",
                {uuid4(): 2, uuid4(): 2}, now=fixed_now,
            )


# =============================================================================
# TEST: AUTO VOTES
# =============================================================================


class TestAutoVotes:
    """Sessions whose budget is derived from their feature count."""

    def test_auto_votes_per_user(self):
        assert [auto_votes_per_user(n) for n in (0, 1, 3, 7, 10)] == [1, 1, 1, 3, 5]

    def test_explicit_budget_overrides_session(self):
        budget = VoteBudget(
            open_fake(votes_per_user=10),
            user_id=uuid4(),
            user_name="Sam",
            user_email="sam@example.com",
            now=fixed_now,
            votes_per_user=2,
        )
        feature_id = uuid4()
        budget.increment(feature_id)
        budget.increment(feature_id)

        assert budget.remaining_votes == 0
        with pytest.raises(BudgetExhausted):
            budget.increment(feature_id)

    async def test_ballot_follows_feature_count(
        self,
        session: AsyncSession,
        open_session,
        features,
        stakeholder,
    ):
        voting = VotingService(session, now=fixed_now)

        assert (await voting.get_ballot(open_session.id, stakeholder)).votes_per_user == 10

        open_session.use_auto_votes = True
        await session.flush()
        ballot = await voting.get_ballot(open_session.id, stakeholder)

        # three features leave one vote each
        assert ballot.votes_per_user == 1
        assert ballot.use_auto_votes is True
        with pytest.raises(BudgetExhausted):
            await voting.submit(open_session.id, stakeholder, {features[0].id: 10})

        records = await voting.submit(open_session.id, stakeholder, {features[0].id: 1})

        assert [(r.feature_id, r.vote_count) for r in records] == [(features[0].id, 1)]
