"""
Unit tests for bid scoring and ranking.
"""

import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from shift_dispatch.core.policy import BiddingPolicy
from shift_dispatch.services.bid_scorer import (
    BidScoreInputs,
    compute_bid_score,
    months_between,
    rank_bids,
    score,
)
from tests.fixtures.test_data import NOW, add_completed_shifts, make_driver, set_health


ROUTE_ID = uuid.uuid4()


def _inputs(health=0, completions=0, tenure=0, preferred=False):
    return BidScoreInputs(
        health_score=health,
        route_completions=completions,
        tenure_months=tenure,
        preferred_route_ids=[str(ROUTE_ID)] if preferred else [],
        route_id=ROUTE_ID,
    )


class TestComputeBidScore:
    """Tests for the weighted score formula."""

    def test_health_only(self):
        """A perfect health score alone is worth the health weight."""
        breakdown = compute_bid_score(_inputs(health=96), BiddingPolicy())
        assert breakdown.health == 1.0
        assert breakdown.total == 0.45

    def test_all_components_capped(self):
        """Every component saturates at 1, so the maximum score is 1.0."""
        breakdown = compute_bid_score(
            _inputs(health=120, completions=50, tenure=40, preferred=True),
            BiddingPolicy(),
        )
        assert breakdown.familiarity == 1.0
        assert breakdown.tenure == 1.0
        assert breakdown.total == 1.0

    def test_new_driver_scores_zero(self):
        assert compute_bid_score(_inputs(), BiddingPolicy()).total == 0.0

    def test_leader_and_tied_pair(self):
        """Seven route completions edge out four with otherwise equal drivers."""
        policy = BiddingPolicy()
        leader = compute_bid_score(_inputs(health=90, completions=7, tenure=12, preferred=True), policy)
        runner_up = compute_bid_score(_inputs(health=90, completions=4, tenure=12, preferred=True), policy)
        assert leader.total == 0.81
        assert runner_up.total == 0.77

    def test_preference_only_counts_top_routes(self):
        """Routes beyond the preference depth earn no bonus."""
        others = [str(uuid.uuid4()) for _ in range(3)]
        inputs = BidScoreInputs(
            health_score=0,
            route_completions=0,
            tenure_months=0,
            preferred_route_ids=others + [str(ROUTE_ID)],
            route_id=ROUTE_ID,
        )
        assert compute_bid_score(inputs, BiddingPolicy()).preference == 0.0
        assert compute_bid_score(inputs, BiddingPolicy(preference_top_n=4)).preference == 1.0

    def test_familiarity_is_monotonic(self):
        policy = BiddingPolicy()
        totals = [compute_bid_score(_inputs(completions=n), policy).total for n in range(0, 25, 5)]
        assert totals == sorted(totals)


class TestMonthsBetween:

    def test_whole_months(self):
        assert months_between(datetime(2025, 10, 1), datetime(2026, 3, 2)) == 5

    def test_partial_month_not_counted(self):
        assert months_between(datetime(2025, 10, 15), datetime(2025, 11, 14)) == 0

    def test_future_start_is_zero(self):
        assert months_between(datetime(2027, 1, 1), datetime(2026, 1, 1)) == 0


class TestRankBids:
    """Tests for bid ordering."""

    def test_score_then_bid_time(self):
        """Higher score first; equal scores go to the earlier bid."""
        t0 = datetime(2026, 2, 2, 15, 0)
        early = SimpleNamespace(id=uuid.uuid4(), score=0.77, bid_at=t0)
        late = SimpleNamespace(id=uuid.uuid4(), score=0.77, bid_at=t0 + timedelta(minutes=5))
        best = SimpleNamespace(id=uuid.uuid4(), score=0.81, bid_at=t0 + timedelta(minutes=10))

        assert rank_bids([late, early, best]) == [best, early, late]

    def test_identical_bids_ordered_by_id(self):
        t0 = datetime(2026, 2, 2, 15, 0)
        a = SimpleNamespace(id=uuid.UUID(int=1), score=0.5, bid_at=t0)
        b = SimpleNamespace(id=uuid.UUID(int=2), score=0.5, bid_at=t0)
        assert rank_bids([b, a]) == [a, b]


class TestScoreFromStore:
    """Score inputs read from the database."""

    async def test_score_reads_health_history_and_preferences(self, db_session, ctx, route):
        driver = make_driver(preferred_route_ids=[route.id])
        db_session.add(driver)
        await db_session.commit()
        await set_health(db_session, driver, 90)
        await add_completed_shifts(
            db_session, route, driver,
            [NOW.date() - timedelta(days=d) for d in range(1, 8)],
            ctx.calendar,
        )

        result = await score(db_session, ctx.policy.bidding, driver.id, route.id, NOW)
        assert result == 0.81

    async def test_unknown_driver(self, db_session, ctx, route):
        from shift_dispatch.core.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await score(db_session, ctx.policy.bidding, uuid.uuid4(), route.id, NOW)
