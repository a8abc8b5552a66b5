"""
Bid Scorer.

Ranks bidders for a route as a weighted sum of four components, each
normalized to [0, 1]:

    score = health * w_h + familiarity * w_f + tenure * w_s + preference * w_p

- health: current health score / health cap
- familiarity: completed shifts on this route / familiarity cap
- tenure: months since account creation / tenure cap
- preference: 1 when the route is among the driver's top preferred routes
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.core.errors import NotFoundError
from shift_dispatch.core.policy import BiddingPolicy
from shift_dispatch.models import Assignment, AssignmentStatus, Driver, HealthState


@dataclass
class BidScoreInputs:
    health_score: int
    route_completions: int
    tenure_months: int
    preferred_route_ids: Sequence[str]
    route_id: uuid.UUID


@dataclass
class BidScoreBreakdown:
    """Normalized components and weighted total."""
    health: float
    familiarity: float
    tenure: float
    preference: float
    total: float


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def months_between(start: datetime, end: datetime) -> int:
    """Whole calendar months elapsed from `start` to `end`."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(0, months)


def compute_bid_score(inputs: BidScoreInputs, policy: BiddingPolicy) -> BidScoreBreakdown:
    """
    Combine score components into a ranking score.

    Args:
        inputs: Raw driver facts for the route
        policy: Bidding policy (caps, weights, preference depth)

    Returns:
        BidScoreBreakdown with the total rounded to two decimals
    """
    weights = policy.weights
    health = _clamp01(inputs.health_score / policy.health_normalization_cap)
    familiarity = _clamp01(inputs.route_completions / policy.familiarity_normalization_cap)
    tenure = _clamp01(inputs.tenure_months / policy.seniority_cap_months)
    top_routes = [str(r) for r in list(inputs.preferred_route_ids)[:policy.preference_top_n]]
    preference = 1.0 if str(inputs.route_id) in top_routes else 0.0

    total = (
        health * weights.health
        + familiarity * weights.familiarity
        + tenure * weights.seniority
        + preference * weights.preference
    )
    return BidScoreBreakdown(
        health=round(health, 4),
        familiarity=round(familiarity, 4),
        tenure=round(tenure, 4),
        preference=preference,
        total=round(total, 2),
    )


async def load_score_inputs(
    db: AsyncSession,
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    now: datetime,
) -> BidScoreInputs:
    """Read the driver facts the scorer needs."""
    driver = await db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver", driver_id)

    state = await db.get(HealthState, driver_id)
    completions = await db.execute(
        select(func.count(Assignment.id)).where(
            Assignment.driver_id == driver_id,
            Assignment.route_id == route_id,
            Assignment.status == AssignmentStatus.COMPLETED,
        )
    )

    return BidScoreInputs(
        health_score=state.current_score if state else 0,
        route_completions=completions.scalar_one(),
        tenure_months=months_between(driver.created_at, now),
        preferred_route_ids=driver.preferred_route_ids or [],
        route_id=route_id,
    )


async def score(
    db: AsyncSession,
    policy: BiddingPolicy,
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    now: datetime,
) -> float:
    """Ranking score of a driver for a route."""
    inputs = await load_score_inputs(db, driver_id, route_id, now)
    return compute_bid_score(inputs, policy).total


def rank_bids(bids: Sequence) -> List:
    """
    Order bids best first: score descending, then earliest bid, then id.

    Ties on score go to whoever bid first; the id makes the order total.
    """
    return sorted(bids, key=lambda b: (-(b.score or 0.0), b.bid_at, str(b.id)))
