"""
Bid Window Manager.

Opens bid windows on vacant (unfilled) assignments, accepts bids and resolves
windows to exactly one winner.

Mode rules:
- emergency: no-show replacement; short fixed window plus pay bonus
- competitive: more than the instant cutoff before shift start; closes at
  shift start minus the cutoff and picks the best-scoring bid
- instant: inside the cutoff; the first accepted bid wins

Single-winner safety comes from the store, not from process locks: the window
is claimed with a conditional UPDATE guarded on `status = 'open'`, and partial
unique indexes forbid a second open window per assignment, a second pending
bid per driver per day and a second live assignment per driver per day.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, update, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.core.errors import ConflictError, DomainValidationError, NotFoundError
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import (
    Assignment,
    AssignmentStatus,
    AssignedBy,
    Bid,
    BidStatus,
    BidWindow,
    BidWindowMode,
    BidWindowStatus,
    Driver,
    HealthState,
    NotificationType,
    Warehouse,
)
from shift_dispatch.services import assignment_lifecycle as lifecycle
from shift_dispatch.services import performance
from shift_dispatch.services.audit import record_audit
from shift_dispatch.services.bid_scorer import rank_bids, score
from shift_dispatch.services.context import DispatchContext

logger = logging.getLogger(__name__)


@dataclass
class ResolutionOutcome:
    window: BidWindow
    winner: Optional[Bid] = None
    bids: List[Bid] = field(default_factory=list)
    # False when the window was already resolved/closed and nothing changed
    changed: bool = True


@dataclass
class BidPlacement:
    bid: Bid
    window: BidWindow
    resolution: Optional[ResolutionOutcome] = None


@dataclass
class CancellationOutcome:
    vacancy: lifecycle.Vacancy
    window: Optional[BidWindow] = None


# =============================================================================
# Queries
# =============================================================================

async def get_window(
    db: AsyncSession,
    window_id: uuid.UUID,
    for_update: bool = False,
) -> BidWindow:
    stmt = select(BidWindow).where(BidWindow.id == window_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    window = result.scalar_one_or_none()
    if window is None:
        raise NotFoundError("BidWindow", window_id)
    return window


async def list_bids(db: AsyncSession, window_id: uuid.UUID) -> List[Bid]:
    result = await db.execute(
        select(Bid)
        .where(Bid.bid_window_id == window_id)
        .order_by(Bid.bid_at.asc(), Bid.id.asc())
    )
    return list(result.scalars().all())


async def get_bid(db: AsyncSession, bid_id: uuid.UUID) -> Bid:
    bid = await db.get(Bid, bid_id)
    if bid is None:
        raise NotFoundError("Bid", bid_id)
    return bid


async def get_open_window_for_assignment(
    db: AsyncSession,
    assignment_id: uuid.UUID,
) -> Optional[BidWindow]:
    result = await db.execute(
        select(BidWindow).where(
            BidWindow.assignment_id == assignment_id,
            BidWindow.status == BidWindowStatus.OPEN,
        )
    )
    return result.scalar_one_or_none()


async def has_live_assignment(
    db: AsyncSession,
    driver_id: uuid.UUID,
    on_date: date,
) -> bool:
    """Driver already holds a non-cancelled assignment that day."""
    result = await db.execute(
        select(Assignment.id).where(
            Assignment.driver_id == driver_id,
            Assignment.date == on_date,
            Assignment.status != AssignmentStatus.CANCELLED,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _eligible_driver_ids(db: AsyncSession, on_date: date) -> List[uuid.UUID]:
    """Active, pool-eligible, unflagged drivers under their weekly cap and free that day."""
    busy = (
        select(Assignment.driver_id)
        .where(
            Assignment.date == on_date,
            Assignment.driver_id.is_not(None),
            Assignment.status != AssignmentStatus.CANCELLED,
        )
    )
    result = await db.execute(
        select(Driver.id, Driver.weekly_cap)
        .outerjoin(HealthState, HealthState.driver_id == Driver.id)
        .where(
            Driver.is_active.is_(True),
            Driver.is_flagged.is_(False),
            or_(HealthState.driver_id.is_(None), HealthState.pool_eligible.is_(True)),
            Driver.id.not_in(busy),
        )
        .order_by(Driver.id)
    )
    candidates = result.all()
    counts = await performance.weekly_assignment_counts(db, [c.id for c in candidates], on_date)
    return [c.id for c in candidates if counts.get(c.id, 0) < c.weekly_cap]


# =============================================================================
# Opening
# =============================================================================

def window_terms(
    ctx: DispatchContext,
    shift_date: date,
    emergency: bool = False,
) -> Tuple[BidWindowMode, datetime, int]:
    """Mode, closing instant and pay bonus for a window opened now."""
    now = ctx.now()
    bidding = ctx.policy.bidding
    if emergency:
        return (
            BidWindowMode.EMERGENCY,
            now + timedelta(minutes=bidding.emergency_window_minutes),
            bidding.emergency_bonus_percent,
        )

    shift_start = ctx.calendar.shift_start(shift_date)
    if ctx.calendar.hours_until_shift(shift_date, now) > bidding.instant_mode_cutoff_hours:
        return (
            BidWindowMode.COMPETITIVE,
            shift_start - timedelta(hours=bidding.instant_mode_cutoff_hours),
            0,
        )
    return BidWindowMode.INSTANT, shift_start, 0


async def open_window(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    trigger: Optional[str] = None,
    emergency: bool = False,
    allow_past_shift: bool = False,
) -> BidWindow:
    """
    Open a bid window on an unfilled assignment.

    Args:
        uow: Unit of work
        ctx: Dispatch context
        assignment_id: Unfilled assignment to fill
        trigger: Free-form cause recorded on the window
        emergency: Open an emergency window with pay bonus
        allow_past_shift: Permit opening after shift start (emergency cover)

    Returns:
        The new open BidWindow

    Raises:
        DomainValidationError: assignment not unfilled, or shift already started
        ConflictError: another open window exists for the assignment
    """
    db = uow.session
    assignment = await lifecycle.get_assignment(db, assignment_id, for_update=True)
    if assignment.status != AssignmentStatus.UNFILLED:
        raise DomainValidationError(
            f"Bid windows open only on unfilled assignments (status is {assignment.status.value})"
        )

    now = ctx.now()
    if now >= ctx.calendar.shift_start(assignment.date) and not allow_past_shift:
        raise DomainValidationError("Shift has already started")

    if await get_open_window_for_assignment(db, assignment.id) is not None:
        raise ConflictError("An open bid window already exists for this assignment")

    mode, closes_at, bonus = window_terms(ctx, assignment.date, emergency=emergency)
    window = BidWindow(
        assignment_id=assignment.id,
        mode=mode,
        status=BidWindowStatus.OPEN,
        trigger=trigger,
        pay_bonus_percent=bonus,
        opens_at=now,
        closes_at=closes_at,
    )
    db.add(window)
    try:
        await db.flush()
    except IntegrityError as e:
        raise ConflictError("An open bid window already exists for this assignment") from e

    record_audit(db, "bid_window", window.id, "open", changes={
        "assignment_id": assignment.id,
        "mode": mode,
        "trigger": trigger,
        "closes_at": closes_at,
    })

    notification_type = (
        NotificationType.EMERGENCY_ROUTE_AVAILABLE if emergency
        else NotificationType.BID_WINDOW_OPENED
    )
    for driver_id in await _eligible_driver_ids(db, assignment.date):
        ctx.notify(uow, driver_id, notification_type, {
            "bid_window_id": window.id,
            "assignment_id": assignment.id,
            "route_id": assignment.route_id,
            "date": assignment.date,
            "mode": mode,
            "closes_at": closes_at,
            "pay_bonus_percent": bonus,
        })

    logger.info(
        f"Opened {mode.value} bid window {window.id} for assignment {assignment.id} "
        f"(trigger={trigger}, closes_at={closes_at})"
    )
    return window


# =============================================================================
# Bidding
# =============================================================================

async def place_bid(
    uow: UnitOfWork,
    ctx: DispatchContext,
    window_id: uuid.UUID,
    driver_id: uuid.UUID,
) -> BidPlacement:
    """
    Record a driver's bid; instant and emergency windows resolve on the spot.

    Raises:
        DomainValidationError: window closed, driver ineligible or double-booked
        ConflictError: window already resolved by a concurrent bid
    """
    db = uow.session
    window = await get_window(db, window_id, for_update=True)
    if window.status == BidWindowStatus.RESOLVED:
        raise ConflictError("Bid window already resolved")
    if window.status != BidWindowStatus.OPEN:
        raise DomainValidationError("Bid window is closed")

    now = ctx.now()
    if now > window.closes_at:
        raise DomainValidationError("Bid window has closed")

    driver = await db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver", driver_id)
    if not driver.is_active:
        raise DomainValidationError("Driver is not active")
    state = await db.get(HealthState, driver_id)
    if state is not None and not state.pool_eligible:
        raise DomainValidationError("Driver is not eligible for the bid pool")

    assignment = await lifecycle.get_assignment(db, window.assignment_id)

    existing = await db.execute(
        select(Bid.id).where(Bid.bid_window_id == window.id, Bid.driver_id == driver_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise DomainValidationError("Driver has already bid on this window")
    if await has_live_assignment(db, driver_id, assignment.date):
        raise DomainValidationError("Driver already has an assignment on this date")
    if driver.is_flagged:
        raise DomainValidationError("Driver is flagged for low attendance")
    if not await performance.can_take_assignment(db, driver, assignment.date):
        raise DomainValidationError("Driver has reached their weekly assignment cap")
    pending = await db.execute(
        select(Bid.id).where(
            Bid.driver_id == driver_id,
            Bid.assignment_date == assignment.date,
            Bid.status == BidStatus.PENDING,
        )
    )
    if pending.scalar_one_or_none() is not None:
        raise DomainValidationError("Driver already has a pending bid on this date")

    bid = Bid(
        bid_window_id=window.id,
        assignment_id=assignment.id,
        assignment_date=assignment.date,
        driver_id=driver_id,
        score=await score(db, ctx.policy.bidding, driver_id, assignment.route_id, now),
        status=BidStatus.PENDING,
        bid_at=now,
        window_closes_at=window.closes_at,
    )
    db.add(bid)
    try:
        await db.flush()
    except IntegrityError as e:
        raise ConflictError("Driver already has a pending bid for this window or date") from e

    logger.info(f"Driver {driver_id} bid {bid.score} on window {window.id} ({window.mode.value})")

    resolution = None
    if window.mode in (BidWindowMode.INSTANT, BidWindowMode.EMERGENCY):
        resolution = await resolve_window(uow, ctx, window.id)
    return BidPlacement(bid=bid, window=window, resolution=resolution)


# =============================================================================
# Resolution
# =============================================================================

async def claim_window(
    db: AsyncSession,
    window_id: uuid.UUID,
    status: BidWindowStatus,
    now: datetime,
    winner_id: Optional[uuid.UUID] = None,
) -> None:
    """
    Move an open window to a terminal status, or fail if someone got there first.

    Raises:
        ConflictError: the window was no longer open
    """
    result = await db.execute(
        update(BidWindow)
        .where(and_(BidWindow.id == window_id, BidWindow.status == BidWindowStatus.OPEN))
        .values(status=status, winner_id=winner_id, resolved_at=now)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise ConflictError("Bid window already resolved")


async def _alert_unfilled(uow: UnitOfWork, ctx: DispatchContext, window: BidWindow,
                          assignment: Assignment) -> None:
    warehouse = await uow.session.get(Warehouse, assignment.warehouse_id)
    if warehouse is None or warehouse.manager_id is None:
        logger.warning(f"Bid window {window.id} closed unfilled; no manager to alert")
        return
    ctx.notify(uow, warehouse.manager_id, NotificationType.BID_WINDOW_UNFILLED, {
        "bid_window_id": window.id,
        "assignment_id": assignment.id,
        "route_id": assignment.route_id,
        "date": assignment.date,
    })


async def resolve_window(
    uow: UnitOfWork,
    ctx: DispatchContext,
    window_id: uuid.UUID,
) -> ResolutionOutcome:
    """
    Pick the winner of a window and assign the shift to them.

    Idempotent: a window that is already resolved or closed is returned as-is.
    Scores are refreshed, bids ranked by score then bid time, and bidders who
    have since taken another assignment that day, been flagged or hit their
    weekly cap are passed over. No eligible bid closes the window and leaves
    the assignment unfilled.
    """
    db = uow.session
    window = await get_window(db, window_id, for_update=True)
    if window.status != BidWindowStatus.OPEN:
        bids = await list_bids(db, window.id)
        winner = next((b for b in bids if b.status == BidStatus.WON), None)
        return ResolutionOutcome(window=window, winner=winner, bids=bids, changed=False)

    now = ctx.now()
    assignment = await lifecycle.get_assignment(db, window.assignment_id, for_update=True)
    bids = [b for b in await list_bids(db, window.id) if b.status == BidStatus.PENDING]

    for bid in bids:
        bid.score = await score(db, ctx.policy.bidding, bid.driver_id, assignment.route_id, now)

    winner: Optional[Bid] = None
    if assignment.status == AssignmentStatus.UNFILLED:
        for bid in rank_bids(bids):
            if await has_live_assignment(db, bid.driver_id, assignment.date):
                continue
            bidder = await db.get(Driver, bid.driver_id)
            if bidder is not None and await performance.can_take_assignment(db, bidder, assignment.date):
                winner = bid
                break

    if winner is None:
        await claim_window(db, window.id, BidWindowStatus.CLOSED, now)
        for bid in bids:
            bid.status = BidStatus.LOST
            bid.resolved_at = now
        record_audit(db, "bid_window", window.id, "close", changes={"bids": len(bids)})
        await _alert_unfilled(uow, ctx, window, assignment)
        await db.flush()
        logger.info(f"Bid window {window.id} closed without a winner ({len(bids)} bids)")
        return ResolutionOutcome(window=window, winner=None, bids=bids)

    await claim_window(db, window.id, BidWindowStatus.RESOLVED, now, winner_id=winner.driver_id)
    for bid in bids:
        bid.status = BidStatus.WON if bid.id == winner.id else BidStatus.LOST
        bid.resolved_at = now

    assignment.driver_id = winner.driver_id
    assignment.status = AssignmentStatus.SCHEDULED
    assignment.assigned_by = AssignedBy.BID
    assignment.assigned_at = now
    # Bidding for the shift is the driver's confirmation
    assignment.confirmed_at = now
    record_audit(db, "assignment", assignment.id, "assign", changes={
        "driver_id": winner.driver_id,
        "assigned_by": AssignedBy.BID,
        "bid_window_id": window.id,
    })
    await db.flush()

    payload = {
        "bid_window_id": window.id,
        "assignment_id": assignment.id,
        "route_id": assignment.route_id,
        "date": assignment.date,
    }
    ctx.notify(uow, winner.driver_id, NotificationType.BID_WON,
               {**payload, "pay_bonus_percent": window.pay_bonus_percent})
    for bid in bids:
        if bid.id != winner.id:
            ctx.notify(uow, bid.driver_id, NotificationType.BID_LOST, payload)

    logger.info(
        f"Bid window {window.id} resolved: winner {winner.driver_id} "
        f"(score={winner.score}, {len(bids)} bids)"
    )
    return ResolutionOutcome(window=window, winner=winner, bids=bids)


# =============================================================================
# Composite transitions
# =============================================================================

async def cancel_and_reopen(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
    reason: Optional[str] = None,
) -> CancellationOutcome:
    """Driver cancellation plus the replacement window, as one unit of work."""
    vacancy = await lifecycle.cancel_assignment(uow, ctx, assignment_id, driver_id, reason)
    window = None
    if vacancy.replacement is not None:
        window = await open_window(uow, ctx, vacancy.replacement.id, trigger="cancellation")
    return CancellationOutcome(vacancy=vacancy, window=window)


async def assign_manually(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
    manager_id: uuid.UUID,
) -> Assignment:
    """Manager fills an unfilled assignment directly, closing any open window on it."""
    db = uow.session
    assignment = await lifecycle.get_assignment(db, assignment_id, for_update=True)
    if assignment.status != AssignmentStatus.UNFILLED:
        raise DomainValidationError("Only unfilled assignments can be assigned manually")

    driver = await db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver", driver_id)
    if not driver.is_active:
        raise DomainValidationError("Driver is not active")
    if await has_live_assignment(db, driver_id, assignment.date):
        raise DomainValidationError("Driver already has an assignment on this date")

    now = ctx.now()
    window = await get_open_window_for_assignment(db, assignment.id)
    if window is not None:
        await claim_window(db, window.id, BidWindowStatus.CLOSED, now)
        for bid in await list_bids(db, window.id):
            if bid.status == BidStatus.PENDING:
                bid.status = BidStatus.LOST
                bid.resolved_at = now

    assignment.driver_id = driver_id
    assignment.status = AssignmentStatus.SCHEDULED
    assignment.assigned_by = AssignedBy.MANAGER
    assignment.assigned_at = now
    if now >= ctx.calendar.confirmation_deadline(assignment.date):
        assignment.confirmed_at = now

    record_audit(db, "assignment", assignment.id, "assign", actor_id=manager_id, changes={
        "driver_id": driver_id,
        "assigned_by": AssignedBy.MANAGER,
    })
    await db.flush()
    return assignment
