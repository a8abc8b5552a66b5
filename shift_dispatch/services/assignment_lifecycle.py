"""
Assignment Lifecycle.

State machine for a single assignment:

    unfilled -> scheduled -> active -> completed
                scheduled | active -> cancelled

Every transition loads the assignment row for update, checks its guards and
raises DomainValidationError naming the guard that failed. Transitions only
stage changes on the unit of work; the caller's UnitOfWork commits them.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.core.errors import DomainValidationError, NotFoundError
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import (
    Assignment,
    AssignmentStatus,
    CancelType,
    Shift,
)
from shift_dispatch.services.audit import record_audit
from shift_dispatch.services.context import DispatchContext

logger = logging.getLogger(__name__)


@dataclass
class Vacancy:
    """A cancelled assignment and the unfilled replacement created for its route/date."""
    cancelled: Assignment
    replacement: Optional[Assignment] = None


# =============================================================================
# Loading helpers
# =============================================================================

async def get_assignment(
    db: AsyncSession,
    assignment_id: uuid.UUID,
    for_update: bool = False,
) -> Assignment:
    stmt = select(Assignment).where(Assignment.id == assignment_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFoundError("Assignment", assignment_id)
    return assignment


async def get_shift(db: AsyncSession, assignment_id: uuid.UUID) -> Optional[Shift]:
    result = await db.execute(select(Shift).where(Shift.assignment_id == assignment_id))
    return result.scalar_one_or_none()


def _require_owner(assignment: Assignment, driver_id: uuid.UUID) -> None:
    if assignment.driver_id != driver_id:
        raise DomainValidationError("Assignment does not belong to this driver")


def _require_status(assignment: Assignment, *allowed: AssignmentStatus, action: str) -> None:
    if assignment.status not in allowed:
        names = " or ".join(s.value for s in allowed)
        raise DomainValidationError(
            f"Cannot {action}: assignment is {assignment.status.value}, expected {names}"
        )


def validate_parcel_counts(
    parcels_start: int,
    parcels_returned: int,
    excepted_returns: int,
    exception_notes: Optional[str],
) -> None:
    """Raise DomainValidationError unless the counts describe a valid shift outcome."""
    if parcels_start < 0 or parcels_returned < 0 or excepted_returns < 0:
        raise DomainValidationError("Parcel counts cannot be negative")
    if parcels_returned > parcels_start:
        raise DomainValidationError("Parcels returned cannot exceed parcels started")
    if excepted_returns > parcels_returned:
        raise DomainValidationError("Excepted returns cannot exceed parcels returned")
    if excepted_returns > 0 and not (exception_notes or "").strip():
        raise DomainValidationError("Exception notes are required when returns are excepted")


# =============================================================================
# Driver transitions
# =============================================================================

async def confirm_assignment(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
) -> Assignment:
    """Driver confirms an upcoming shift inside its confirmation window."""
    assignment = await get_assignment(uow.session, assignment_id, for_update=True)
    _require_owner(assignment, driver_id)
    _require_status(assignment, AssignmentStatus.SCHEDULED, action="confirm")
    if assignment.confirmed_at is not None:
        raise DomainValidationError("Assignment is already confirmed")

    now = ctx.now()
    if now < ctx.calendar.confirmation_opens(assignment.date):
        raise DomainValidationError("Confirmation window has not opened yet")
    if now > ctx.calendar.confirmation_deadline(assignment.date):
        raise DomainValidationError("Confirmation deadline has passed")

    assignment.confirmed_at = now
    record_audit(
        uow.session, "assignment", assignment.id, "confirm",
        actor_id=driver_id,
        changes={"before": {"confirmed_at": None}, "after": {"confirmed_at": now}},
    )
    await uow.session.flush()
    logger.info(f"Assignment {assignment.id} confirmed by driver {driver_id}")
    return assignment


async def arrive(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
) -> Shift:
    """Driver checks in at the warehouse on the shift day."""
    db = uow.session
    assignment = await get_assignment(db, assignment_id, for_update=True)
    _require_owner(assignment, driver_id)
    _require_status(assignment, AssignmentStatus.SCHEDULED, action="arrive")
    if assignment.confirmed_at is None:
        raise DomainValidationError("Shift must be confirmed before arrival")

    now = ctx.now()
    if assignment.date != ctx.today():
        raise DomainValidationError("Can only arrive for today's shift")
    if now < ctx.calendar.arrival_opens(assignment.date):
        raise DomainValidationError("Too early to check in for this shift")
    if now >= ctx.calendar.arrival_deadline_for(assignment.date, assignment.assigned_at):
        raise DomainValidationError("Arrival deadline has passed")

    shift = await get_shift(db, assignment.id)
    if shift is None:
        shift = Shift(assignment_id=assignment.id)
        db.add(shift)
    elif shift.arrived_at is not None:
        raise DomainValidationError("Already arrived for this shift")

    shift.arrived_at = now
    assignment.status = AssignmentStatus.ACTIVE
    record_audit(db, "assignment", assignment.id, "arrive", actor_id=driver_id,
                 changes={"arrived_at": now})
    await db.flush()
    return shift


async def record_inventory(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
    parcels_start: int,
) -> Shift:
    """Driver records the parcel count loaded at the start of the shift."""
    db = uow.session
    assignment = await get_assignment(db, assignment_id, for_update=True)
    _require_owner(assignment, driver_id)
    _require_status(assignment, AssignmentStatus.ACTIVE, action="record inventory")
    if parcels_start < 0:
        raise DomainValidationError("Parcels start cannot be negative")

    shift = await get_shift(db, assignment.id)
    if shift is None or shift.arrived_at is None:
        raise DomainValidationError("Must arrive before recording inventory")
    if shift.parcels_start is not None:
        raise DomainValidationError("Inventory already recorded for this shift")

    shift.parcels_start = parcels_start
    shift.started_at = ctx.now()
    await db.flush()
    return shift


async def complete_shift(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
    parcels_returned: int,
    excepted_returns: int = 0,
    exception_notes: Optional[str] = None,
) -> Shift:
    """Driver closes out the shift; counts stay editable for a short window."""
    db = uow.session
    assignment = await get_assignment(db, assignment_id, for_update=True)
    _require_owner(assignment, driver_id)
    _require_status(assignment, AssignmentStatus.ACTIVE, action="complete")

    shift = await get_shift(db, assignment.id)
    if shift is None or shift.parcels_start is None:
        raise DomainValidationError("Inventory must be recorded before completing")
    validate_parcel_counts(shift.parcels_start, parcels_returned, excepted_returns, exception_notes)

    now = ctx.now()
    shift.parcels_returned = parcels_returned
    shift.parcels_delivered = shift.parcels_start - parcels_returned
    shift.excepted_returns = excepted_returns
    shift.exception_notes = exception_notes.strip() if exception_notes else None
    shift.completed_at = now
    shift.editable_until = ctx.calendar.edit_window(now)
    assignment.status = AssignmentStatus.COMPLETED

    record_audit(db, "assignment", assignment.id, "complete", actor_id=driver_id, changes={
        "parcels_start": shift.parcels_start,
        "parcels_delivered": shift.parcels_delivered,
        "parcels_returned": parcels_returned,
        "excepted_returns": excepted_returns,
    })
    await db.flush()
    return shift


async def edit_shift(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
    parcels_start: Optional[int] = None,
    parcels_returned: Optional[int] = None,
    excepted_returns: Optional[int] = None,
    exception_notes: Optional[str] = None,
) -> Shift:
    """Driver corrects a completed shift's counts while the edit window is open."""
    db = uow.session
    assignment = await get_assignment(db, assignment_id, for_update=True)
    _require_owner(assignment, driver_id)
    _require_status(assignment, AssignmentStatus.COMPLETED, action="edit")

    shift = await get_shift(db, assignment.id)
    if shift is None or shift.editable_until is None:
        raise DomainValidationError("Shift has no editable completion")
    if ctx.now() >= shift.editable_until:
        raise DomainValidationError("Edit window has closed")

    start = shift.parcels_start if parcels_start is None else parcels_start
    returned = shift.parcels_returned if parcels_returned is None else parcels_returned
    excepted = shift.excepted_returns if excepted_returns is None else excepted_returns
    notes = shift.exception_notes if exception_notes is None else exception_notes
    validate_parcel_counts(start, returned, excepted, notes)

    before = {
        "parcels_start": shift.parcels_start,
        "parcels_returned": shift.parcels_returned,
        "excepted_returns": shift.excepted_returns,
    }
    shift.parcels_start = start
    shift.parcels_returned = returned
    shift.parcels_delivered = start - returned
    shift.excepted_returns = excepted
    shift.exception_notes = notes.strip() if notes else None
    record_audit(db, "assignment", assignment.id, "edit_completion", actor_id=driver_id,
                 changes={"before": before, "after": {
                     "parcels_start": start,
                     "parcels_returned": returned,
                     "excepted_returns": excepted,
                 }})
    await db.flush()
    return shift


# =============================================================================
# Cancellation
# =============================================================================

async def vacate(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment: Assignment,
    cancel_type: CancelType,
    actor_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
) -> Vacancy:
    """
    Cancel an assignment and create its unfilled replacement.

    The replacement is only created while the shift can still be covered:
    before shift start, or always for a no-show (covered by an emergency window).
    """
    db = uow.session
    now = ctx.now()
    previous_status = assignment.status

    assignment.status = AssignmentStatus.CANCELLED
    assignment.cancel_type = cancel_type
    assignment.cancelled_at = now

    shift = await get_shift(db, assignment.id)
    if shift is not None:
        shift.cancelled_at = now
        shift.cancel_reason = reason
    elif reason:
        db.add(Shift(assignment_id=assignment.id, cancelled_at=now, cancel_reason=reason))

    replacement = None
    if cancel_type == CancelType.NO_SHOW or now < ctx.calendar.shift_start(assignment.date):
        replacement = Assignment(
            route_id=assignment.route_id,
            warehouse_id=assignment.warehouse_id,
            driver_id=None,
            date=assignment.date,
            status=AssignmentStatus.UNFILLED,
        )
        db.add(replacement)

    record_audit(db, "assignment", assignment.id, "cancel", actor_id=actor_id, changes={
        "before": {"status": previous_status},
        "after": {"status": AssignmentStatus.CANCELLED, "cancel_type": cancel_type},
        "reason": reason,
    })
    await db.flush()
    logger.info(
        f"Assignment {assignment.id} cancelled ({cancel_type.value}); "
        f"replacement={replacement.id if replacement else None}"
    )
    return Vacancy(cancelled=assignment, replacement=replacement)


async def cancel_assignment(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
    driver_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Vacancy:
    """Driver cancels; cancelling a confirmed shift counts as a late cancellation."""
    assignment = await get_assignment(uow.session, assignment_id, for_update=True)
    _require_owner(assignment, driver_id)
    _require_status(assignment, AssignmentStatus.SCHEDULED, AssignmentStatus.ACTIVE, action="cancel")

    cancel_type = CancelType.LATE if assignment.confirmed_at is not None else CancelType.DRIVER
    return await vacate(uow, ctx, assignment, cancel_type, actor_id=driver_id, reason=reason)


# =============================================================================
# System transitions
# =============================================================================

def is_auto_drop_candidate(assignment: Assignment, ctx: DispatchContext) -> bool:
    return (
        assignment.status == AssignmentStatus.SCHEDULED
        and assignment.driver_id is not None
        and assignment.confirmed_at is None
        and ctx.now() >= ctx.calendar.confirmation_deadline(assignment.date)
    )


def is_no_show_candidate(
    assignment: Assignment,
    shift: Optional[Shift],
    ctx: DispatchContext,
) -> bool:
    """Confirmed, still scheduled, arrival deadline passed and never arrived."""
    return (
        assignment.status == AssignmentStatus.SCHEDULED
        and assignment.driver_id is not None
        and assignment.confirmed_at is not None
        and ctx.now() >= ctx.calendar.arrival_deadline_for(assignment.date, assignment.assigned_at)
        and (shift is None or shift.arrived_at is None)
    )


async def auto_drop(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
) -> Optional[Vacancy]:
    """Drop an unconfirmed assignment past its deadline; None if no longer eligible."""
    assignment = await get_assignment(uow.session, assignment_id, for_update=True)
    if not is_auto_drop_candidate(assignment, ctx):
        return None
    return await vacate(uow, ctx, assignment, CancelType.AUTO_DROP,
                        reason="Not confirmed before deadline")


async def mark_no_show(
    uow: UnitOfWork,
    ctx: DispatchContext,
    assignment_id: uuid.UUID,
) -> Optional[Vacancy]:
    """Record a no-show; None if the assignment no longer meets the criterion."""
    assignment = await get_assignment(uow.session, assignment_id, for_update=True)
    shift = await get_shift(uow.session, assignment.id)
    if not is_no_show_candidate(assignment, shift, ctx):
        return None
    return await vacate(uow, ctx, assignment, CancelType.NO_SHOW, reason="No-show")


# =============================================================================
# Candidate queries for periodic jobs
# =============================================================================

async def find_auto_drop_candidates(db: AsyncSession, ctx: DispatchContext) -> List[uuid.UUID]:
    horizon = ctx.calendar.local_date(
        ctx.now() + timedelta(hours=ctx.policy.confirmation.deadline_hours_before_shift)
    )
    result = await db.execute(
        select(Assignment)
        .where(
            Assignment.status == AssignmentStatus.SCHEDULED,
            Assignment.driver_id.is_not(None),
            Assignment.confirmed_at.is_(None),
            Assignment.date <= horizon,
        )
        .order_by(Assignment.date.asc(), Assignment.id.asc())
    )
    return [a.id for a in result.scalars().all() if is_auto_drop_candidate(a, ctx)]


async def find_no_show_candidates(db: AsyncSession, ctx: DispatchContext) -> List[uuid.UUID]:
    result = await db.execute(
        select(Assignment, Shift)
        .outerjoin(Shift, Shift.assignment_id == Assignment.id)
        .where(
            Assignment.status == AssignmentStatus.SCHEDULED,
            Assignment.driver_id.is_not(None),
            Assignment.confirmed_at.is_not(None),
            Assignment.date <= ctx.today(),
        )
        .order_by(Assignment.date.asc(), Assignment.id.asc())
    )
    return [a.id for a, shift in result.all() if is_no_show_candidate(a, shift, ctx)]


async def find_reminder_candidates(db: AsyncSession, ctx: DispatchContext) -> List[Assignment]:
    """Unconfirmed shifts within the reminder lead time whose deadline is still ahead."""
    today = ctx.today()
    now: datetime = ctx.now()
    result = await db.execute(
        select(Assignment)
        .where(
            Assignment.status == AssignmentStatus.SCHEDULED,
            Assignment.driver_id.is_not(None),
            Assignment.confirmed_at.is_(None),
            Assignment.date > today,
            Assignment.date <= today + timedelta(days=ctx.policy.confirmation.reminder_lead_days),
        )
        .order_by(Assignment.date.asc(), Assignment.id.asc())
    )
    return [
        a for a in result.scalars().all()
        if now < ctx.calendar.confirmation_deadline(a.date)
    ]


async def find_shift_reminder_candidates(db: AsyncSession, ctx: DispatchContext) -> List[Assignment]:
    """Today's scheduled shifts whose driver has not started yet."""
    result = await db.execute(
        select(Assignment)
        .outerjoin(Shift, Shift.assignment_id == Assignment.id)
        .where(
            Assignment.status == AssignmentStatus.SCHEDULED,
            Assignment.driver_id.is_not(None),
            Assignment.date == ctx.today(),
            Shift.started_at.is_(None),
        )
        .order_by(Assignment.id.asc())
    )
    return list(result.scalars().all())


async def find_stale_shifts(db: AsyncSession, ctx: DispatchContext) -> List[Shift]:
    """Shifts arrived at more than the stale threshold ago and never completed."""
    cutoff = ctx.now() - timedelta(hours=ctx.policy.jobs.stale_shift_hours)
    result = await db.execute(
        select(Shift)
        .join(Assignment, Assignment.id == Shift.assignment_id)
        .where(
            Assignment.status == AssignmentStatus.ACTIVE,
            Shift.arrived_at.is_not(None),
            Shift.arrived_at < cutoff,
            Shift.completed_at.is_(None),
            Shift.cancelled_at.is_(None),
        )
        .order_by(Shift.arrived_at.asc(), Shift.id.asc())
    )
    return list(result.scalars().all())
