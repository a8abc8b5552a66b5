"""
Health Ledger.

Derives a driver's reliability score, hard-stop status and weekly star
progression from their immutable assignment/shift history. Evaluation is a
pure recomputation: HealthSnapshot rows are appended once per day and
HealthState is rebuilt wholesale, never patched incrementally.

Scoring:
- Positive categories (confirmed, arrived on time, completed, high delivery,
  bid pickup, urgent pickup) and negative categories (auto-drop, late
  cancellation) contribute count x points; the total is floored at zero.
- A no-show resets the score: only events after the latest no-show count.
- A hard stop (a no-show, or too many late cancellations, in the rolling
  window) caps the displayed score below the tier threshold and suspends
  pool eligibility until a manager reinstates the driver.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.core.clock import ShiftCalendar
from shift_dispatch.core.errors import NotFoundError
from shift_dispatch.core.policy import HealthPolicy
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import (
    Assignment,
    AssignmentStatus,
    AssignedBy,
    BidWindow,
    BidWindowMode,
    BidWindowStatus,
    CancelType,
    Driver,
    HealthSnapshot,
    HealthState,
    NotificationType,
    Shift,
)
from shift_dispatch.services.audit import record_audit
from shift_dispatch.services.context import DispatchContext
from shift_dispatch.services.notifications import notification_exists

logger = logging.getLogger(__name__)


REASON_NO_SHOW = "no_show_in_window"
REASON_LATE_CANCELLATIONS = "late_cancellation_threshold"
REASON_SCORE_RESET = "score_reset_by_no_show"
REASON_CORRECTIVE = "completion_below_corrective_threshold"

CONTRIBUTION_CATEGORIES = (
    "confirmed_on_time",
    "arrived_on_time",
    "completed_shifts",
    "high_delivery_shifts",
    "bid_pickups",
    "urgent_pickups",
    "auto_drops",
    "late_cancellations",
)

_WORKED_STATUSES = (AssignmentStatus.SCHEDULED, AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED)


@dataclass(frozen=True)
class AssignmentHistory:
    """One assignment with its shift evidence, as the ledger sees it."""
    assignment_id: uuid.UUID
    date: date
    status: AssignmentStatus
    assigned_by: Optional[AssignedBy] = None
    assigned_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancel_type: Optional[CancelType] = None
    cancelled_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    parcels_start: Optional[int] = None
    parcels_delivered: Optional[int] = None
    excepted_returns: int = 0
    # Mode of the bid window this driver won the assignment through
    pickup_mode: Optional[BidWindowMode] = None

    @property
    def is_no_show(self) -> bool:
        return self.cancel_type == CancelType.NO_SHOW

    @property
    def is_late_cancel(self) -> bool:
        return self.cancel_type == CancelType.LATE

    @property
    def is_due(self) -> bool:
        """Driver was expected to turn up."""
        return self.is_no_show or self.status in (AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED)


@dataclass
class HealthEvaluation:
    """Result of evaluating one driver on one day."""
    driver_id: uuid.UUID
    evaluated_on: date
    score: int
    attendance_rate: float
    completion_rate: float
    late_cancel_count_30d: int
    no_show_count_30d: int
    hard_stop_triggered: bool
    reasons: List[str]
    contributions: Dict[str, Dict[str, int]]
    pool_eligible: bool
    last_score_reset_at: Optional[datetime] = None


@dataclass
class WeekResult:
    week_start: date
    attendance_rate: float
    completion_rate: float
    no_shows: int
    late_cancellations: int
    qualified: bool
    hard_stop: bool
    streak_weeks: int = 0
    stars: int = 0


@dataclass
class StarProgress:
    streak_weeks: int = 0
    stars: int = 0
    last_qualified_week: Optional[date] = None
    next_milestone_stars: int = 1
    weeks: List[WeekResult] = field(default_factory=list)


# =============================================================================
# Pure computation
# =============================================================================

def cancellation_date(record: AssignmentHistory, calendar: ShiftCalendar) -> date:
    """Local date a cancellation happened (assignment date if unknown)."""
    if record.cancelled_at is not None:
        return calendar.local_date(record.cancelled_at)
    return record.date


def event_date(record: AssignmentHistory, calendar: ShiftCalendar) -> date:
    """Date a record's health event is attributed to."""
    if record.cancel_type in (CancelType.LATE, CancelType.AUTO_DROP, CancelType.DRIVER):
        return cancellation_date(record, calendar)
    return record.date


def _rates(records: Iterable[AssignmentHistory]) -> Tuple[float, float]:
    """Attendance (arrived / due) and parcel completion (delivered / started)."""
    due = 0
    arrived = 0
    parcels_start = 0
    parcels_delivered = 0
    for r in records:
        if r.is_due:
            due += 1
            if r.arrived_at is not None:
                arrived += 1
        if r.completed_at is not None and r.parcels_start:
            parcels_start += r.parcels_start
            parcels_delivered += r.parcels_delivered or 0

    attendance = arrived / due if due else 0.0
    completion = parcels_delivered / parcels_start if parcels_start else 0.0
    return round(attendance, 4), round(completion, 4)


def compute_contributions(
    records: Iterable[AssignmentHistory],
    as_of: date,
    calendar: ShiftCalendar,
    policy: HealthPolicy,
    reset_after: Optional[date] = None,
) -> Dict[str, Dict[str, int]]:
    """
    Count point-bearing events up to `as_of`.

    Args:
        records: Driver history
        as_of: Last local date included
        calendar: Shift calendar for arrival deadlines and local dates
        policy: Health policy (point values, high delivery rate)
        reset_after: Events on or before this date are ignored (last no-show)

    Returns:
        {category: {"count": n, "points": n * value}}
    """
    points = policy.points
    counts: Dict[str, int] = {category: 0 for category in CONTRIBUTION_CATEGORIES}

    for r in records:
        when = event_date(r, calendar)
        if when > as_of or (reset_after is not None and when <= reset_after):
            continue

        if r.cancel_type == CancelType.AUTO_DROP:
            counts["auto_drops"] += 1
            continue
        if r.cancel_type == CancelType.LATE:
            counts["late_cancellations"] += 1
            continue

        if r.confirmed_at is not None and r.status in _WORKED_STATUSES:
            counts["confirmed_on_time"] += 1
        if r.arrived_at is not None and r.arrived_at <= calendar.arrival_deadline_for(r.date, r.assigned_at):
            counts["arrived_on_time"] += 1
        if r.completed_at is not None:
            counts["completed_shifts"] += 1
            if r.parcels_start:
                delivered = (r.parcels_delivered or 0) + (r.excepted_returns or 0)
                if delivered / r.parcels_start >= policy.high_delivery_rate:
                    counts["high_delivery_shifts"] += 1
        if r.assigned_by == AssignedBy.BID and r.status in _WORKED_STATUSES:
            if r.pickup_mode == BidWindowMode.EMERGENCY:
                counts["urgent_pickups"] += 1
            else:
                counts["bid_pickups"] += 1

    values = {
        "confirmed_on_time": points.confirmed_on_time,
        "arrived_on_time": points.arrived_on_time,
        "completed_shifts": points.completed_shift,
        "high_delivery_shifts": points.high_delivery,
        "bid_pickups": points.bid_pickup,
        "urgent_pickups": points.urgent_pickup,
        "auto_drops": points.auto_drop,
        "late_cancellations": points.late_cancel,
    }
    return {
        category: {"count": counts[category], "points": counts[category] * values[category]}
        for category in CONTRIBUTION_CATEGORIES
    }


def _late_cancel_count(
    records: Iterable[AssignmentHistory],
    window_end: date,
    calendar: ShiftCalendar,
    policy: HealthPolicy,
) -> int:
    window_start = window_end - timedelta(days=policy.rolling_window_days)
    return sum(
        1 for r in records
        if r.is_late_cancel and window_start <= cancellation_date(r, calendar) <= window_end
    )


def latest_hard_stop_at(
    records: List[AssignmentHistory],
    as_of: date,
    calendar: ShiftCalendar,
    policy: HealthPolicy,
) -> Optional[datetime]:
    """Instant of the most recent hard-stop event on or before `as_of`."""
    instants: List[datetime] = []
    for r in records:
        if r.is_no_show and r.date <= as_of:
            instants.append(r.cancelled_at or calendar.arrival_deadline(r.date))
        elif r.is_late_cancel:
            when = cancellation_date(r, calendar)
            if when <= as_of and _late_cancel_count(records, when, calendar, policy) >= policy.late_cancel_threshold:
                instants.append(r.cancelled_at or calendar.shift_start(r.date))
    return max(instants) if instants else None


def compute_health(
    driver_id: uuid.UUID,
    records: List[AssignmentHistory],
    as_of: date,
    calendar: ShiftCalendar,
    policy: HealthPolicy,
    reinstated_at: Optional[datetime] = None,
) -> Optional[HealthEvaluation]:
    """
    Evaluate a driver's health as of a local date.

    Returns:
        HealthEvaluation, or None when the driver has no history yet (onboarding)
    """
    evaluable = [r for r in records if event_date(r, calendar) <= as_of]
    if not evaluable:
        return None

    reasons: List[str] = []
    no_show_dates = sorted(r.date for r in evaluable if r.is_no_show)
    reset_after = no_show_dates[-1] if no_show_dates else None
    last_reset_at: Optional[datetime] = None
    if reset_after is not None:
        reasons.append(REASON_SCORE_RESET)
        last_reset_at = max(
            r.cancelled_at or calendar.arrival_deadline(r.date)
            for r in evaluable
            if r.is_no_show and r.date == reset_after
        )

    contributions = compute_contributions(evaluable, as_of, calendar, policy, reset_after)
    score = max(0, sum(c["points"] for c in contributions.values()))

    window_start = as_of - timedelta(days=policy.rolling_window_days)
    no_show_count = sum(1 for r in evaluable if r.is_no_show and window_start <= r.date <= as_of)
    late_count = _late_cancel_count(evaluable, as_of, calendar, policy)

    hard_stop = False
    if no_show_count > 0:
        hard_stop = True
        reasons.append(REASON_NO_SHOW)
    if late_count >= policy.late_cancel_threshold:
        hard_stop = True
        reasons.append(REASON_LATE_CANCELLATIONS)
    if hard_stop:
        score = min(score, policy.hard_stop_score_cap)

    attendance, completion = _rates(r for r in evaluable if r.date <= as_of)
    has_completed = any(r.completed_at is not None for r in evaluable)
    if has_completed and completion < policy.corrective_completion_threshold:
        reasons.append(REASON_CORRECTIVE)

    suspended_at = latest_hard_stop_at(evaluable, as_of, calendar, policy)
    pool_eligible = suspended_at is None or (
        reinstated_at is not None and reinstated_at >= suspended_at
    )

    return HealthEvaluation(
        driver_id=driver_id,
        evaluated_on=as_of,
        score=score,
        attendance_rate=attendance,
        completion_rate=completion,
        late_cancel_count_30d=late_count,
        no_show_count_30d=no_show_count,
        hard_stop_triggered=hard_stop,
        reasons=reasons,
        contributions=contributions,
        pool_eligible=pool_eligible,
        last_score_reset_at=last_reset_at,
    )


def evaluate_weeks(
    records: List[AssignmentHistory],
    as_of: date,
    calendar: ShiftCalendar,
    policy: HealthPolicy,
) -> StarProgress:
    """
    Walk completed Monday-start weeks in order and derive streak and stars.

    A week is complete once its Sunday is before `as_of`. Weeks in which
    nothing was due and nothing was penalised (no assignment at all, or only
    early driver cancellations) are skipped. A hard-stop week zeroes streak
    and stars; a qualifying week advances both; any other week breaks the
    streak but keeps earned stars.
    """
    thresholds = policy.qualifying_week
    by_week: Dict[date, List[AssignmentHistory]] = defaultdict(list)
    late_by_week: Dict[date, List[AssignmentHistory]] = defaultdict(list)
    for r in records:
        by_week[calendar.week_start(r.date)].append(r)
        if r.is_late_cancel:
            late_by_week[calendar.week_start(cancellation_date(r, calendar))].append(r)

    progress = StarProgress()
    for week in sorted(set(by_week) | set(late_by_week)):
        week_end = week + timedelta(days=6)
        if week_end >= as_of:
            continue

        week_records = by_week.get(week, [])
        late_in_week = late_by_week.get(week, [])
        no_shows = sum(1 for r in week_records if r.is_no_show)
        attendance, completion = _rates(week_records)

        hard_stop = no_shows > 0 or (
            bool(late_in_week)
            and _late_cancel_count(records, week_end, calendar, policy) >= policy.late_cancel_threshold
        )
        penalised = any(r.cancel_type == CancelType.AUTO_DROP for r in week_records)
        if not (hard_stop or late_in_week or penalised or any(r.is_due for r in week_records)):
            continue

        qualified = (
            not hard_stop
            and attendance >= thresholds.min_attendance_rate
            and completion >= thresholds.min_completion_rate
            and no_shows <= thresholds.max_no_shows
            and len(late_in_week) <= thresholds.max_late_cancellations
        )

        if hard_stop:
            progress.streak_weeks = 0
            progress.stars = 0
        elif qualified:
            progress.streak_weeks += 1
            progress.stars = min(progress.stars + 1, policy.max_stars)
            progress.last_qualified_week = week
        else:
            progress.streak_weeks = 0

        progress.weeks.append(WeekResult(
            week_start=week,
            attendance_rate=attendance,
            completion_rate=completion,
            no_shows=no_shows,
            late_cancellations=len(late_in_week),
            qualified=qualified,
            hard_stop=hard_stop,
            streak_weeks=progress.streak_weeks,
            stars=progress.stars,
        ))

    progress.next_milestone_stars = min(progress.stars + 1, policy.max_stars)
    return progress


# =============================================================================
# Persistence
# =============================================================================

async def load_history(db: AsyncSession, driver_id: uuid.UUID) -> List[AssignmentHistory]:
    """Load every assignment the driver has held, with shift evidence and pickup mode."""
    result = await db.execute(
        select(Assignment, Shift, BidWindow.mode)
        .outerjoin(Shift, Shift.assignment_id == Assignment.id)
        .outerjoin(
            BidWindow,
            and_(
                BidWindow.assignment_id == Assignment.id,
                BidWindow.status == BidWindowStatus.RESOLVED,
                BidWindow.winner_id == Assignment.driver_id,
            ),
        )
        .where(Assignment.driver_id == driver_id)
        .order_by(Assignment.date.asc())
    )

    history = []
    for assignment, shift, mode in result.all():
        history.append(AssignmentHistory(
            assignment_id=assignment.id,
            date=assignment.date,
            status=assignment.status,
            assigned_by=assignment.assigned_by,
            assigned_at=assignment.assigned_at,
            confirmed_at=assignment.confirmed_at,
            cancel_type=assignment.cancel_type,
            cancelled_at=assignment.cancelled_at,
            arrived_at=shift.arrived_at if shift else None,
            completed_at=shift.completed_at if shift else None,
            parcels_start=shift.parcels_start if shift else None,
            parcels_delivered=shift.parcels_delivered if shift else None,
            excepted_returns=shift.excepted_returns if shift else 0,
            pickup_mode=mode,
        ))
    return history


async def _get_driver(db: AsyncSession, driver_id: uuid.UUID) -> Driver:
    driver = await db.get(Driver, driver_id)
    if driver is None:
        raise NotFoundError("Driver", driver_id)
    return driver


async def evaluate(
    db: AsyncSession,
    ctx: DispatchContext,
    driver_id: uuid.UUID,
    as_of: date,
) -> Optional[HealthEvaluation]:
    """Evaluate a driver without persisting anything."""
    driver = await _get_driver(db, driver_id)
    history = await load_history(db, driver_id)
    return compute_health(
        driver_id,
        history,
        as_of,
        ctx.calendar,
        ctx.policy.health,
        reinstated_at=driver.health_reinstated_at,
    )


@dataclass
class HealthRefresh:
    evaluation: Optional[HealthEvaluation]
    progress: StarProgress
    state: Optional[HealthState]
    snapshot_created: bool = False


async def refresh_driver_health(
    uow: UnitOfWork,
    ctx: DispatchContext,
    driver_id: uuid.UUID,
    as_of: date,
) -> HealthRefresh:
    """
    Recompute a driver's snapshot and state inside the given unit of work.

    The snapshot for `as_of` is inserted only if absent. HealthState is
    overwritten from the recomputed values. Drivers without history get
    neither.
    """
    db = uow.session
    driver = await _get_driver(db, driver_id)
    history = await load_history(db, driver_id)
    policy = ctx.policy.health

    evaluation = compute_health(
        driver_id, history, as_of, ctx.calendar, policy,
        reinstated_at=driver.health_reinstated_at,
    )
    progress = evaluate_weeks(history, as_of, ctx.calendar, policy)
    if evaluation is None:
        return HealthRefresh(evaluation=None, progress=progress, state=None)

    existing = await db.execute(
        select(HealthSnapshot.id).where(
            HealthSnapshot.driver_id == driver_id,
            HealthSnapshot.evaluated_on == as_of,
        )
    )
    snapshot_created = False
    if existing.scalar_one_or_none() is None:
        db.add(HealthSnapshot(
            driver_id=driver_id,
            evaluated_on=as_of,
            score=evaluation.score,
            attendance_rate=evaluation.attendance_rate,
            completion_rate=evaluation.completion_rate,
            late_cancel_count_30d=evaluation.late_cancel_count_30d,
            no_show_count_30d=evaluation.no_show_count_30d,
            hard_stop_triggered=evaluation.hard_stop_triggered,
            reasons=list(evaluation.reasons),
            contributions=evaluation.contributions,
        ))
        snapshot_created = True

    state = await db.get(HealthState, driver_id)
    if state is None:
        state = HealthState(driver_id=driver_id)
        db.add(state)

    state.current_score = evaluation.score
    state.streak_weeks = progress.streak_weeks
    state.stars = progress.stars
    state.last_qualified_week = progress.last_qualified_week
    state.next_milestone_stars = progress.next_milestone_stars
    state.pool_eligible = evaluation.pool_eligible
    state.requires_manager_intervention = not evaluation.pool_eligible
    state.last_score_reset_at = evaluation.last_score_reset_at
    state.updated_at = ctx.now()
    await db.flush()

    return HealthRefresh(
        evaluation=evaluation,
        progress=progress,
        state=state,
        snapshot_created=snapshot_created,
    )


async def notify_streak_change(
    uow: UnitOfWork,
    ctx: DispatchContext,
    refresh: HealthRefresh,
    as_of: date,
) -> Optional[str]:
    """
    Tell the driver how last week moved their stars.

    Only the most recently completed week is considered, and each week is
    notified at most once per driver.

    Returns:
        "advanced", "reset" or None when nothing changed
    """
    if refresh.state is None or not refresh.progress.weeks:
        return None
    last_week = refresh.progress.weeks[-1]
    if last_week.week_start != ctx.calendar.week_start(as_of) - timedelta(days=7):
        return None

    earlier = refresh.progress.weeks[-2] if len(refresh.progress.weeks) > 1 else None
    previous_stars = earlier.stars if earlier else 0
    previous_streak = earlier.streak_weeks if earlier else 0

    if last_week.qualified and last_week.stars > previous_stars:
        kind, notification_type = "advanced", NotificationType.STREAK_ADVANCED
    elif last_week.hard_stop and (previous_stars > 0 or previous_streak > 0):
        kind, notification_type = "reset", NotificationType.STREAK_RESET
    else:
        return None

    driver_id = refresh.state.driver_id
    dedupe_key = f"streak:{driver_id}:{last_week.week_start.isoformat()}"
    if await notification_exists(uow.session, dedupe_key):
        return None

    ctx.notify(uow, driver_id, notification_type, {
        "week_start": last_week.week_start,
        "stars": last_week.stars,
        "previous_stars": previous_stars,
        "streak_weeks": last_week.streak_weeks,
        "next_milestone_stars": refresh.progress.next_milestone_stars,
    }, dedupe_key=dedupe_key)
    return kind


async def get_health_state(db: AsyncSession, driver_id: uuid.UUID) -> Optional[HealthState]:
    await _get_driver(db, driver_id)
    return await db.get(HealthState, driver_id)


async def list_snapshots(
    db: AsyncSession,
    driver_id: uuid.UUID,
    limit: int = 30,
) -> List[HealthSnapshot]:
    """Most recent snapshots first."""
    await _get_driver(db, driver_id)
    result = await db.execute(
        select(HealthSnapshot)
        .where(HealthSnapshot.driver_id == driver_id)
        .order_by(HealthSnapshot.evaluated_on.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def reinstate_driver(
    uow: UnitOfWork,
    ctx: DispatchContext,
    driver_id: uuid.UUID,
    manager_id: uuid.UUID,
) -> HealthRefresh:
    """Manager lifts a hard-stop suspension; state is rebuilt immediately."""
    driver = await _get_driver(uow.session, driver_id)
    driver.health_reinstated_at = ctx.now()
    record_audit(
        uow.session, "driver", driver_id, "health_reinstated",
        actor_id=manager_id,
        changes={"health_reinstated_at": driver.health_reinstated_at},
    )
    await uow.session.flush()
    logger.info(f"Driver {driver_id} reinstated by manager {manager_id}")
    return await refresh_driver_health(uow, ctx, driver_id, ctx.today())
