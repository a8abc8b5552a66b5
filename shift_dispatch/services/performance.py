"""
Attendance flagging and weekly assignment caps.

Attendance is completed shifts over shifts that were due (assignments dated
before today). A driver below the attendance floor is flagged and warned once;
if they are still below it when the grace period ends their weekly cap drops
by one. A long record of near-perfect attendance earns the reward cap.
Flagged drivers and drivers at their weekly cap cannot take new assignments.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.core.clock import ShiftCalendar
from shift_dispatch.core.errors import NotFoundError
from shift_dispatch.core.policy import FlaggingPolicy
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import Assignment, AssignmentStatus, Driver, NotificationType, Shift
from shift_dispatch.services.audit import record_audit
from shift_dispatch.services.context import DispatchContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttendanceMetrics:
    total_shifts: int
    completed_shifts: int

    @property
    def attendance_rate(self) -> float:
        if self.total_shifts == 0:
            return 0.0
        return self.completed_shifts / self.total_shifts


@dataclass
class FlagDecision:
    """Next flag state for one driver and what changed to get there."""
    metrics: AttendanceMetrics
    threshold: float
    is_flagged: bool
    flag_warning_at: Optional[datetime]
    weekly_cap: int
    warning_sent: bool = False
    cap_reduced: bool = False
    reward_applied: bool = False


def decide_flag(
    metrics: AttendanceMetrics,
    is_flagged: bool,
    flag_warning_at: Optional[datetime],
    now: datetime,
    policy: FlaggingPolicy,
) -> FlagDecision:
    """
    Apply the flagging rules to a driver's current attendance.

    Args:
        metrics: Due and completed shift counts
        is_flagged: Current flag
        flag_warning_at: When the current flag's warning went out
        now: Current instant
        policy: Flagging thresholds and caps

    Returns:
        FlagDecision with the next flag, warning instant and weekly cap
    """
    rate = metrics.attendance_rate
    threshold = policy.threshold_for(metrics.total_shifts)
    reward = (
        metrics.total_shifts >= policy.reward_min_shifts
        and rate >= policy.reward_attendance_threshold
    )
    base_cap = policy.reward_weekly_cap if reward else policy.default_weekly_cap

    if not (metrics.total_shifts > 0 and rate < threshold):
        return FlagDecision(
            metrics=metrics,
            threshold=threshold,
            is_flagged=False,
            flag_warning_at=None,
            weekly_cap=base_cap,
            reward_applied=reward,
        )

    warning_sent = not is_flagged or flag_warning_at is None
    warned_at = now if warning_sent else flag_warning_at
    cap = base_cap
    if warned_at + timedelta(days=policy.grace_period_days) <= now:
        cap = max(base_cap - 1, policy.min_weekly_cap)
    return FlagDecision(
        metrics=metrics,
        threshold=threshold,
        is_flagged=True,
        flag_warning_at=warned_at,
        weekly_cap=cap,
        warning_sent=warning_sent,
        cap_reduced=cap < base_cap,
    )


async def attendance_metrics(db: AsyncSession, driver_id: uuid.UUID, today: date) -> AttendanceMetrics:
    """Count the driver's due assignments and how many of them were completed."""
    due = (
        Assignment.driver_id == driver_id,
        Assignment.date < today,
    )
    total = await db.scalar(select(func.count(Assignment.id)).where(*due))
    completed = await db.scalar(
        select(func.count(Shift.id))
        .join(Assignment, Assignment.id == Shift.assignment_id)
        .where(*due, Shift.completed_at.is_not(None))
    )
    return AttendanceMetrics(total_shifts=total or 0, completed_shifts=completed or 0)


async def check_and_apply_flag(
    uow: UnitOfWork,
    ctx: DispatchContext,
    driver_id: uuid.UUID,
) -> FlagDecision:
    """Re-evaluate one driver's flag and weekly cap, persisting any change."""
    db = uow.session
    driver = await db.get(Driver, driver_id, with_for_update=True)
    if driver is None:
        raise NotFoundError("Driver", driver_id)

    now = ctx.now()
    metrics = await attendance_metrics(db, driver_id, ctx.today())
    decision = decide_flag(metrics, driver.is_flagged, driver.flag_warning_at, now,
                           ctx.policy.flagging)

    before = {
        "is_flagged": driver.is_flagged,
        "flag_warning_at": driver.flag_warning_at,
        "weekly_cap": driver.weekly_cap,
    }
    after = {
        "is_flagged": decision.is_flagged,
        "flag_warning_at": decision.flag_warning_at,
        "weekly_cap": decision.weekly_cap,
    }
    if before != after:
        if decision.is_flagged and not driver.is_flagged:
            action = "flag"
        elif driver.is_flagged and not decision.is_flagged:
            action = "unflag"
        else:
            action = "update"
        driver.is_flagged = decision.is_flagged
        driver.flag_warning_at = decision.flag_warning_at
        driver.weekly_cap = decision.weekly_cap
        record_audit(db, "driver", driver_id, action, changes={
            "before": before,
            "after": after,
            "attendance_rate": round(metrics.attendance_rate, 4),
            "threshold": decision.threshold,
            "total_shifts": metrics.total_shifts,
        })
        await db.flush()

    if decision.warning_sent:
        ctx.notify(uow, driver_id, NotificationType.ATTENDANCE_WARNING, {
            "attendance_rate": round(metrics.attendance_rate, 4),
            "threshold": decision.threshold,
            "grace_period_days": ctx.policy.flagging.grace_period_days,
        })

    logger.info(
        f"Flag check for driver {driver_id}: attendance={metrics.attendance_rate:.2f} "
        f"threshold={decision.threshold} flagged={decision.is_flagged} cap={decision.weekly_cap}"
    )
    return decision


# =============================================================================
# Weekly caps
# =============================================================================

async def weekly_assignment_counts(
    db: AsyncSession,
    driver_ids: Iterable[uuid.UUID],
    on_date: date,
) -> Dict[uuid.UUID, int]:
    """Live assignments each driver holds in the Monday-start week containing `on_date`."""
    ids = list(driver_ids)
    if not ids:
        return {}
    week_start = ShiftCalendar.week_start(on_date)
    result = await db.execute(
        select(Assignment.driver_id, func.count(Assignment.id))
        .where(
            Assignment.driver_id.in_(ids),
            Assignment.date >= week_start,
            Assignment.date < week_start + timedelta(days=7),
            Assignment.status != AssignmentStatus.CANCELLED,
        )
        .group_by(Assignment.driver_id)
    )
    return {driver_id: count for driver_id, count in result.all()}


async def can_take_assignment(db: AsyncSession, driver: Driver, on_date: date) -> bool:
    """Unflagged and still under the weekly cap for the week of `on_date`."""
    if driver.is_flagged:
        return False
    counts = await weekly_assignment_counts(db, [driver.id], on_date)
    return counts.get(driver.id, 0) < driver.weekly_cap
