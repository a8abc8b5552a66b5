"""
Periodic Transition Orchestrator.

Named jobs that drive time-based transitions:

- send_confirmation_reminders
- auto_drop_unconfirmed
- detect_no_shows
- close_bid_windows
- run_daily_health_evaluation
- run_weekly_health_evaluation
- performance_check
- send_shift_reminders
- send_stale_shift_reminders

Every run is recorded as a JobRun (pending -> running -> succeeded | failed).
Each entity is processed in its own unit of work and re-checks its guard
after loading, so reruns and concurrent runs converge instead of repeating
side effects. A failing unit rolls back alone and is listed on the run; the
run then ends failed. Nothing is retried automatically.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shift_dispatch.core.errors import ConflictError, DomainValidationError, JobExecutionError
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import (
    AssignmentStatus,
    BidWindow,
    BidWindowStatus,
    Driver,
    JobRun,
    JobRunStatus,
    NotificationType,
    Shift,
)
from shift_dispatch.services import assignment_lifecycle as lifecycle
from shift_dispatch.services import health_ledger, performance
from shift_dispatch.services.bid_windows import open_window, resolve_window
from shift_dispatch.services.context import DispatchContext
from shift_dispatch.services.notifications import notification_exists

logger = logging.getLogger(__name__)


SEND_CONFIRMATION_REMINDERS = "send_confirmation_reminders"
AUTO_DROP_UNCONFIRMED = "auto_drop_unconfirmed"
DETECT_NO_SHOWS = "detect_no_shows"
CLOSE_BID_WINDOWS = "close_bid_windows"
RUN_DAILY_HEALTH_EVALUATION = "run_daily_health_evaluation"
RUN_WEEKLY_HEALTH_EVALUATION = "run_weekly_health_evaluation"
PERFORMANCE_CHECK = "performance_check"
SEND_SHIFT_REMINDERS = "send_shift_reminders"
SEND_STALE_SHIFT_REMINDERS = "send_stale_shift_reminders"

JOB_NAMES = (
    SEND_CONFIRMATION_REMINDERS,
    AUTO_DROP_UNCONFIRMED,
    DETECT_NO_SHOWS,
    CLOSE_BID_WINDOWS,
    RUN_DAILY_HEALTH_EVALUATION,
    RUN_WEEKLY_HEALTH_EVALUATION,
    PERFORMANCE_CHECK,
    SEND_SHIFT_REMINDERS,
    SEND_STALE_SHIFT_REMINDERS,
)


@dataclass
class JobReport:
    """Counters collected while a job runs."""
    counts: Dict[str, int] = field(default_factory=dict)
    failed_entity_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    def count(self, outcome: str) -> None:
        self.counts[outcome] = self.counts.get(outcome, 0) + 1

    def fail(self, entity_id: Any, error: Exception) -> None:
        self.failed_entity_ids.append(str(entity_id))
        self.errors.append(f"{entity_id}: {error}")

    @property
    def ok(self) -> bool:
        return not self.failed_entity_ids and not self.errors and not self.cancelled

    def summary(self) -> Dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "processed": sum(self.counts.values()),
            "failed": len(self.failed_entity_ids),
            "cancelled": self.cancelled,
        }


UnitHandler = Callable[[UnitOfWork, Any], Awaitable[str]]


class TransitionOrchestrator:
    """
    Runs periodic jobs against the store.

    Args:
        session_factory: Creates one session per unit of work
        ctx: Dispatch context (policy, clock, notifier)
        cancel_event: Set to stop the current run between units
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        ctx: DispatchContext,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.session_factory = session_factory
        self.ctx = ctx
        self.cancel_event = cancel_event or asyncio.Event()
        self._jobs: Dict[str, Callable[[JobReport, date], Awaitable[None]]] = {
            SEND_CONFIRMATION_REMINDERS: self.send_confirmation_reminders,
            AUTO_DROP_UNCONFIRMED: self.auto_drop_unconfirmed,
            DETECT_NO_SHOWS: self.detect_no_shows,
            CLOSE_BID_WINDOWS: self.close_bid_windows,
            RUN_DAILY_HEALTH_EVALUATION: self.run_daily_health_evaluation,
            RUN_WEEKLY_HEALTH_EVALUATION: self.run_weekly_health_evaluation,
            PERFORMANCE_CHECK: self.performance_check,
            SEND_SHIFT_REMINDERS: self.send_shift_reminders,
            SEND_STALE_SHIFT_REMINDERS: self.send_stale_shift_reminders,
        }

    def request_cancel(self) -> None:
        self.cancel_event.set()

    # =========================================================================
    # Run bookkeeping
    # =========================================================================

    async def run(self, job_name: str, as_of: Optional[date] = None) -> JobRun:
        """
        Execute one job and return its finished JobRun.

        Args:
            job_name: One of JOB_NAMES
            as_of: Evaluation date for health jobs (defaults to today, local)

        Raises:
            DomainValidationError: unknown job name
        """
        handler = self._jobs.get(job_name)
        if handler is None:
            raise DomainValidationError(f"Unknown job: {job_name}")

        run_id = await self._start_run(job_name)
        report = JobReport()
        logger.info(f"Job {job_name} started (run {run_id})")
        try:
            await handler(report, as_of or self.ctx.today())
        except Exception as e:
            logger.error(f"Job {job_name} aborted: {e}")
            report.errors.append(str(e))

        run = await self._finish_run(run_id, report)
        if run.status == JobRunStatus.FAILED:
            logger.error(
                f"Job {job_name} failed: {run.error_message} "
                f"(failed entities: {run.failed_entity_ids})"
            )
        else:
            logger.info(f"Job {job_name} succeeded: {run.summary}")
        return run

    async def _start_run(self, job_name: str) -> uuid.UUID:
        async with self.session_factory() as session:
            run = JobRun(job_name=job_name, status=JobRunStatus.PENDING, created_at=self.ctx.now())
            session.add(run)
            await session.commit()
            run.status = JobRunStatus.RUNNING
            run.started_at = self.ctx.now()
            await session.commit()
            return run.id

    async def _finish_run(self, run_id: uuid.UUID, report: JobReport) -> JobRun:
        async with self.session_factory() as session:
            run = await session.get(JobRun, run_id)
            run.summary = report.summary()
            run.failed_entity_ids = list(report.failed_entity_ids)
            run.finished_at = self.ctx.now()
            if report.ok:
                run.status = JobRunStatus.SUCCEEDED
            else:
                run.status = JobRunStatus.FAILED
                messages = list(report.errors[:5])
                if report.cancelled:
                    messages.insert(0, "cancelled")
                run.error_message = "; ".join(messages)
            await session.commit()
            return run

    async def _each(self, report: JobReport, keys: Sequence[Any], unit: UnitHandler) -> None:
        """Run `unit` for every key in its own unit of work."""
        for key in keys:
            if self.cancel_event.is_set():
                report.cancelled = True
                logger.warning(f"Job cancelled with {len(keys)} units queued")
                return
            async with self.session_factory() as session:
                try:
                    async with UnitOfWork(session) as uow:
                        outcome = await unit(uow, key)
                except ConflictError as e:
                    # Another request or job already moved this entity
                    logger.info(f"Unit {key} skipped on conflict: {e}")
                    report.count("conflict_skipped")
                except Exception as e:
                    logger.error(f"Unit {key} failed: {e}")
                    report.fail(key, e)
                else:
                    report.count(outcome)

    async def _read(self, query: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
        async with self.session_factory() as session:
            return await query(session)

    # =========================================================================
    # Jobs
    # =========================================================================

    async def send_confirmation_reminders(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx
        candidates = await self._read(lambda db: lifecycle.find_reminder_candidates(db, ctx))

        async def unit(uow: UnitOfWork, assignment_id: uuid.UUID) -> str:
            assignment = await lifecycle.get_assignment(uow.session, assignment_id)
            if assignment.confirmed_at is not None or assignment.driver_id is None:
                return "skipped"
            dedupe_key = f"confirmation_reminder:{assignment.id}:{assignment.driver_id}"
            if await notification_exists(uow.session, dedupe_key):
                return "already_sent"
            ctx.notify(uow, assignment.driver_id, NotificationType.CONFIRMATION_REMINDER, {
                "assignment_id": assignment.id,
                "route_id": assignment.route_id,
                "date": assignment.date,
                "confirm_by": ctx.calendar.confirmation_deadline(assignment.date),
            }, dedupe_key=dedupe_key)
            return "sent"

        await self._each(report, [a.id for a in candidates], unit)

    async def auto_drop_unconfirmed(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx
        candidate_ids = await self._read(lambda db: lifecycle.find_auto_drop_candidates(db, ctx))

        async def unit(uow: UnitOfWork, assignment_id: uuid.UUID) -> str:
            vacancy = await lifecycle.auto_drop(uow, ctx, assignment_id)
            if vacancy is None:
                return "skipped"
            dropped = vacancy.cancelled
            ctx.notify(uow, dropped.driver_id, NotificationType.SHIFT_AUTO_DROPPED, {
                "assignment_id": dropped.id,
                "route_id": dropped.route_id,
                "date": dropped.date,
            })
            if vacancy.replacement is None:
                return "dropped_without_window"
            await open_window(uow, ctx, vacancy.replacement.id, trigger="auto_drop")
            return "dropped"

        await self._each(report, candidate_ids, unit)

    async def detect_no_shows(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx
        candidate_ids = await self._read(lambda db: lifecycle.find_no_show_candidates(db, ctx))

        async def unit(uow: UnitOfWork, assignment_id: uuid.UUID) -> str:
            vacancy = await lifecycle.mark_no_show(uow, ctx, assignment_id)
            if vacancy is None:
                return "skipped"
            missed = vacancy.cancelled
            ctx.notify(uow, missed.driver_id, NotificationType.NO_SHOW_RECORDED, {
                "assignment_id": missed.id,
                "route_id": missed.route_id,
                "date": missed.date,
            })
            await open_window(
                uow, ctx, vacancy.replacement.id,
                trigger="no_show", emergency=True, allow_past_shift=True,
            )
            return "no_show"

        await self._each(report, candidate_ids, unit)

    async def close_bid_windows(self, report: JobReport, as_of: date) -> None:
        now = self.ctx.now()

        async def due_windows(db: AsyncSession) -> List[uuid.UUID]:
            result = await db.execute(
                select(BidWindow.id)
                .where(BidWindow.status == BidWindowStatus.OPEN, BidWindow.closes_at <= now)
                .order_by(BidWindow.closes_at.asc(), BidWindow.id.asc())
            )
            return list(result.scalars().all())

        async def unit(uow: UnitOfWork, window_id: uuid.UUID) -> str:
            outcome = await resolve_window(uow, self.ctx, window_id)
            if not outcome.changed:
                return "unchanged"
            return "resolved" if outcome.winner is not None else "closed"

        await self._each(report, await self._read(due_windows), unit)

    async def _driver_ids(self) -> List[uuid.UUID]:
        """Active driver ids, paged by id."""
        batch_size = self.ctx.policy.jobs.evaluation_batch_size
        ids: List[uuid.UUID] = []
        last_id: Optional[uuid.UUID] = None
        async with self.session_factory() as db:
            while True:
                stmt = select(Driver.id).where(Driver.is_active.is_(True)).order_by(Driver.id).limit(batch_size)
                if last_id is not None:
                    stmt = stmt.where(Driver.id > last_id)
                batch = list((await db.execute(stmt)).scalars().all())
                ids.extend(batch)
                if len(batch) < batch_size:
                    return ids
                last_id = batch[-1]

    async def run_daily_health_evaluation(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx

        async def unit(uow: UnitOfWork, driver_id: uuid.UUID) -> str:
            refresh = await health_ledger.refresh_driver_health(uow, ctx, driver_id, as_of)
            if refresh.evaluation is None:
                return "onboarding"
            if health_ledger.REASON_CORRECTIVE in refresh.evaluation.reasons:
                week = ctx.calendar.week_start(as_of)
                dedupe_key = f"corrective_warning:{driver_id}:{week.isoformat()}"
                if not await notification_exists(uow.session, dedupe_key):
                    ctx.notify(uow, driver_id, NotificationType.CORRECTIVE_WARNING, {
                        "completion_rate": refresh.evaluation.completion_rate,
                        "threshold": ctx.policy.health.corrective_completion_threshold,
                    }, dedupe_key=dedupe_key)
            return "evaluated"

        await self._each(report, await self._driver_ids(), unit)

    async def run_weekly_health_evaluation(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx

        async def unit(uow: UnitOfWork, driver_id: uuid.UUID) -> str:
            refresh = await health_ledger.refresh_driver_health(uow, ctx, driver_id, as_of)
            if refresh.evaluation is None:
                return "onboarding"
            change = await health_ledger.notify_streak_change(uow, ctx, refresh, as_of)
            return f"streak_{change}" if change else "evaluated"

        await self._each(report, await self._driver_ids(), unit)

    async def performance_check(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx

        async def unit(uow: UnitOfWork, driver_id: uuid.UUID) -> str:
            decision = await performance.check_and_apply_flag(uow, ctx, driver_id)
            if decision.warning_sent:
                return "newly_flagged"
            if decision.cap_reduced:
                return "cap_reduced"
            if decision.reward_applied:
                return "reward_granted"
            return "flagged" if decision.is_flagged else "checked"

        await self._each(report, await self._driver_ids(), unit)

    async def send_shift_reminders(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx
        candidates = await self._read(lambda db: lifecycle.find_shift_reminder_candidates(db, ctx))

        async def unit(uow: UnitOfWork, assignment_id: uuid.UUID) -> str:
            assignment = await lifecycle.get_assignment(uow.session, assignment_id)
            if assignment.status != AssignmentStatus.SCHEDULED or assignment.driver_id is None:
                return "skipped"
            dedupe_key = f"shift_reminder:{assignment.id}:{assignment.driver_id}"
            if await notification_exists(uow.session, dedupe_key):
                return "already_sent"
            ctx.notify(uow, assignment.driver_id, NotificationType.SHIFT_REMINDER, {
                "assignment_id": assignment.id,
                "route_id": assignment.route_id,
                "date": assignment.date,
                "arrive_by": ctx.calendar.arrival_deadline_for(assignment.date, assignment.assigned_at),
            }, dedupe_key=dedupe_key)
            return "sent"

        await self._each(report, [a.id for a in candidates], unit)

    async def send_stale_shift_reminders(self, report: JobReport, as_of: date) -> None:
        ctx = self.ctx
        period = timedelta(hours=ctx.policy.jobs.stale_shift_hours)
        stale = await self._read(lambda db: lifecycle.find_stale_shifts(db, ctx))

        async def unit(uow: UnitOfWork, shift_id: uuid.UUID) -> str:
            shift = await uow.session.get(Shift, shift_id)
            if shift is None or shift.completed_at is not None or shift.cancelled_at is not None:
                return "skipped"
            assignment = await lifecycle.get_assignment(uow.session, shift.assignment_id)
            if assignment.driver_id is None:
                return "skipped"
            # One reminder per elapsed period since arrival
            periods = int((ctx.now() - shift.arrived_at) / period)
            dedupe_key = f"stale_shift:{assignment.id}:{assignment.driver_id}:{periods}"
            if await notification_exists(uow.session, dedupe_key):
                return "already_sent"
            ctx.notify(uow, assignment.driver_id, NotificationType.STALE_SHIFT_REMINDER, {
                "assignment_id": assignment.id,
                "route_id": assignment.route_id,
                "date": assignment.date,
                "arrived_at": shift.arrived_at,
            }, dedupe_key=dedupe_key)
            return "sent"

        await self._each(report, [s.id for s in stale], unit)


def raise_for_status(run: JobRun) -> JobRun:
    """Raise JobExecutionError for a failed run; return it otherwise."""
    if run.status == JobRunStatus.FAILED:
        raise JobExecutionError(run.job_name, run.error_message or "failed", run.failed_entity_ids)
    return run


async def get_job_run(db: AsyncSession, run_id: uuid.UUID) -> Optional[JobRun]:
    return await db.get(JobRun, run_id)
