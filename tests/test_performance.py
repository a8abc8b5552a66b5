"""
Tests for attendance flagging and weekly assignment caps.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from shift_dispatch.core.policy import FlaggingPolicy
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import AssignmentStatus, AuditLog, Driver, NotificationType
from shift_dispatch.services import performance
from shift_dispatch.services.performance import AttendanceMetrics, decide_flag
from tests.fixtures.test_data import NOW, add_completed_shifts, fetch_all, make_assignment, reload

POLICY = FlaggingPolicy()
TODAY = date(2026, 2, 2)


def days_before(count: int, start: int = 1):
    return [TODAY - timedelta(days=d) for d in range(start, start + count)]


class TestDecideFlag:
    """Pure flagging rules."""

    def test_no_history_is_not_flagged(self):
        decision = decide_flag(AttendanceMetrics(0, 0), False, None, NOW, POLICY)
        assert decision.is_flagged is False
        assert decision.weekly_cap == POLICY.default_weekly_cap

    def test_new_driver_below_early_threshold_is_warned(self):
        decision = decide_flag(AttendanceMetrics(5, 3), False, None, NOW, POLICY)

        assert decision.threshold == 0.8
        assert decision.is_flagged is True
        assert decision.warning_sent is True
        assert decision.flag_warning_at == NOW
        assert decision.weekly_cap == POLICY.default_weekly_cap
        assert decision.cap_reduced is False

    def test_established_driver_uses_lower_threshold(self):
        decision = decide_flag(AttendanceMetrics(12, 9), False, None, NOW, POLICY)
        assert decision.threshold == 0.7
        assert decision.is_flagged is False

    def test_inside_grace_period_keeps_cap(self):
        warned = NOW - timedelta(days=3)
        decision = decide_flag(AttendanceMetrics(5, 3), True, warned, NOW, POLICY)

        assert decision.warning_sent is False
        assert decision.flag_warning_at == warned
        assert decision.weekly_cap == POLICY.default_weekly_cap

    def test_cap_reduced_after_grace_period(self):
        warned = NOW - timedelta(days=POLICY.grace_period_days)
        decision = decide_flag(AttendanceMetrics(5, 3), True, warned, NOW, POLICY)

        assert decision.weekly_cap == POLICY.default_weekly_cap - 1
        assert decision.cap_reduced is True

    def test_cap_never_below_minimum(self):
        policy = FlaggingPolicy(default_weekly_cap=1)
        decision = decide_flag(AttendanceMetrics(5, 0), True, NOW - timedelta(days=30), NOW, policy)

        assert decision.weekly_cap == 1
        assert decision.cap_reduced is False

    def test_recovery_clears_flag(self):
        decision = decide_flag(AttendanceMetrics(10, 9), True, NOW - timedelta(days=10), NOW, POLICY)

        assert decision.is_flagged is False
        assert decision.flag_warning_at is None
        assert decision.weekly_cap == POLICY.default_weekly_cap

    @pytest.mark.parametrize("total, completed, cap", [(20, 19, 6), (19, 19, 4), (20, 18, 4)])
    def test_reward_cap(self, total, completed, cap):
        decision = decide_flag(AttendanceMetrics(total, completed), False, None, NOW, POLICY)
        assert decision.weekly_cap == cap
        assert decision.reward_applied is (cap == POLICY.reward_weekly_cap)


class TestCheckAndApplyFlag:
    """Persisted flag state."""

    async def _seed_misses(self, db_session, route, driver, days):
        for day in days:
            db_session.add(make_assignment(
                route, day, driver=driver, status=AssignmentStatus.CANCELLED))
        await db_session.commit()

    async def test_attendance_counts_only_past_assignments(self, db_session, ctx, route, driver):
        await add_completed_shifts(db_session, route, driver, days_before(2), ctx.calendar)
        await self._seed_misses(db_session, route, driver, days_before(1, start=3))
        db_session.add(make_assignment(route, TODAY, driver=driver))
        await db_session.commit()

        metrics = await performance.attendance_metrics(db_session, driver.id, TODAY)

        assert metrics == AttendanceMetrics(total_shifts=3, completed_shifts=2)

    async def test_flag_is_persisted_and_audited(self, db_session, session_factory, ctx, notifier, route, driver):
        await add_completed_shifts(db_session, route, driver, days_before(1), ctx.calendar)
        await self._seed_misses(db_session, route, driver, days_before(2, start=2))

        async with UnitOfWork(db_session) as uow:
            decision = await performance.check_and_apply_flag(uow, ctx, driver.id)

        assert decision.warning_sent is True
        stored = await reload(session_factory, Driver, driver.id)
        assert stored.is_flagged is True
        assert stored.flag_warning_at == NOW
        audits = await fetch_all(session_factory, select(AuditLog).where(AuditLog.entity_type == "driver"))
        assert [a.action for a in audits] == ["flag"]
        warnings = notifier.of_type(NotificationType.ATTENDANCE_WARNING)
        assert [w["user_id"] for w in warnings] == [driver.id]

    async def test_unchanged_driver_writes_no_audit(self, db_session, session_factory, ctx, route, driver):
        await add_completed_shifts(db_session, route, driver, days_before(2), ctx.calendar)

        async with UnitOfWork(db_session) as uow:
            decision = await performance.check_and_apply_flag(uow, ctx, driver.id)

        assert decision.is_flagged is False
        assert await fetch_all(session_factory, select(AuditLog)) == []


class TestWeeklyCaps:

    async def test_counts_live_assignments_in_week(self, db_session, ctx, route, driver):
        db_session.add_all([
            make_assignment(route, TODAY, driver=driver),
            make_assignment(route, TODAY + timedelta(days=6), driver=driver),
            make_assignment(route, TODAY + timedelta(days=7), driver=driver),
            make_assignment(route, TODAY + timedelta(days=3), driver=driver,
                            status=AssignmentStatus.CANCELLED),
        ])
        await db_session.commit()

        counts = await performance.weekly_assignment_counts(db_session, [driver.id], TODAY + timedelta(days=4))

        assert counts == {driver.id: 2}

    async def test_can_take_assignment(self, db_session, route, driver):
        db_session.add(make_assignment(route, TODAY, driver=driver))
        await db_session.commit()

        assert await performance.can_take_assignment(db_session, driver, TODAY + timedelta(days=1)) is True
        driver.weekly_cap = 1
        assert await performance.can_take_assignment(db_session, driver, TODAY + timedelta(days=1)) is False
        driver.weekly_cap = 4
        driver.is_flagged = True
        assert await performance.can_take_assignment(db_session, driver, TODAY + timedelta(days=1)) is False
