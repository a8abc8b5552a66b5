"""
Injectable clock and local shift calendar.

All persisted instants are naive UTC datetimes (matching the `datetime.utcnow`
column defaults). Assignment dates are local calendar dates in the single
operating timezone; ShiftCalendar converts between the two.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from shift_dispatch.core.policy import ConfirmationPolicy, ShiftPolicy


class Clock(Protocol):
    """Source of the current instant (naive UTC)."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock used in production."""

    def now(self) -> datetime:
        return datetime.utcnow()


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, instant: datetime) -> None:
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, delta: timedelta) -> None:
        self._instant = self._instant + delta


class ShiftCalendar:
    """
    Local-time rules for shifts in the operating region.

    Args:
        shift: Shift timing policy (timezone, start and arrival hours)
        confirmation: Confirmation window policy
    """

    def __init__(self, shift: ShiftPolicy, confirmation: ConfirmationPolicy) -> None:
        self.shift = shift
        self.confirmation = confirmation
        self.tz = ZoneInfo(shift.timezone)

    def to_utc(self, local_date: date, hour: int) -> datetime:
        """Naive UTC instant of `hour:00` local time on `local_date`."""
        local = datetime.combine(local_date, time(hour=hour), tzinfo=self.tz)
        return local.astimezone(timezone.utc).replace(tzinfo=None)

    def local_date(self, instant: datetime) -> date:
        """Local calendar date of a naive UTC instant."""
        return instant.replace(tzinfo=timezone.utc).astimezone(self.tz).date()

    def shift_start(self, shift_date: date) -> datetime:
        return self.to_utc(shift_date, self.shift.start_hour_local)

    def arrival_deadline(self, shift_date: date) -> datetime:
        return self.to_utc(shift_date, self.shift.arrival_deadline_hour_local)

    def arrival_deadline_for(self, shift_date: date, assigned_at: Optional[datetime] = None) -> datetime:
        """
        Arrival deadline for one assignment.

        A driver assigned after the regular deadline (an emergency cover) gets
        a grace period measured from the moment they were assigned.
        """
        deadline = self.arrival_deadline(shift_date)
        if assigned_at is not None and assigned_at >= deadline:
            return assigned_at + timedelta(minutes=self.shift.late_cover_arrival_grace_minutes)
        return deadline

    def arrival_opens(self, shift_date: date) -> datetime:
        return self.shift_start(shift_date) - timedelta(hours=self.shift.arrival_early_hours)

    def confirmation_opens(self, shift_date: date) -> datetime:
        return self.shift_start(shift_date) - timedelta(
            days=self.confirmation.window_days_before_shift
        )

    def confirmation_deadline(self, shift_date: date) -> datetime:
        return self.shift_start(shift_date) - timedelta(
            hours=self.confirmation.deadline_hours_before_shift
        )

    def edit_window(self, completed_at: datetime) -> datetime:
        return completed_at + timedelta(hours=self.shift.completion_edit_window_hours)

    def hours_until_shift(self, shift_date: date, now: datetime) -> float:
        return (self.shift_start(shift_date) - now).total_seconds() / 3600

    @staticmethod
    def week_start(day: date) -> date:
        """Monday of the week containing `day`."""
        return day - timedelta(days=day.weekday())
