"""
Dispatch policy.

Immutable bundle of every constant the health ledger, bid scorer, lifecycle
guards and periodic jobs read. Built from Settings in production; tests build
their own with `dataclasses.replace`.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from shift_dispatch.config import Settings, get_settings


@dataclass(frozen=True)
class ShiftPolicy:
    timezone: str = "America/Toronto"
    start_hour_local: int = 7
    arrival_deadline_hour_local: int = 9
    arrival_early_hours: int = 2
    completion_edit_window_hours: int = 1
    late_cover_arrival_grace_minutes: int = 90


@dataclass(frozen=True)
class ConfirmationPolicy:
    window_days_before_shift: int = 7
    deadline_hours_before_shift: int = 48
    reminder_lead_days: int = 3


@dataclass(frozen=True)
class BidScoreWeights:
    health: float = 0.45
    familiarity: float = 0.25
    seniority: float = 0.15
    preference: float = 0.15


@dataclass(frozen=True)
class BiddingPolicy:
    instant_mode_cutoff_hours: int = 24
    emergency_bonus_percent: int = 20
    emergency_window_minutes: int = 120
    familiarity_normalization_cap: int = 20
    health_normalization_cap: int = 96
    seniority_cap_months: int = 12
    preference_top_n: int = 3
    weights: BidScoreWeights = field(default_factory=BidScoreWeights)


@dataclass(frozen=True)
class HealthPoints:
    confirmed_on_time: int = 1
    arrived_on_time: int = 2
    completed_shift: int = 2
    high_delivery: int = 1
    bid_pickup: int = 2
    urgent_pickup: int = 4
    auto_drop: int = -12
    late_cancel: int = -48


@dataclass(frozen=True)
class QualifyingWeek:
    min_attendance_rate: float = 1.0
    min_completion_rate: float = 0.95
    max_no_shows: int = 0
    max_late_cancellations: int = 0


@dataclass(frozen=True)
class HealthPolicy:
    points: HealthPoints = field(default_factory=HealthPoints)
    qualifying_week: QualifyingWeek = field(default_factory=QualifyingWeek)
    tier_threshold: int = 96
    rolling_window_days: int = 30
    late_cancel_threshold: int = 2
    high_delivery_rate: float = 0.95
    corrective_completion_threshold: float = 0.80
    max_stars: int = 4

    @property
    def hard_stop_score_cap(self) -> int:
        """Displayed score ceiling while a hard stop is active."""
        return self.tier_threshold - 1


@dataclass(frozen=True)
class FlaggingPolicy:
    pre_threshold_shift_count: int = 10
    early_attendance_threshold: float = 0.8
    attendance_threshold: float = 0.7
    reward_min_shifts: int = 20
    reward_attendance_threshold: float = 0.95
    grace_period_days: int = 7
    default_weekly_cap: int = 4
    reward_weekly_cap: int = 6
    min_weekly_cap: int = 1

    def threshold_for(self, total_shifts: int) -> float:
        """Attendance floor for a driver with `total_shifts` on record."""
        if total_shifts < self.pre_threshold_shift_count:
            return self.early_attendance_threshold
        return self.attendance_threshold


@dataclass(frozen=True)
class JobPolicy:
    evaluation_batch_size: int = 50
    stale_shift_hours: int = 12


@dataclass(frozen=True)
class DispatchPolicy:
    shift: ShiftPolicy = field(default_factory=ShiftPolicy)
    confirmation: ConfirmationPolicy = field(default_factory=ConfirmationPolicy)
    bidding: BiddingPolicy = field(default_factory=BiddingPolicy)
    health: HealthPolicy = field(default_factory=HealthPolicy)
    flagging: FlaggingPolicy = field(default_factory=FlaggingPolicy)
    jobs: JobPolicy = field(default_factory=JobPolicy)


def policy_from_settings(settings: Optional[Settings] = None) -> DispatchPolicy:
    """
    Assemble a DispatchPolicy from flat settings fields.

    Args:
        settings: Settings to read (defaults to the cached application settings)

    Returns:
        Frozen DispatchPolicy
    """
    s = settings or get_settings()
    return DispatchPolicy(
        shift=ShiftPolicy(
            timezone=s.timezone,
            start_hour_local=s.shift_start_hour_local,
            arrival_deadline_hour_local=s.arrival_deadline_hour_local,
            arrival_early_hours=s.arrival_early_hours,
            completion_edit_window_hours=s.completion_edit_window_hours,
            late_cover_arrival_grace_minutes=s.late_cover_arrival_grace_minutes,
        ),
        confirmation=ConfirmationPolicy(
            window_days_before_shift=s.confirmation_window_days_before_shift,
            deadline_hours_before_shift=s.confirmation_deadline_hours_before_shift,
            reminder_lead_days=s.confirmation_reminder_lead_days,
        ),
        bidding=BiddingPolicy(
            instant_mode_cutoff_hours=s.instant_mode_cutoff_hours,
            emergency_bonus_percent=s.emergency_bonus_percent,
            emergency_window_minutes=s.emergency_window_minutes,
            familiarity_normalization_cap=s.familiarity_normalization_cap,
            health_normalization_cap=s.health_normalization_cap,
            seniority_cap_months=s.seniority_cap_months,
            preference_top_n=s.preference_top_n,
            weights=BidScoreWeights(
                health=s.bid_weight_health,
                familiarity=s.bid_weight_familiarity,
                seniority=s.bid_weight_seniority,
                preference=s.bid_weight_preference,
            ),
        ),
        health=HealthPolicy(
            points=HealthPoints(
                confirmed_on_time=s.health_points_confirmed_on_time,
                arrived_on_time=s.health_points_arrived_on_time,
                completed_shift=s.health_points_completed_shift,
                high_delivery=s.health_points_high_delivery,
                bid_pickup=s.health_points_bid_pickup,
                urgent_pickup=s.health_points_urgent_pickup,
                auto_drop=s.health_points_auto_drop,
                late_cancel=s.health_points_late_cancel,
            ),
            qualifying_week=QualifyingWeek(
                min_attendance_rate=s.qualifying_min_attendance_rate,
                min_completion_rate=s.qualifying_min_completion_rate,
                max_no_shows=s.qualifying_max_no_shows,
                max_late_cancellations=s.qualifying_max_late_cancellations,
            ),
            tier_threshold=s.health_tier_threshold,
            rolling_window_days=s.health_rolling_window_days,
            late_cancel_threshold=s.health_late_cancel_threshold,
            high_delivery_rate=s.health_high_delivery_rate,
            corrective_completion_threshold=s.health_corrective_completion_threshold,
            max_stars=s.health_max_stars,
        ),
        flagging=FlaggingPolicy(
            pre_threshold_shift_count=s.flag_pre_threshold_shift_count,
            early_attendance_threshold=s.flag_early_attendance_threshold,
            attendance_threshold=s.flag_attendance_threshold,
            reward_min_shifts=s.flag_reward_min_shifts,
            reward_attendance_threshold=s.flag_reward_attendance_threshold,
            grace_period_days=s.flag_grace_period_days,
            default_weekly_cap=s.default_weekly_cap,
            reward_weekly_cap=s.reward_weekly_cap,
            min_weekly_cap=s.min_weekly_cap,
        ),
        jobs=JobPolicy(
            evaluation_batch_size=s.job_evaluation_batch_size,
            stale_shift_hours=s.job_stale_shift_hours,
        ),
    )


@lru_cache()
def get_policy() -> DispatchPolicy:
    """Get cached policy built from application settings."""
    return policy_from_settings()
