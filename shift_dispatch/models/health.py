"""
Health database models.
HealthSnapshot is the append-only daily ledger; HealthState is the current
projection rebuilt from history by each evaluation run.
"""

import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import Integer, Float, Boolean, Date, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID


class HealthSnapshot(Base):
    """
    Daily health snapshot per driver.
    Never mutated after insert; one per (driver, evaluation date).
    """
    __tablename__ = "health_snapshots"
    __table_args__ = (
        UniqueConstraint("driver_id", "evaluated_on", name="uq_health_snapshots_driver_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("drivers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    evaluated_on: Mapped[date] = mapped_column(Date, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    attendance_rate: Mapped[float] = mapped_column(Float, nullable=False)
    completion_rate: Mapped[float] = mapped_column(Float, nullable=False)
    late_cancel_count_30d: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    no_show_count_30d: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hard_stop_triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reasons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # {category: {"count": n, "points": p}}
    contributions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<HealthSnapshot(driver_id={self.driver_id}, on={self.evaluated_on}, score={self.score})>"


class HealthState(Base):
    """Current health summary per driver."""
    __tablename__ = "health_states"

    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("drivers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    current_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak_weeks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stars: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_qualified_week: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    next_milestone_stars: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    pool_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_manager_intervention: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    last_score_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<HealthState(driver_id={self.driver_id}, score={self.current_score}, stars={self.stars})>"
