"""
Pydantic schemas for driver health endpoints.
"""

import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class HealthStateResponse(BaseModel):
    """Current health summary."""
    driver_id: UUID
    current_score: int
    streak_weeks: int
    stars: int
    last_qualified_week: Optional[datetime.date] = None
    next_milestone_stars: int
    pool_eligible: bool
    requires_manager_intervention: bool
    last_score_reset_at: Optional[datetime.datetime] = None
    updated_at: datetime.datetime

    model_config = {"from_attributes": True}


class HealthSnapshotResponse(BaseModel):
    """Daily snapshot."""
    driver_id: UUID
    evaluated_on: datetime.date
    score: int
    attendance_rate: float
    completion_rate: float
    late_cancel_count_30d: int
    no_show_count_30d: int
    hard_stop_triggered: bool
    reasons: List[str]
    contributions: Dict[str, Dict[str, int]]

    model_config = {"from_attributes": True}


class ReinstateRequest(BaseModel):
    manager_id: UUID
