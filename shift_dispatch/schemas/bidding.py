"""
Pydantic schemas for bid window and bid endpoints.
"""

import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from shift_dispatch.models import BidStatus, BidWindowMode, BidWindowStatus
from shift_dispatch.schemas.assignment import AssignmentResponse


class OpenWindowRequest(BaseModel):
    """Open a bid window on an unfilled assignment."""
    assignment_id: UUID
    trigger: Optional[str] = Field(default="manual", max_length=50)
    emergency: bool = False


class PlaceBidRequest(BaseModel):
    driver_id: UUID


class BidWindowResponse(BaseModel):
    """Bid window state."""
    id: UUID
    assignment_id: UUID
    mode: BidWindowMode
    status: BidWindowStatus
    trigger: Optional[str] = None
    pay_bonus_percent: int
    opens_at: datetime.datetime
    closes_at: datetime.datetime
    winner_id: Optional[UUID] = None
    resolved_at: Optional[datetime.datetime] = None

    model_config = {"from_attributes": True}


class BidResponse(BaseModel):
    """Bid state."""
    id: UUID
    bid_window_id: UUID
    assignment_id: UUID
    driver_id: UUID
    score: Optional[float] = None
    status: BidStatus
    bid_at: datetime.datetime
    window_closes_at: datetime.datetime
    resolved_at: Optional[datetime.datetime] = None

    model_config = {"from_attributes": True}


class BidWindowDetailResponse(BaseModel):
    """Window with all of its bids."""
    window: BidWindowResponse
    bids: List[BidResponse]


class ResolutionResponse(BaseModel):
    """Outcome of resolving a window."""
    window: BidWindowResponse
    winner: Optional[BidResponse] = None
    bids: List[BidResponse]
    changed: bool


class PlaceBidResponse(BaseModel):
    """Recorded bid; instant and emergency windows include their resolution."""
    bid: BidResponse
    window: BidWindowResponse
    resolution: Optional[ResolutionResponse] = None


class CancellationResponse(BaseModel):
    """Cancelled assignment and the replacement window, if one opened."""
    assignment: AssignmentResponse
    replacement: Optional[AssignmentResponse] = None
    bid_window: Optional[BidWindowResponse] = None
