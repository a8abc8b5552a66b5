"""
Pydantic schemas for assignment lifecycle endpoints.
"""

import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from shift_dispatch.models import AssignmentStatus, AssignedBy, CancelType


# ==================== Requests ====================

class DriverActionRequest(BaseModel):
    """Driver-initiated transition (confirm, arrive)."""
    driver_id: UUID


class InventoryRequest(BaseModel):
    """Parcel count loaded at shift start."""
    driver_id: UUID
    parcels_start: int = Field(..., ge=0, le=10000)


class CompleteShiftRequest(BaseModel):
    """Shift completion counts."""
    driver_id: UUID
    parcels_returned: int = Field(..., ge=0, le=10000)
    excepted_returns: int = Field(default=0, ge=0, le=10000)
    exception_notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("exception_notes")
    @classmethod
    def strip_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None


class EditShiftRequest(BaseModel):
    """Corrections to a completed shift; omitted fields keep their value."""
    driver_id: UUID
    parcels_start: Optional[int] = Field(default=None, ge=0, le=10000)
    parcels_returned: Optional[int] = Field(default=None, ge=0, le=10000)
    excepted_returns: Optional[int] = Field(default=None, ge=0, le=10000)
    exception_notes: Optional[str] = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    """Driver cancellation."""
    driver_id: UUID
    reason: Optional[str] = Field(default=None, max_length=255)


class ManualAssignRequest(BaseModel):
    """Manager fills an unfilled assignment."""
    driver_id: UUID
    manager_id: UUID


# ==================== Responses ====================

class AssignmentResponse(BaseModel):
    """Assignment state."""
    id: UUID
    route_id: UUID
    warehouse_id: UUID
    driver_id: Optional[UUID] = None
    date: datetime.date
    status: AssignmentStatus
    assigned_by: Optional[AssignedBy] = None
    assigned_at: Optional[datetime.datetime] = None
    confirmed_at: Optional[datetime.datetime] = None
    cancel_type: Optional[CancelType] = None
    cancelled_at: Optional[datetime.datetime] = None

    model_config = {"from_attributes": True}


class ShiftResponse(BaseModel):
    """Operational shift record."""
    assignment_id: UUID
    arrived_at: Optional[datetime.datetime] = None
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    editable_until: Optional[datetime.datetime] = None
    parcels_start: Optional[int] = None
    parcels_delivered: Optional[int] = None
    parcels_returned: Optional[int] = None
    excepted_returns: int = 0
    exception_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class ShiftTransitionResponse(BaseModel):
    """Assignment and shift after an arrive/inventory/complete/edit."""
    assignment: AssignmentResponse
    shift: ShiftResponse
