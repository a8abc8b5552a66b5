"""Pydantic schemas package."""

from shift_dispatch.schemas.assignment import (
    DriverActionRequest,
    InventoryRequest,
    CompleteShiftRequest,
    EditShiftRequest,
    CancelRequest,
    ManualAssignRequest,
    AssignmentResponse,
    ShiftResponse,
    ShiftTransitionResponse,
)
from shift_dispatch.schemas.bidding import (
    OpenWindowRequest,
    PlaceBidRequest,
    BidWindowResponse,
    BidResponse,
    BidWindowDetailResponse,
    ResolutionResponse,
    PlaceBidResponse,
    CancellationResponse,
)
from shift_dispatch.schemas.health import HealthStateResponse, HealthSnapshotResponse, ReinstateRequest
from shift_dispatch.schemas.jobs import RunJobRequest, JobRunResponse

__all__ = [
    "DriverActionRequest",
    "InventoryRequest",
    "CompleteShiftRequest",
    "EditShiftRequest",
    "CancelRequest",
    "ManualAssignRequest",
    "AssignmentResponse",
    "ShiftResponse",
    "ShiftTransitionResponse",
    "OpenWindowRequest",
    "PlaceBidRequest",
    "BidWindowResponse",
    "BidResponse",
    "BidWindowDetailResponse",
    "ResolutionResponse",
    "PlaceBidResponse",
    "CancellationResponse",
    "HealthStateResponse",
    "HealthSnapshotResponse",
    "ReinstateRequest",
    "RunJobRequest",
    "JobRunResponse",
]
