"""
Assignment lifecycle endpoints.
Thin wrappers: validate input, open a unit of work, call the lifecycle.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.database import UnitOfWork, get_db
from shift_dispatch.schemas.assignment import (
    AssignmentResponse,
    CancelRequest,
    CompleteShiftRequest,
    DriverActionRequest,
    EditShiftRequest,
    InventoryRequest,
    ManualAssignRequest,
    ShiftResponse,
    ShiftTransitionResponse,
)
from shift_dispatch.schemas.bidding import BidWindowResponse, CancellationResponse
from shift_dispatch.services import assignment_lifecycle as lifecycle
from shift_dispatch.services.bid_windows import assign_manually, cancel_and_reopen
from shift_dispatch.services.context import DispatchContext, get_context

router = APIRouter(prefix="/assignments", tags=["Assignments"])


async def _transition_response(db: AsyncSession, shift) -> ShiftTransitionResponse:
    assignment = await lifecycle.get_assignment(db, shift.assignment_id)
    return ShiftTransitionResponse(
        assignment=AssignmentResponse.model_validate(assignment),
        shift=ShiftResponse.model_validate(shift),
    )


@router.get(
    "/{assignment_id}",
    response_model=AssignmentResponse,
    summary="Get assignment",
)
async def get_assignment_endpoint(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> AssignmentResponse:
    assignment = await lifecycle.get_assignment(db, assignment_id)
    return AssignmentResponse.model_validate(assignment)


@router.post(
    "/{assignment_id}/confirm",
    response_model=AssignmentResponse,
    summary="Confirm shift",
    description="Confirm an upcoming shift inside its confirmation window.",
)
async def confirm_endpoint(
    assignment_id: UUID,
    request: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> AssignmentResponse:
    async with UnitOfWork(db) as uow:
        assignment = await lifecycle.confirm_assignment(uow, ctx, assignment_id, request.driver_id)
    return AssignmentResponse.model_validate(assignment)


@router.post(
    "/{assignment_id}/arrive",
    response_model=ShiftTransitionResponse,
    summary="Check in for shift",
)
async def arrive_endpoint(
    assignment_id: UUID,
    request: DriverActionRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> ShiftTransitionResponse:
    async with UnitOfWork(db) as uow:
        shift = await lifecycle.arrive(uow, ctx, assignment_id, request.driver_id)
    return await _transition_response(db, shift)


@router.post(
    "/{assignment_id}/inventory",
    response_model=ShiftTransitionResponse,
    summary="Record starting inventory",
)
async def inventory_endpoint(
    assignment_id: UUID,
    request: InventoryRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> ShiftTransitionResponse:
    async with UnitOfWork(db) as uow:
        shift = await lifecycle.record_inventory(
            uow, ctx, assignment_id, request.driver_id, request.parcels_start
        )
    return await _transition_response(db, shift)


@router.post(
    "/{assignment_id}/complete",
    response_model=ShiftTransitionResponse,
    summary="Complete shift",
    description="Record returns and close the shift; counts stay editable for a short window.",
)
async def complete_endpoint(
    assignment_id: UUID,
    request: CompleteShiftRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> ShiftTransitionResponse:
    async with UnitOfWork(db) as uow:
        shift = await lifecycle.complete_shift(
            uow, ctx, assignment_id, request.driver_id,
            parcels_returned=request.parcels_returned,
            excepted_returns=request.excepted_returns,
            exception_notes=request.exception_notes,
        )
    return await _transition_response(db, shift)


@router.patch(
    "/{assignment_id}/shift",
    response_model=ShiftTransitionResponse,
    summary="Edit completed shift",
)
async def edit_endpoint(
    assignment_id: UUID,
    request: EditShiftRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> ShiftTransitionResponse:
    async with UnitOfWork(db) as uow:
        shift = await lifecycle.edit_shift(
            uow, ctx, assignment_id, request.driver_id,
            parcels_start=request.parcels_start,
            parcels_returned=request.parcels_returned,
            excepted_returns=request.excepted_returns,
            exception_notes=request.exception_notes,
        )
    return await _transition_response(db, shift)


@router.post(
    "/{assignment_id}/cancel",
    response_model=CancellationResponse,
    summary="Cancel shift",
    description="Cancel a scheduled or active shift and open a replacement bid window.",
)
async def cancel_endpoint(
    assignment_id: UUID,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> CancellationResponse:
    async with UnitOfWork(db) as uow:
        outcome = await cancel_and_reopen(uow, ctx, assignment_id, request.driver_id, request.reason)
    replacement = outcome.vacancy.replacement
    return CancellationResponse(
        assignment=AssignmentResponse.model_validate(outcome.vacancy.cancelled),
        replacement=AssignmentResponse.model_validate(replacement) if replacement else None,
        bid_window=BidWindowResponse.model_validate(outcome.window) if outcome.window else None,
    )


@router.post(
    "/{assignment_id}/assign",
    response_model=AssignmentResponse,
    summary="Assign driver manually",
)
async def assign_endpoint(
    assignment_id: UUID,
    request: ManualAssignRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> AssignmentResponse:
    async with UnitOfWork(db) as uow:
        assignment = await assign_manually(
            uow, ctx, assignment_id, request.driver_id, request.manager_id
        )
    return AssignmentResponse.model_validate(assignment)
