"""
Driver health endpoints.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.database import UnitOfWork, get_db
from shift_dispatch.schemas.health import HealthSnapshotResponse, HealthStateResponse, ReinstateRequest
from shift_dispatch.services import health_ledger
from shift_dispatch.services.context import DispatchContext, get_context

router = APIRouter(prefix="/drivers", tags=["Health"])


@router.get(
    "/{driver_id}/health",
    response_model=Optional[HealthStateResponse],
    summary="Get health state",
    description="Current health summary; null for drivers still onboarding.",
)
async def get_health_endpoint(
    driver_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Optional[HealthStateResponse]:
    state = await health_ledger.get_health_state(db, driver_id)
    return HealthStateResponse.model_validate(state) if state else None


@router.get(
    "/{driver_id}/health/snapshots",
    response_model=List[HealthSnapshotResponse],
    summary="List health snapshots",
)
async def list_snapshots_endpoint(
    driver_id: UUID,
    limit: int = Query(default=30, ge=1, le=365, description="Most recent snapshots to return"),
    db: AsyncSession = Depends(get_db),
) -> List[HealthSnapshotResponse]:
    snapshots = await health_ledger.list_snapshots(db, driver_id, limit)
    return [HealthSnapshotResponse.model_validate(s) for s in snapshots]


@router.post(
    "/{driver_id}/health/reinstate",
    response_model=Optional[HealthStateResponse],
    summary="Reinstate driver",
    description="Manager lifts a hard-stop suspension and the state is recomputed.",
)
async def reinstate_endpoint(
    driver_id: UUID,
    request: ReinstateRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> Optional[HealthStateResponse]:
    async with UnitOfWork(db) as uow:
        refresh = await health_ledger.reinstate_driver(uow, ctx, driver_id, request.manager_id)
    return HealthStateResponse.model_validate(refresh.state) if refresh.state else None
