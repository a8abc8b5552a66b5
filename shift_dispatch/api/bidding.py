"""
Bid window and bid endpoints.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.database import UnitOfWork, get_db
from shift_dispatch.schemas.bidding import (
    BidResponse,
    BidWindowDetailResponse,
    BidWindowResponse,
    OpenWindowRequest,
    PlaceBidRequest,
    PlaceBidResponse,
    ResolutionResponse,
)
from shift_dispatch.services import bid_windows
from shift_dispatch.services.context import DispatchContext, get_context

router = APIRouter(tags=["Bidding"])


def _resolution_response(outcome: bid_windows.ResolutionOutcome) -> ResolutionResponse:
    return ResolutionResponse(
        window=BidWindowResponse.model_validate(outcome.window),
        winner=BidResponse.model_validate(outcome.winner) if outcome.winner else None,
        bids=[BidResponse.model_validate(b) for b in outcome.bids],
        changed=outcome.changed,
    )


@router.post(
    "/bid-windows",
    response_model=BidWindowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open bid window",
    description="Open a bid window on an unfilled assignment; mode follows lead time.",
)
async def open_window_endpoint(
    request: OpenWindowRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> BidWindowResponse:
    async with UnitOfWork(db) as uow:
        window = await bid_windows.open_window(
            uow, ctx, request.assignment_id,
            trigger=request.trigger,
            emergency=request.emergency,
            allow_past_shift=request.emergency,
        )
    return BidWindowResponse.model_validate(window)


@router.get(
    "/bid-windows/{window_id}",
    response_model=BidWindowDetailResponse,
    summary="Get bid window with bids",
)
async def get_window_endpoint(
    window_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> BidWindowDetailResponse:
    window = await bid_windows.get_window(db, window_id)
    bids = await bid_windows.list_bids(db, window_id)
    return BidWindowDetailResponse(
        window=BidWindowResponse.model_validate(window),
        bids=[BidResponse.model_validate(b) for b in bids],
    )


@router.post(
    "/bid-windows/{window_id}/bids",
    response_model=PlaceBidResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place bid",
)
async def place_bid_endpoint(
    window_id: UUID,
    request: PlaceBidRequest,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> PlaceBidResponse:
    async with UnitOfWork(db) as uow:
        placement = await bid_windows.place_bid(uow, ctx, window_id, request.driver_id)
    return PlaceBidResponse(
        bid=BidResponse.model_validate(placement.bid),
        window=BidWindowResponse.model_validate(placement.window),
        resolution=_resolution_response(placement.resolution) if placement.resolution else None,
    )


@router.post(
    "/bid-windows/{window_id}/resolve",
    response_model=ResolutionResponse,
    summary="Resolve bid window",
    description="Pick the winner now. Resolving an already resolved window returns it unchanged.",
)
async def resolve_window_endpoint(
    window_id: UUID,
    db: AsyncSession = Depends(get_db),
    ctx: DispatchContext = Depends(get_context),
) -> ResolutionResponse:
    async with UnitOfWork(db) as uow:
        outcome = await bid_windows.resolve_window(uow, ctx, window_id)
    return _resolution_response(outcome)


@router.get(
    "/bids/{bid_id}",
    response_model=BidResponse,
    summary="Get bid",
)
async def get_bid_endpoint(
    bid_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> BidResponse:
    return BidResponse.model_validate(await bid_windows.get_bid(db, bid_id))
