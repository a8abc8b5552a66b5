"""
Cron trigger endpoints for periodic jobs.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shift_dispatch.core.errors import NotFoundError
from shift_dispatch.database import get_db, get_session_factory
from shift_dispatch.schemas.jobs import JobRunResponse, RunJobRequest
from shift_dispatch.services.context import DispatchContext, get_context
from shift_dispatch.services.jobs import TransitionOrchestrator, get_job_run

router = APIRouter(prefix="/cron", tags=["Jobs"])


@router.post(
    "/{job_name}",
    response_model=JobRunResponse,
    summary="Run periodic job",
    description="Run a named job once. A failed run is reported, never retried.",
)
async def run_job_endpoint(
    job_name: str,
    request: Optional[RunJobRequest] = Body(default=None),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    ctx: DispatchContext = Depends(get_context),
) -> JobRunResponse:
    orchestrator = TransitionOrchestrator(session_factory, ctx)
    run = await orchestrator.run(job_name, as_of=request.as_of if request else None)
    return JobRunResponse.model_validate(run)


@router.get(
    "/runs/{run_id}",
    response_model=JobRunResponse,
    summary="Get job run",
)
async def get_job_run_endpoint(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> JobRunResponse:
    run = await get_job_run(db, run_id)
    if run is None:
        raise NotFoundError("JobRun", run_id)
    return JobRunResponse.model_validate(run)
