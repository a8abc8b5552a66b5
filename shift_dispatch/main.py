"""
Shift Dispatch Service - FastAPI Application
Main entry point for the API server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shift_dispatch.config import get_settings
from shift_dispatch.api import (
    assignments_router,
    bidding_router,
    health_router,
    jobs_router,
)
from shift_dispatch.core.errors import (
    ConflictError,
    DispatchError,
    DomainValidationError,
    NotFoundError,
)


settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    logger.info(f"Starting {settings.app_title} v{settings.app_version}")

    if settings.create_tables_on_startup:
        from shift_dispatch.database import init_db
        await init_db()
        logger.info("Database tables initialized")

    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.app_title,
    version=settings.app_version,
    description="""
    ## Shift Dispatch Service API

    Daily shift assignment for delivery drivers.

    ### Features
    - **Assignment Lifecycle**: confirm, arrive, record inventory, complete, cancel
    - **Bid Windows**: competitive, instant and emergency windows for vacant shifts
    - **Health Ledger**: reliability score, hard stops and weekly star streaks
    - **Periodic Jobs**: reminders, auto-drops, no-show detection, window closing

    ### Main Endpoints
    - `POST /api/v1/assignments/{id}/confirm` - Confirm a shift
    - `POST /api/v1/bid-windows/{id}/bids` - Bid on a vacant shift
    - `GET /api/v1/drivers/{id}/health` - Driver health summary
    - `POST /api/v1/cron/{job_name}` - Run a periodic job
    """,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """Map domain errors onto HTTP status codes."""
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ConflictError):
        status_code = 409
    elif isinstance(exc, DomainValidationError):
        status_code = 400
    else:
        status_code = 500
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.include_router(assignments_router, prefix=settings.api_prefix)
app.include_router(bidding_router, prefix=settings.api_prefix)
app.include_router(health_router, prefix=settings.api_prefix)
app.include_router(jobs_router, prefix=settings.api_prefix)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": settings.app_title,
        "version": settings.app_version,
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
