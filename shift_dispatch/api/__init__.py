"""API routers package initialization."""

from shift_dispatch.api.assignments import router as assignments_router
from shift_dispatch.api.bidding import router as bidding_router
from shift_dispatch.api.health import router as health_router
from shift_dispatch.api.jobs import router as jobs_router

__all__ = [
    "assignments_router",
    "bidding_router",
    "health_router",
    "jobs_router",
]
