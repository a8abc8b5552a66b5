"""Services package initialization."""

from shift_dispatch.services.context import DispatchContext, get_context
from shift_dispatch.services.bid_scorer import compute_bid_score, rank_bids
from shift_dispatch.services.health_ledger import compute_health, evaluate_weeks, refresh_driver_health
from shift_dispatch.services.assignment_lifecycle import Vacancy, validate_parcel_counts
from shift_dispatch.services.bid_windows import open_window, place_bid, resolve_window
from shift_dispatch.services.jobs import JOB_NAMES, TransitionOrchestrator

__all__ = [
    "DispatchContext",
    "get_context",
    "compute_bid_score",
    "rank_bids",
    "compute_health",
    "evaluate_weeks",
    "refresh_driver_health",
    "Vacancy",
    "validate_parcel_counts",
    "open_window",
    "place_bid",
    "resolve_window",
    "JOB_NAMES",
    "TransitionOrchestrator",
]
