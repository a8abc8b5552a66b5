"""Models package initialization - imports all models for easy access."""

from shift_dispatch.models.driver import Driver
from shift_dispatch.models.route import Warehouse, Route
from shift_dispatch.models.assignment import Assignment, AssignmentStatus, AssignedBy, CancelType
from shift_dispatch.models.shift import Shift
from shift_dispatch.models.bid_window import BidWindow, BidWindowStatus, BidWindowMode
from shift_dispatch.models.bid import Bid, BidStatus
from shift_dispatch.models.health import HealthSnapshot, HealthState
from shift_dispatch.models.notification import Notification, NotificationType
from shift_dispatch.models.job_run import JobRun, JobRunStatus
from shift_dispatch.models.audit_log import AuditLog, ActorType

__all__ = [
    "Driver",
    "Warehouse",
    "Route",
    "Assignment",
    "AssignmentStatus",
    "AssignedBy",
    "CancelType",
    "Shift",
    "BidWindow",
    "BidWindowStatus",
    "BidWindowMode",
    "Bid",
    "BidStatus",
    "HealthSnapshot",
    "HealthState",
    "Notification",
    "NotificationType",
    "JobRun",
    "JobRunStatus",
    "AuditLog",
    "ActorType",
]
