"""
Assignment database model.
One driver-route-date triple, or an unfilled placeholder awaiting a driver.
"""

import enum
import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID, enum_type


class AssignmentStatus(str, enum.Enum):
    """Lifecycle status of an assignment."""
    UNFILLED = "unfilled"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AssignedBy(str, enum.Enum):
    """How the current driver came to hold the assignment."""
    ALGORITHM = "algorithm"
    MANAGER = "manager"
    BID = "bid"


class CancelType(str, enum.Enum):
    """Why an assignment was cancelled."""
    DRIVER = "driver"
    LATE = "late"
    AUTO_DROP = "auto_drop"
    NO_SHOW = "no_show"


class Assignment(Base):
    """
    Assignment model.
    Never deleted: vacated assignments stay `cancelled` and a new `unfilled`
    assignment for the same route and date carries the replacement bid window.
    """
    __tablename__ = "assignments"
    __table_args__ = (
        Index(
            "uq_assignments_driver_date_active",
            "driver_id",
            "date",
            unique=True,
            postgresql_where=text("driver_id IS NOT NULL AND status <> 'cancelled'"),
            sqlite_where=text("driver_id IS NOT NULL AND status <> 'cancelled'"),
        ),
        Index("ix_assignments_status_date", "status", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    route_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("routes.id"),
        nullable=False,
        index=True,
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("warehouses.id"),
        nullable=False,
        index=True,
    )
    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(),
        ForeignKey("drivers.id"),
        nullable=True,
        index=True,
    )
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[AssignmentStatus] = mapped_column(
        enum_type(AssignmentStatus, "assignment_status"),
        nullable=False,
        default=AssignmentStatus.SCHEDULED,
    )
    assigned_by: Mapped[Optional[AssignedBy]] = mapped_column(
        enum_type(AssignedBy, "assigned_by"),
        nullable=True,
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancel_type: Mapped[Optional[CancelType]] = mapped_column(
        enum_type(CancelType, "cancel_type"),
        nullable=True,
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Assignment(id={self.id}, date={self.date}, status={self.status})>"
