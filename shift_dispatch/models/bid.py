"""
Bid database model.
"""

import enum
import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import Float, Date, DateTime, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID, enum_type


class BidStatus(str, enum.Enum):
    """Status of a bid."""
    PENDING = "pending"
    WON = "won"
    LOST = "lost"


class Bid(Base):
    """
    Bid model, one per (window, driver).
    `assignment_date` is snapshotted so the store can enforce a single pending
    bid per driver per day.
    """
    __tablename__ = "bids"
    __table_args__ = (
        UniqueConstraint("bid_window_id", "driver_id", name="uq_bids_window_driver"),
        Index(
            "uq_bids_pending_driver_date",
            "driver_id",
            "assignment_date",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    bid_window_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("bid_windows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignment_date: Mapped[date] = mapped_column(Date, nullable=False)
    driver_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("drivers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[BidStatus] = mapped_column(
        enum_type(BidStatus, "bid_status"),
        nullable=False,
        default=BidStatus.PENDING,
    )
    bid_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    window_closes_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Bid(id={self.id}, driver_id={self.driver_id}, status={self.status})>"
