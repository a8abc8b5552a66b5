"""
BidWindow database model.
A time-boxed episode during which drivers may bid on a vacant assignment.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID, enum_type


class BidWindowStatus(str, enum.Enum):
    """Status of a bid window."""
    OPEN = "open"
    CLOSED = "closed"
    RESOLVED = "resolved"


class BidWindowMode(str, enum.Enum):
    """How a window picks its winner."""
    COMPETITIVE = "competitive"
    INSTANT = "instant"
    EMERGENCY = "emergency"


class BidWindow(Base):
    """
    BidWindow model.
    At most one open window per assignment; a resolved window has exactly one
    winner.
    """
    __tablename__ = "bid_windows"
    __table_args__ = (
        Index(
            "uq_bid_windows_open_assignment",
            "assignment_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        Index("ix_bid_windows_status_closes_at", "status", "closes_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mode: Mapped[BidWindowMode] = mapped_column(
        enum_type(BidWindowMode, "bid_window_mode"),
        nullable=False,
        default=BidWindowMode.COMPETITIVE,
    )
    status: Mapped[BidWindowStatus] = mapped_column(
        enum_type(BidWindowStatus, "bid_window_status"),
        nullable=False,
        default=BidWindowStatus.OPEN,
    )
    # Free-form cause: cancellation, auto_drop, no_show, manual
    trigger: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    pay_bonus_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opens_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    closes_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    winner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        GUID(),
        ForeignKey("drivers.id"),
        nullable=True,
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<BidWindow(id={self.id}, mode={self.mode}, status={self.status})>"
