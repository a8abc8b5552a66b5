"""
Notification database model.
Ledger of every notification the core has queued for delivery.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID


class NotificationType(str, enum.Enum):
    """Kinds of notifications sent to drivers and managers."""
    CONFIRMATION_REMINDER = "confirmation_reminder"
    SHIFT_AUTO_DROPPED = "shift_auto_dropped"
    SHIFT_CANCELLED = "shift_cancelled"
    BID_WINDOW_OPENED = "bid_window_opened"
    EMERGENCY_ROUTE_AVAILABLE = "emergency_route_available"
    BID_WON = "bid_won"
    BID_LOST = "bid_lost"
    NO_SHOW_RECORDED = "no_show_recorded"
    BID_WINDOW_UNFILLED = "bid_window_unfilled"
    STREAK_ADVANCED = "streak_advanced"
    STREAK_RESET = "streak_reset"
    CORRECTIVE_WARNING = "corrective_warning"
    ATTENDANCE_WARNING = "attendance_warning"
    SHIFT_REMINDER = "shift_reminder"
    STALE_SHIFT_REMINDER = "stale_shift_reminder"


class Notification(Base):
    """
    Notification record.
    `dedupe_key` is unique so a job rerun cannot record the same reminder twice.
    """
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    dedupe_key: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type})>"
