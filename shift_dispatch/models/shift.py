"""
Shift database model.
Operational evidence for a single assignment: arrival, parcel counts, completion.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID


class Shift(Base):
    """
    Shift model, at most one per assignment.
    `parcels_delivered` is always derived as start - returned.
    """
    __tablename__ = "shifts"

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    assignment_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    arrived_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    editable_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    parcels_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    parcels_delivered: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    parcels_returned: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    excepted_returns: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    exception_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Shift(id={self.id}, assignment_id={self.assignment_id})>"
