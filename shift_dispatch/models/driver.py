"""
Driver database model.
Stores the driver profile facts the bid scorer and health ledger read.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, Boolean, DateTime, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID


class Driver(Base):
    """
    Driver model.
    `created_at` is the tenure origin; `preferred_route_ids` is ordered by
    preference, most preferred first.
    """
    __tablename__ = "drivers"

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    preferred_route_ids: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    # Attendance flag; flagged drivers cannot take new assignments
    is_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    flag_warning_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    weekly_cap: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    # Set by a manager to lift a hard-stop pool suspension
    health_reinstated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Driver(id={self.id}, name={self.name})>"
