"""
JobRun database model.
One record per execution of a periodic job.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID, enum_type


class JobRunStatus(str, enum.Enum):
    """Status of a job run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobRun(Base):
    """
    JobRun model.
    A failed run lists the entities whose unit of work rolled back.
    """
    __tablename__ = "job_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[JobRunStatus] = mapped_column(
        enum_type(JobRunStatus, "job_run_status"),
        nullable=False,
        default=JobRunStatus.PENDING,
    )
    summary: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    failed_entity_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<JobRun(id={self.id}, job={self.job_name}, status={self.status})>"
