"""
Pydantic schemas for periodic job endpoints.
"""

import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from shift_dispatch.models import JobRunStatus


class RunJobRequest(BaseModel):
    """Optional evaluation date for health jobs (defaults to today)."""
    as_of: Optional[datetime.date] = None


class JobRunResponse(BaseModel):
    """Recorded job run."""
    id: UUID
    job_name: str
    status: JobRunStatus
    summary: Dict[str, Any]
    failed_entity_ids: List[str]
    error_message: Optional[str] = None
    started_at: Optional[datetime.datetime] = None
    finished_at: Optional[datetime.datetime] = None

    model_config = {"from_attributes": True}
