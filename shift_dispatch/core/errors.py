"""
Error taxonomy for dispatch operations.

Validation and conflict errors are returned to callers; job-execution errors
are only visible to operators through JobRun records and logs.
"""

from typing import Iterable, List, Optional


class DispatchError(Exception):
    """Base class for all domain errors."""

    code = "dispatch_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DomainValidationError(DispatchError, ValueError):
    """Request is inconsistent with the entity's current state or a numeric bound."""

    code = "validation_error"


class ConflictError(DispatchError):
    """A concurrent transition already changed the entity."""

    code = "conflict"


class NotFoundError(DispatchError):
    """Referenced entity does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class JobExecutionError(DispatchError):
    """A periodic job finished with failed units."""

    code = "job_failed"

    def __init__(
        self,
        job_name: str,
        message: str,
        failed_entity_ids: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(f"{job_name}: {message}")
        self.job_name = job_name
        self.failed_entity_ids: List[str] = list(failed_entity_ids or [])
