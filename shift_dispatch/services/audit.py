"""
Audit trail helpers.
"""

import uuid
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.models import AuditLog, ActorType
from shift_dispatch.services.notifications import to_jsonable


def record_audit(
    db: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    actor_id: Optional[uuid.UUID] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Add an audit entry to the current transaction; no actor means the system acted."""
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_type=ActorType.USER if actor_id else ActorType.SYSTEM,
        actor_id=actor_id,
        changes=to_jsonable(changes) if changes else None,
    )
    db.add(entry)
    return entry
