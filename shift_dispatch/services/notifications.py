"""
Notification dispatch.

The core records every notification in the same unit of work as the
transition that caused it, then hands it to the dispatcher once the
transition has committed. Delivery is best-effort: a dispatcher failure is
logged and never undoes the committed transition.
"""

import logging
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Delivery channel (push, email, SMS) provided by a collaborator."""

    async def notify(self, user_id: uuid.UUID, type: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: logs the hand-off; the record is already persisted."""

    async def notify(self, user_id: uuid.UUID, type: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification {type} -> {user_id}: {payload}")


class InMemoryNotificationDispatcher:
    """Collects delivered notifications; used by tests and local runs."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def notify(self, user_id: uuid.UUID, type: str, payload: Dict[str, Any]) -> None:
        self.sent.append({"user_id": user_id, "type": type, "payload": payload})

    def of_type(self, type: NotificationType) -> List[Dict[str, Any]]:
        return [n for n in self.sent if n["type"] == type.value]


def to_jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def queue_notification(
    uow: UnitOfWork,
    dispatcher: NotificationDispatcher,
    user_id: uuid.UUID,
    type: NotificationType,
    payload: Optional[Dict[str, Any]] = None,
    dedupe_key: Optional[str] = None,
) -> Notification:
    """
    Record a notification and schedule its delivery for after commit.

    Args:
        uow: Unit of work the notification belongs to
        dispatcher: Delivery channel
        user_id: Recipient
        type: Notification type
        payload: Template data (UUIDs, dates and enums are serialized)
        dedupe_key: Optional idempotency key; unique across all notifications

    Returns:
        The pending Notification record
    """
    body = to_jsonable(payload or {})
    record = Notification(
        user_id=user_id,
        type=type.value,
        payload=body,
        dedupe_key=dedupe_key,
    )
    uow.session.add(record)

    async def deliver() -> None:
        await dispatcher.notify(user_id, type.value, body)

    uow.after_commit(deliver)
    return record


async def notification_exists(db: AsyncSession, dedupe_key: str) -> bool:
    """Check whether a notification with this idempotency key was already recorded."""
    result = await db.execute(
        select(Notification.id).where(Notification.dedupe_key == dedupe_key)
    )
    return result.scalar_one_or_none() is not None
