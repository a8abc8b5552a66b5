"""
Dispatch context: the policy, clock and notification channel every
operation runs against.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional

from shift_dispatch.core.clock import Clock, ShiftCalendar, SystemClock
from shift_dispatch.core.policy import DispatchPolicy, get_policy
from shift_dispatch.database import UnitOfWork
from shift_dispatch.models import Notification, NotificationType
from shift_dispatch.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    queue_notification,
)


@dataclass
class DispatchContext:
    policy: DispatchPolicy
    clock: Clock
    notifier: NotificationDispatcher
    calendar: ShiftCalendar = field(init=False)

    def __post_init__(self) -> None:
        self.calendar = ShiftCalendar(self.policy.shift, self.policy.confirmation)

    def now(self) -> datetime:
        return self.clock.now()

    def today(self) -> date:
        """Local date in the operating timezone."""
        return self.calendar.local_date(self.clock.now())

    def notify(
        self,
        uow: UnitOfWork,
        user_id: uuid.UUID,
        type: NotificationType,
        payload: Optional[Dict[str, Any]] = None,
        dedupe_key: Optional[str] = None,
    ) -> Notification:
        return queue_notification(uow, self.notifier, user_id, type, payload, dedupe_key)


_default_notifier = LoggingNotificationDispatcher()


def get_context() -> DispatchContext:
    """FastAPI dependency providing the production context."""
    return DispatchContext(
        policy=get_policy(),
        clock=SystemClock(),
        notifier=_default_notifier,
    )
