"""
AuditLog database model.
Records who changed what on assignments and bid windows.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from shift_dispatch.database import Base, GUID, enum_type


class ActorType(str, enum.Enum):
    """Who initiated a change."""
    USER = "user"
    SYSTEM = "system"


class AuditLog(Base):
    """
    AuditLog model.
    Written in the same transaction as the change it describes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        primary_key=True,
        default=uuid.uuid4,
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_type: Mapped[ActorType] = mapped_column(
        enum_type(ActorType, "actor_type"),
        nullable=False,
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID(), nullable=True)
    changes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(entity={self.entity_type}:{self.entity_id}, action={self.action})>"
