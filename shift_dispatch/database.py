"""
Database connection and session management.
Uses async SQLAlchemy with asyncpg driver.
"""

import enum
import logging
import uuid
from typing import Awaitable, Callable, List, Type

from sqlalchemy import CHAR, Enum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from shift_dispatch.config import get_settings
from shift_dispatch.core.errors import ConflictError

logger = logging.getLogger(__name__)


class GUID(TypeDecorator):
    """
    Platform-independent GUID type.
    Uses PostgreSQL's UUID type when available, otherwise uses CHAR(32) for SQLite.
    Stores as stringified hex values in SQLite.
    """
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(CHAR(32))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return value
        else:
            if isinstance(value, uuid.UUID):
                return value.hex
            else:
                return uuid.UUID(value).hex

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        elif dialect.name == 'postgresql':
            return value
        else:
            if isinstance(value, uuid.UUID):
                return value
            return uuid.UUID(value)


def enum_type(enum_cls: Type[enum.Enum], name: str) -> Enum:
    """Enum column type persisted by member value (lowercase wire values)."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


settings = get_settings()

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class UnitOfWork:
    """
    One atomic transition: everything written inside the block commits together
    or not at all.

    Callbacks registered with `after_commit` run only once the commit has
    succeeded. Their failures are logged and never undo the committed work.

    Usage:
        async with UnitOfWork(session) as uow:
            ...
            uow.after_commit(lambda: notifier.notify(...))
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._after_commit: List[Callable[[], Awaitable[None]]] = []

    def after_commit(self, callback: Callable[[], Awaitable[None]]) -> None:
        self._after_commit.append(callback)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            await self.session.rollback()
            self._after_commit.clear()
            if isinstance(exc, IntegrityError):
                raise ConflictError(
                    "Concurrent change violated a uniqueness constraint"
                ) from exc
            return False

        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            self._after_commit.clear()
            raise ConflictError(
                "Concurrent change violated a uniqueness constraint"
            ) from e

        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                await callback()
            except Exception as e:
                logger.warning(f"Post-commit callback failed: {e}")
        return False


async def get_db() -> AsyncSession:
    """
    Dependency that provides a database session.
    Yields a session and ensures it's closed after use.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Initialize database tables (for development only)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_session_factory() -> async_sessionmaker:
    """Dependency providing the session factory for periodic jobs."""
    return async_session_maker
