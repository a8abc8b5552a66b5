import os
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from shift_dispatch.core.clock import FixedClock
from shift_dispatch.core.policy import DispatchPolicy
from shift_dispatch.database import Base, get_db, get_session_factory
from shift_dispatch.main import app
from shift_dispatch.services.context import DispatchContext, get_context
from shift_dispatch.services.notifications import InMemoryNotificationDispatcher
from tests.fixtures.test_data import NOW, make_driver, make_route, make_warehouse


@pytest.fixture
async def test_engine(tmp_path):
    """Per-test database file so jobs can open several sessions at once."""
    url = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}")
    engine = create_async_engine(
        url,
        connect_args={"check_same_thread": False} if "sqlite" in url else {},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session used to seed data and drive services directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def notifier() -> InMemoryNotificationDispatcher:
    return InMemoryNotificationDispatcher()


@pytest.fixture
def ctx(clock, notifier) -> DispatchContext:
    return DispatchContext(policy=DispatchPolicy(), clock=clock, notifier=notifier)


@pytest.fixture
async def client(session_factory, ctx) -> AsyncGenerator[AsyncClient, None]:
    """Test client with overrides for the session, session factory and context."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_context] = lambda: ctx

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def warehouse(db_session):
    """Warehouse with a manager to alert."""
    wh = make_warehouse()
    db_session.add(wh)
    await db_session.commit()
    return wh


@pytest.fixture
async def route(db_session, warehouse):
    rt = make_route(warehouse)
    db_session.add(rt)
    await db_session.commit()
    return rt


@pytest.fixture
async def driver(db_session):
    drv = make_driver()
    db_session.add(drv)
    await db_session.commit()
    return drv
