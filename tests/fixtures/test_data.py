"""
Test data builders for creating realistic dispatch scenarios.
"""

import uuid
from datetime import date, datetime, timedelta
from typing import Optional

from faker import Faker
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shift_dispatch.core.clock import ShiftCalendar
from shift_dispatch.models import (
    Assignment,
    AssignmentStatus,
    AssignedBy,
    Driver,
    HealthState,
    Route,
    Shift,
    Warehouse,
)

fake = Faker()

# Monday 2026-02-02, 10:00 America/Toronto
NOW = datetime(2026, 2, 2, 15, 0)

# Old enough that tenure is capped in bid scores
DEFAULT_DRIVER_CREATED_AT = datetime(2024, 6, 1)


def make_driver(
    created_at: datetime = DEFAULT_DRIVER_CREATED_AT,
    preferred_route_ids: Optional[list] = None,
    is_active: bool = True,
    is_flagged: bool = False,
    weekly_cap: int = 4,
) -> Driver:
    return Driver(
        id=uuid.uuid4(),
        name=fake.name(),
        is_active=is_active,
        is_flagged=is_flagged,
        weekly_cap=weekly_cap,
        preferred_route_ids=[str(r) for r in (preferred_route_ids or [])],
        created_at=created_at,
    )


def make_warehouse(manager_id: Optional[uuid.UUID] = None) -> Warehouse:
    return Warehouse(
        id=uuid.uuid4(),
        name=f"{fake.city()} Depot",
        manager_id=manager_id or uuid.uuid4(),
    )


def make_route(warehouse: Warehouse) -> Route:
    return Route(
        id=uuid.uuid4(),
        warehouse_id=warehouse.id,
        name=f"Route {fake.bothify('??-###').upper()}",
    )


def make_assignment(
    route: Route,
    on_date: date,
    driver: Optional[Driver] = None,
    status: Optional[AssignmentStatus] = None,
    confirmed_at: Optional[datetime] = None,
    assigned_by: AssignedBy = AssignedBy.ALGORITHM,
    assigned_at: Optional[datetime] = None,
) -> Assignment:
    """Scheduled assignment for `driver`, or an unfilled one when no driver is given."""
    if status is None:
        status = AssignmentStatus.SCHEDULED if driver else AssignmentStatus.UNFILLED
    return Assignment(
        id=uuid.uuid4(),
        route_id=route.id,
        warehouse_id=route.warehouse_id,
        driver_id=driver.id if driver else None,
        date=on_date,
        status=status,
        assigned_by=assigned_by if driver else None,
        assigned_at=(assigned_at or datetime(2026, 1, 1)) if driver else None,
        confirmed_at=confirmed_at,
    )


def make_completed_shift(
    route: Route,
    driver: Driver,
    on_date: date,
    calendar: ShiftCalendar,
    parcels_start: int = 100,
    parcels_returned: int = 0,
) -> tuple:
    """Completed assignment and its shift, arrived at shift start."""
    shift_start = calendar.shift_start(on_date)
    assignment = make_assignment(
        route, on_date, driver=driver,
        status=AssignmentStatus.COMPLETED,
        confirmed_at=shift_start - timedelta(days=3),
    )
    shift = Shift(
        assignment_id=assignment.id,
        arrived_at=shift_start,
        started_at=shift_start + timedelta(minutes=15),
        completed_at=shift_start + timedelta(hours=9),
        editable_until=shift_start + timedelta(hours=10),
        parcels_start=parcels_start,
        parcels_returned=parcels_returned,
        parcels_delivered=parcels_start - parcels_returned,
        excepted_returns=0,
    )
    return assignment, shift


async def add_completed_shifts(
    db: AsyncSession,
    route: Route,
    driver: Driver,
    dates,
    calendar: ShiftCalendar,
) -> None:
    for day in dates:
        assignment, shift = make_completed_shift(route, driver, day, calendar)
        db.add(assignment)
        await db.flush()
        db.add(shift)
    await db.commit()


async def set_health(db: AsyncSession, driver: Driver, score: int, pool_eligible: bool = True) -> HealthState:
    state = HealthState(
        driver_id=driver.id,
        current_score=score,
        pool_eligible=pool_eligible,
        requires_manager_intervention=not pool_eligible,
    )
    db.add(state)
    await db.commit()
    return state


async def reload(session_factory: async_sessionmaker, model, entity_id):
    """Fresh copy of a row, read through a new session."""
    async with session_factory() as session:
        return await session.get(model, entity_id)


async def fetch_all(session_factory: async_sessionmaker, stmt) -> list:
    async with session_factory() as session:
        result = await session.execute(stmt)
        return list(result.scalars().all())
