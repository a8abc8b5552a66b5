"""
Tests for the HTTP surface: request schemas, routing and error mapping.
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest
from pydantic import ValidationError

from shift_dispatch.schemas.assignment import CompleteShiftRequest, InventoryRequest
from shift_dispatch.schemas.bidding import OpenWindowRequest
from tests.fixtures.test_data import add_completed_shifts, make_assignment, make_driver

API = "/api/v1"
TODAY = date(2026, 2, 2)


class TestRequestSchemas:
    """Request validation."""

    def test_inventory_rejects_negative_count(self):
        with pytest.raises(ValidationError):
            InventoryRequest(driver_id=uuid4(), parcels_start=-1)

    def test_complete_strips_blank_notes(self):
        request = CompleteShiftRequest(driver_id=uuid4(), parcels_returned=3, exception_notes="   ")
        assert request.exception_notes is None
        assert request.excepted_returns == 0

    def test_open_window_defaults(self):
        request = OpenWindowRequest(assignment_id=uuid4())
        assert request.trigger == "manual"
        assert request.emergency is False


class TestServiceEndpoints:

    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"status": "healthy"}


class TestAssignmentEndpoints:
    """Driver actions on assignments."""

    @pytest.fixture
    async def upcoming(self, db_session, route, driver):
        assignment = make_assignment(route, TODAY + timedelta(days=3), driver=driver)
        db_session.add(assignment)
        await db_session.commit()
        return assignment

    async def test_get_assignment(self, client, upcoming):
        response = await client.get(f"{API}/assignments/{upcoming.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "scheduled"
        assert body["confirmed_at"] is None

    async def test_confirm(self, client, upcoming, driver):
        response = await client.post(
            f"{API}/assignments/{upcoming.id}/confirm", json={"driver_id": str(driver.id)}
        )

        assert response.status_code == 200
        assert response.json()["confirmed_at"] == "2026-02-02T15:00:00"

    async def test_confirm_by_other_driver(self, client, upcoming):
        response = await client.post(
            f"{API}/assignments/{upcoming.id}/confirm", json={"driver_id": str(uuid4())}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    async def test_unknown_assignment(self, client):
        response = await client.get(f"{API}/assignments/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    async def test_invalid_body(self, client, upcoming, driver):
        response = await client.post(
            f"{API}/assignments/{upcoming.id}/inventory",
            json={"driver_id": str(driver.id), "parcels_start": -5},
        )
        assert response.status_code == 422

    async def test_cancel_opens_replacement_window(self, client, upcoming, driver):
        response = await client.post(
            f"{API}/assignments/{upcoming.id}/cancel",
            json={"driver_id": str(driver.id), "reason": "family emergency"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["assignment"]["status"] == "cancelled"
        assert body["assignment"]["cancel_type"] == "driver"
        assert body["replacement"]["status"] == "unfilled"
        assert body["bid_window"]["assignment_id"] == body["replacement"]["id"]
        assert body["bid_window"]["mode"] == "competitive"


class TestBiddingEndpoints:
    """Opening windows, bidding and resolution."""

    @pytest.fixture
    async def vacant(self, db_session, route):
        assignment = make_assignment(route, TODAY + timedelta(days=4))
        db_session.add(assignment)
        await db_session.commit()
        return assignment

    async def test_bid_and_resolve(self, client, vacant, driver):
        opened = await client.post(f"{API}/bid-windows", json={"assignment_id": str(vacant.id)})
        assert opened.status_code == 201
        window_id = opened.json()["id"]

        placed = await client.post(f"{API}/bid-windows/{window_id}/bids", json={"driver_id": str(driver.id)})
        assert placed.status_code == 201
        assert placed.json()["resolution"] is None
        bid_id = placed.json()["bid"]["id"]

        detail = await client.get(f"{API}/bid-windows/{window_id}")
        assert [b["id"] for b in detail.json()["bids"]] == [bid_id]

        first = await client.post(f"{API}/bid-windows/{window_id}/resolve")
        second = await client.post(f"{API}/bid-windows/{window_id}/resolve")

        assert first.json()["changed"] is True
        assert first.json()["winner"]["driver_id"] == str(driver.id)
        assert second.json()["changed"] is False
        assert second.json()["window"]["status"] == "resolved"

        bid = await client.get(f"{API}/bids/{bid_id}")
        assert bid.json()["status"] == "won"

        assignment = await client.get(f"{API}/assignments/{vacant.id}")
        assert assignment.json()["driver_id"] == str(driver.id)
        assert assignment.json()["assigned_by"] == "bid"

    async def test_second_window_conflicts(self, client, vacant):
        await client.post(f"{API}/bid-windows", json={"assignment_id": str(vacant.id)})
        response = await client.post(f"{API}/bid-windows", json={"assignment_id": str(vacant.id)})

        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    async def test_unknown_window(self, client):
        response = await client.get(f"{API}/bid-windows/{uuid4()}")
        assert response.status_code == 404


class TestHealthEndpoints:

    async def test_onboarding_driver_has_no_state(self, client, driver):
        response = await client.get(f"{API}/drivers/{driver.id}/health")

        assert response.status_code == 200
        assert response.json() is None

    async def test_reinstate_builds_state(self, client, ctx, db_session, route, driver):
        await add_completed_shifts(db_session, route, driver, [date(2026, 1, 30)], ctx.calendar)

        response = await client.post(
            f"{API}/drivers/{driver.id}/health/reinstate", json={"manager_id": str(uuid4())}
        )

        assert response.status_code == 200
        assert response.json()["pool_eligible"] is True
        assert response.json()["current_score"] > 0

        state = await client.get(f"{API}/drivers/{driver.id}/health")
        assert state.json()["current_score"] == response.json()["current_score"]

        snapshots = await client.get(f"{API}/drivers/{driver.id}/health/snapshots", params={"limit": 5})
        assert [s["evaluated_on"] for s in snapshots.json()] == ["2026-02-02"]

    async def test_snapshot_limit_bounds(self, client, driver):
        response = await client.get(f"{API}/drivers/{driver.id}/health/snapshots", params={"limit": 0})
        assert response.status_code == 422

    async def test_reinstate_unknown_driver(self, client):
        response = await client.post(
            f"{API}/drivers/{uuid4()}/health/reinstate", json={"manager_id": str(uuid4())}
        )
        assert response.status_code == 404


class TestJobEndpoints:

    async def test_run_and_fetch(self, client, db_session, route, driver):
        db_session.add(make_assignment(route, TODAY + timedelta(days=2), driver=driver))
        await db_session.commit()

        response = await client.post(f"{API}/cron/auto_drop_unconfirmed")

        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "succeeded"
        assert run["summary"]["counts"] == {"dropped": 1}

        fetched = await client.get(f"{API}/cron/runs/{run['id']}")
        assert fetched.json()["job_name"] == "auto_drop_unconfirmed"

    async def test_run_with_as_of(self, client, db_session):
        db_session.add(make_driver())
        await db_session.commit()

        response = await client.post(
            f"{API}/cron/run_daily_health_evaluation", json={"as_of": "2026-01-31"}
        )

        assert response.json()["summary"]["counts"] == {"onboarding": 1}

    async def test_unknown_job(self, client):
        response = await client.post(f"{API}/cron/rebuild_everything")

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    async def test_unknown_run(self, client):
        response = await client.get(f"{API}/cron/runs/{uuid4()}")
        assert response.status_code == 404
