"""Tests for the medtrack API endpoints.

Verifies the API contract (status codes, response shapes) over in-memory
repositories, so no database is required.  The app lifespan is not run; the
router's services dependency is overridden directly.
"""

from __future__ import annotations

import httpx
import pytest

from medtrack.api.app import create_app
from medtrack.api.router import _get_services
from medtrack.engine.models import EveryXDays, IntakeSchedule

pytestmark = pytest.mark.unit

BASE = "/api/medtrack/users/u1"


@pytest.fixture
def app(services):
    app = create_app()
    app.dependency_overrides[_get_services] = lambda: services
    return app


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


@pytest.fixture
async def stocked(medicines, make_medicine):
    """A daily 08:00 medicine with ten units and a refill reminder at two."""
    return await medicines.save_medicine(
        make_medicine(
            id="m1",
            current_inventory=10,
            total_inventory=30,
            refill_reminder_threshold=2,
        )
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# GET /schedule
# ---------------------------------------------------------------------------


class TestSchedule:
    async def test_response_structure(self, client, stocked):
        resp = await client.get(f"{BASE}/schedule", params={"date": "2024-01-05"})

        assert resp.status_code == 200
        body = resp.json()
        assert "data" in body
        assert "meta" in body
        data = body["data"]
        assert data["date"] == "2024-01-05"
        assert data["total_scheduled"] == 1
        assert data["available"] is True
        assert data["from_cache"] is False
        (event,) = data["intake_events"]
        assert event["id"] == "m1:20240105T0800"
        assert event["status"] == "SCHEDULED"
        assert event["current_inventory"] == 10

    async def test_defaults_to_today(self, client, stocked):
        resp = await client.get(f"{BASE}/schedule")
        assert resp.json()["data"]["date"] == "2024-01-05"

    async def test_invalid_date_is_422(self, client):
        resp = await client.get(f"{BASE}/schedule", params={"date": "05/01/2024"})
        assert resp.status_code == 422

    async def test_offline_falls_back_to_cache(self, client, stocked, medicines):
        await client.get(f"{BASE}/schedule", params={"date": "2024-01-05"})
        medicines.offline = True

        resp = await client.get(f"{BASE}/schedule", params={"date": "2024-01-05"})

        assert resp.status_code == 200
        assert resp.json()["data"]["from_cache"] is True
        assert len(resp.json()["data"]["intake_events"]) == 1

    async def test_offline_without_cache_is_unavailable_not_error(self, client, medicines):
        medicines.offline = True
        resp = await client.get(f"{BASE}/schedule", params={"date": "2024-01-05"})
        assert resp.status_code == 200
        assert resp.json()["data"]["available"] is False

    async def test_week(self, client, medicines, make_medicine):
        await medicines.save_medicine(make_medicine(frequency=EveryXDays(interval_days=2)))

        resp = await client.get(f"{BASE}/schedule/week", params={"start": "2024-01-01"})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["week_start_date"] == "2024-01-01"
        assert data["week_end_date"] == "2024-01-07"
        assert data["total_scheduled"] == 4
        assert len(data["daily_schedules"]) == 7


# ---------------------------------------------------------------------------
# GET /upcoming, /overdue
# ---------------------------------------------------------------------------


class TestUpcomingAndOverdue:
    async def test_upcoming(self, client, medicines, make_medicine):
        await medicines.save_medicine(
            make_medicine(
                id="m1",
                intake_schedules=[IntakeSchedule("08:00", 1), IntakeSchedule("20:00", 1)],
            )
        )
        resp = await client.get(f"{BASE}/upcoming", params={"hours": 12})
        assert resp.status_code == 200
        assert [e["id"] for e in resp.json()["data"]] == ["m1:20240105T2000"]

    async def test_upcoming_hours_must_be_positive(self, client):
        resp = await client.get(f"{BASE}/upcoming", params={"hours": 0})
        assert resp.status_code == 422

    async def test_overdue(self, client, stocked):
        resp = await client.get(f"{BASE}/overdue")
        assert resp.status_code == 200
        assert [e["id"] for e in resp.json()["data"]] == [
            "m1:20240104T0800",
            "m1:20240105T0800",
        ]


# ---------------------------------------------------------------------------
# POST /events/{event_id}/take|skip|miss
# ---------------------------------------------------------------------------


class TestTransitions:
    async def test_take_without_body(self, client, stocked):
        resp = await client.post(f"{BASE}/events/m1:20240105T0800/take")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["event"]["status"] == "TAKEN"
        assert data["event"]["actual_datetime"] == "2024-01-05T12:00:00"
        assert data["inventory"]["new_current_inventory"] == 9
        assert data["crossed_threshold"] is False

    async def test_take_with_body(self, client, stocked):
        resp = await client.post(
            f"{BASE}/events/m1:20240105T0800/take",
            json={"actual_datetime": "2024-01-05T08:15:00", "actual_amount": 8, "note": "late"},
        )

        data = resp.json()["data"]
        assert data["event"]["actual_datetime"] == "2024-01-05T08:15:00"
        assert data["event"]["note"] == "late"
        assert data["inventory"]["new_current_inventory"] == 2
        assert data["crossed_threshold"] is True

    async def test_take_bad_timestamp_is_422(self, client, stocked):
        resp = await client.post(
            f"{BASE}/events/m1:20240105T0800/take", json={"actual_datetime": "soon"}
        )
        assert resp.status_code == 422

    async def test_non_positive_amount_is_422(self, client, stocked):
        resp = await client.post(
            f"{BASE}/events/m1:20240105T0800/take", json={"actual_amount": 0}
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_take_twice_is_409(self, client, stocked):
        await client.post(f"{BASE}/events/m1:20240105T0800/take")
        resp = await client.post(f"{BASE}/events/m1:20240105T0800/take")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

    async def test_skip_then_take_is_409(self, client, stocked):
        skip = await client.post(
            f"{BASE}/events/m1:20240105T0800/skip", json={"reason": "nausea"}
        )
        assert skip.status_code == 200
        assert skip.json()["data"]["event"]["skip_reason"] == "nausea"

        resp = await client.post(f"{BASE}/events/m1:20240105T0800/take")
        assert resp.status_code == 409

    async def test_skip_requires_reason(self, client, stocked):
        resp = await client.post(f"{BASE}/events/m1:20240105T0800/skip", json={"reason": "  "})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_miss(self, client, stocked):
        resp = await client.post(f"{BASE}/events/m1:20240105T0800/miss")
        assert resp.status_code == 200
        assert resp.json()["data"]["event"]["status"] == "MISSED"
        again = await client.post(f"{BASE}/events/m1:20240105T0800/miss")
        assert again.json()["data"]["changed"] is False

    async def test_unknown_event_is_404(self, client, stocked):
        resp = await client.post(f"{BASE}/events/m1:20240105T0915/take")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_write_while_offline_is_503(self, client, stocked, events):
        events.offline = True
        resp = await client.post(f"{BASE}/events/m1:20240105T0800/take")
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "UNAVAILABLE"

    async def test_process_missed(self, client, stocked):
        resp = await client.post(f"{BASE}/process-missed")
        assert resp.status_code == 200
        assert resp.json()["data"] == {"processed": 2, "errors": [], "success": True}


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class TestInventory:
    async def test_low_inventory(self, client, medicines, make_medicine):
        await medicines.save_medicine(make_medicine(id="low", current_inventory=1))
        await medicines.save_medicine(make_medicine(id="ok", current_inventory=50))

        resp = await client.get(f"{BASE}/inventory/low")

        assert resp.status_code == 200
        assert [m["id"] for m in resp.json()["data"]] == ["low"]

    async def test_set_amount(self, client, stocked):
        resp = await client.put(f"{BASE}/medicines/m1/inventory", json={"new_amount": 25})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["previous_inventory"] == 10
        assert data["new_current_inventory"] == 25

    async def test_reset_to_full(self, client, stocked):
        resp = await client.put(f"{BASE}/medicines/m1/inventory", json={"reset_to_full": True})
        assert resp.json()["data"]["new_current_inventory"] == 30

    async def test_negative_amount_is_422(self, client, stocked):
        resp = await client.put(f"{BASE}/medicines/m1/inventory", json={"new_amount": -1})
        assert resp.status_code == 422

    async def test_empty_body_is_422(self, client, stocked):
        resp = await client.put(f"{BASE}/medicines/m1/inventory", json={})
        assert resp.status_code == 422

    async def test_unknown_medicine_is_404(self, client):
        resp = await client.put(f"{BASE}/medicines/nope/inventory", json={"new_amount": 5})
        assert resp.status_code == 404


async def test_uninitialised_services_return_500():
    app = create_app()
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        resp = await client.get(f"{BASE}/schedule")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
