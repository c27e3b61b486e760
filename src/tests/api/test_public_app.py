"""Tests for the public read API."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from bakehouse.api.public_app import create_app
from bakehouse.services.exceptions import SyncUnavailable
from bakehouse.utils.constants import SHEET_BAKE_SLOTS, SHEET_FLAVORS, SHEET_LOCATIONS


class FakeReader:
    def __init__(self, sheets=None, error=None):
        self.sheets = sheets or {}
        self.error = error
        self.reads = []

    async def read_records(self, sheet):
        self.reads.append(sheet)
        if self.error is not None:
            raise self.error
        return self.sheets.get(sheet, [])


SHEETS = {
    SHEET_FLAVORS: [
        {
            "id": "f-1",
            "name": "Honey Oat",
            "description": "Soft sandwich loaf",
            "sizes": '[{"name": "Regular", "price": 12}]',
            "is_active": "TRUE",
            "season": "year_round",
            "sort_order": "1",
        }
    ],
    SHEET_BAKE_SLOTS: [
        {
            "id": "s-1",
            "date": "2030-06-07",
            "location_id": "l-1",
            "total_capacity": "24",
            "current_orders": "20",
            "cutoff_time": "2030-06-05T00:00:00Z",
            "is_open": "TRUE",
        }
    ],
    SHEET_LOCATIONS: [
        {"id": "l-1", "name": "Farmers Market", "address": "12 Main St", "is_active": "TRUE"}
    ],
}


def fixed_clock():
    return datetime(2030, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    with TestClient(create_app(FakeReader(SHEETS), clock=fixed_clock)) as test_client:
        yield test_client


def failing_client(error):
    return TestClient(create_app(FakeReader(error=error), clock=fixed_clock))


class TestReads:
    def test_flavors(self, client):
        response = client.get("/flavors")

        assert response.status_code == 200
        assert response.json() == [
            {
                "id": "f-1",
                "name": "Honey Oat",
                "description": "Soft sandwich loaf",
                "sizes": [{"name": "Regular", "price": 12}],
            }
        ]

    def test_bake_slots(self, client):
        response = client.get("/bake-slots")

        assert response.status_code == 200
        assert response.json() == [
            {
                "id": "s-1",
                "date": "2030-06-07",
                "locationName": "Farmers Market",
                "spotsRemaining": 4,
                "isOpen": True,
            }
        ]

    def test_locations(self, client):
        response = client.get("/locations")

        assert response.json() == [{"id": "l-1", "name": "Farmers Market", "address": "12 Main St"}]

    def test_any_origin_may_read(self, client):
        response = client.get("/locations", headers={"Origin": "https://order.example.com"})

        assert response.headers["access-control-allow-origin"] == "*"


class TestErrors:
    @pytest.mark.parametrize("method", ["post", "put", "delete"])
    def test_writes_are_not_allowed(self, client, method):
        response = getattr(client, method)("/flavors")

        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}

    @pytest.mark.parametrize(
        "path,code",
        [("/flavors", "SYNC-204"), ("/bake-slots", "SYNC-203"), ("/locations", "LOC-001")],
    )
    def test_store_failure_returns_support_code(self, path, code):
        client = failing_client(SyncUnavailable("read", 4, "HTTP 503"))

        response = client.get(path)

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == code
        assert "HTTP 503" in body["details"]
        assert body["error"].startswith("Failed to fetch")

    @pytest.mark.parametrize(
        "path,code",
        [("/flavors", "SYNC-204"), ("/bake-slots", "SYNC-203"), ("/locations", "LOC-001")],
    )
    def test_unexpected_failure_keeps_support_code(self, path, code):
        client = failing_client(RuntimeError("socket closed"))

        response = client.get(path)

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == code
        assert body["details"] == "socket closed"
        assert body["error"].startswith("Failed to fetch")

    def test_filtering_failure_keeps_support_code(self):
        def broken_clock():
            raise ValueError("clock unavailable")

        client = TestClient(create_app(FakeReader(SHEETS), clock=broken_clock))

        response = client.get("/flavors")

        assert response.status_code == 500
        assert response.json()["code"] == "SYNC-204"
