"""Tests for SyncBridge passes, health tracking and lifecycle."""

import asyncio

import pytest

from bakehouse.services import location_service
from bakehouse.services.exceptions import SyncUnavailable
from bakehouse.services.sync import publisher
from bakehouse.services.sync.bridge import HealthState, SyncBridge
from bakehouse.utils.constants import (
    SHEET_BAKE_SLOTS,
    SHEET_FLAVORS,
    SHEET_LOCATIONS,
    SHEET_ORDER_INTAKE,
)


def _intake_sheet(*rows):
    header = list(rows[0])
    return [header] + [[row[column] for column in header] for row in rows]


async def _wait_for_passes(bridge, count, timeout=5.0):
    async def _poll():
        while bridge.status()["passes"] < count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def bridge(fake_sheets, fast_settings):
    return SyncBridge(fake_sheets, settings=fast_settings)


class TestSyncPass:
    @pytest.mark.asyncio
    async def test_publishes_catalog_and_ingests_orders(
        self, bridge, fake_sheets, intake_row, sample_slot, sample_flavor
    ):
        fake_sheets.sheets[SHEET_ORDER_INTAKE] = _intake_sheet(intake_row("row-1", quantity=2))

        result = await bridge.sync_once()

        assert result.ok
        assert result.published_rows == 3
        assert result.accepted == 1
        assert result.rejected == 0
        assert fake_sheets.records(SHEET_LOCATIONS)[0]["name"] == "Farmers Market"
        assert fake_sheets.records(SHEET_FLAVORS)[0]["id"] == sample_flavor.uuid
        assert fake_sheets.records(SHEET_BAKE_SLOTS)[0]["current_orders"] == "0"
        assert bridge.state == HealthState.HEALTHY

    @pytest.mark.asyncio
    async def test_next_pass_publishes_booked_capacity(
        self, bridge, fake_sheets, intake_row, sample_slot
    ):
        fake_sheets.sheets[SHEET_ORDER_INTAKE] = _intake_sheet(intake_row("row-1", quantity=2))
        await bridge.sync_once()

        second = await bridge.sync_once()

        assert second.published_rows == 1
        assert second.accepted == 0
        (slot_row,) = fake_sheets.records(SHEET_BAKE_SLOTS)
        assert slot_row["id"] == sample_slot.uuid
        assert slot_row["current_orders"] == "2"
        assert publisher.pending_count() == 0

    @pytest.mark.asyncio
    async def test_rejected_rows_are_counted(self, bridge, fake_sheets, intake_row, sample_slot):
        fake_sheets.sheets[SHEET_ORDER_INTAKE] = _intake_sheet(
            intake_row("row-1", quantity=8),
            intake_row("row-2", quantity=8, minutes_before_cutoff=30),
        )

        result = await bridge.sync_once()

        assert (result.accepted, result.rejected) == (1, 1)
        assert [r.error_code for r in result.results] == [None, "ORD-106"]

    @pytest.mark.asyncio
    async def test_empty_store(self, bridge, fake_sheets, test_db):
        result = await bridge.sync_once()

        assert result.ok
        assert result.published_rows == 0
        assert result.results == []


class TestHealth:
    @pytest.mark.asyncio
    async def test_failures_back_off_then_recover(self, bridge, fake_sheets, sample_slot):
        fake_sheets.fail = SyncUnavailable("read OrderIntake", 4, "HTTP 503")

        states = []
        intervals = []
        for _ in range(5):
            result = await bridge.sync_once()
            assert not result.ok
            states.append(bridge.state)
            intervals.append(bridge.current_interval())

        assert states == [HealthState.DEGRADED] * 2 + [HealthState.UNAVAILABLE] * 3
        assert intervals == [120.0, 120.0, 240.0, 480.0, 900.0]
        assert bridge.status()["consecutive_failures"] == 5
        assert "HTTP 503" in bridge.status()["last_error"]

        fake_sheets.fail = None
        assert (await bridge.sync_once()).ok
        assert bridge.state == HealthState.HEALTHY
        assert bridge.current_interval() == 120.0
        assert bridge.status()["last_success_at"] is not None

    @pytest.mark.asyncio
    async def test_failed_publish_leaves_entries_pending(self, bridge, fake_sheets, sample_slot):
        fake_sheets.fail = SyncUnavailable("upsert", 4, "HTTP 500")

        await bridge.sync_once()

        assert publisher.pending_count() == 2
        assert fake_sheets.sheets == {}


class TestLifecycle:
    def test_notify_without_loop_is_noop(self, bridge):
        bridge.notify_change()
        assert bridge.is_running is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, bridge, fake_sheets, test_db):
        await bridge.start()
        await _wait_for_passes(bridge, 1)
        assert bridge.status()["running"] is True

        await bridge.stop()

        assert bridge.is_running is False
        assert fake_sheets.closed is True

    @pytest.mark.asyncio
    async def test_committed_change_wakes_the_loop(self, bridge, fake_sheets, test_db):
        await bridge.start()
        try:
            await _wait_for_passes(bridge, 1)

            await asyncio.to_thread(location_service.create_location, {"name": "Corner Shop"})
            await _wait_for_passes(bridge, 2)

            assert fake_sheets.records(SHEET_LOCATIONS)[0]["name"] == "Corner Shop"
        finally:
            await bridge.stop()
