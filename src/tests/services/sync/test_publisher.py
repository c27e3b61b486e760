"""Tests for the publish outbox: enqueueing, coalescing and change notification."""

from datetime import date

import pytest

from bakehouse.services import (
    bake_slot_service,
    flavor_service,
    location_service,
    recipe_service,
)
from bakehouse.services.database import session_scope
from bakehouse.services.sync import publisher
from bakehouse.utils.constants import SHEET_BAKE_SLOTS, SHEET_FLAVORS, SHEET_LOCATIONS


class TestEnqueue:
    def test_creates_are_queued(self, sample_slot):
        batch = publisher.collect_pending()

        assert batch.sheets() == [SHEET_LOCATIONS, SHEET_BAKE_SLOTS]
        assert batch.rows[SHEET_BAKE_SLOTS][0]["id"] == sample_slot.uuid
        assert publisher.pending_count() == 2

    def test_updates_coalesce_to_latest_state(self, sample_flavor):
        flavor_service.update_flavor(sample_flavor.id, {"description": "first"})
        flavor_service.update_flavor(sample_flavor.id, {"description": "second"})

        batch = publisher.collect_pending()

        rows = batch.rows[SHEET_FLAVORS]
        assert len(rows) == 1
        assert rows[0]["description"] == "second"
        assert len(batch.entry_ids) == 3

    def test_mark_published_clears_queue(self, sample_slot):
        batch = publisher.collect_pending()

        assert publisher.mark_published(batch.entry_ids) == len(batch.entry_ids)
        assert publisher.pending_count() == 0
        assert publisher.collect_pending().is_empty

    def test_mark_failed_keeps_entries_pending(self, sample_location):
        batch = publisher.collect_pending()

        publisher.mark_failed(batch.entry_ids, "HTTP 503")

        assert publisher.pending_count() == 1

    def test_deleted_slot_publishes_tombstone(self, sample_location):
        slot = bake_slot_service.create_slot(
            {"date": date(2030, 5, 1), "location_id": sample_location.id, "total_capacity": 4}
        )
        bake_slot_service.delete_slot(slot.id)

        (row,) = publisher.collect_pending().rows[SHEET_BAKE_SLOTS]

        assert row["id"] == slot.uuid
        assert row["is_open"] == "FALSE"
        assert row["total_capacity"] == "0"

    def test_enqueue_full_catalog(self, sample_slot, sample_flavor):
        publisher.mark_published(publisher.collect_pending().entry_ids)

        assert publisher.enqueue_full_catalog() == 3
        assert publisher.pending_count() == 3

    def test_unpublished_model_is_rejected(self, sample_recipe):
        with session_scope() as session:
            with pytest.raises(ValueError):
                publisher.enqueue_change(session, sample_recipe)


class TestSerialization:
    def test_bake_slot_row(self, sample_slot, sample_location):
        slot = bake_slot_service.get_slot(sample_slot.id)

        row = publisher.serialize_bake_slot(slot)

        assert row["location_id"] == sample_location.uuid
        assert row["date"] == slot.date.isoformat()
        assert row["total_capacity"] == "10"
        assert row["current_orders"] == "0"
        assert row["is_open"] == "TRUE"
        assert row["cutoff_time"].endswith("Z")

    def test_flavor_sizes_are_json(self, sample_flavor):
        row = publisher.serialize_flavor(flavor_service.get_flavor(sample_flavor.id))

        assert row["season"] == "year_round"
        assert '"Regular"' in row["sizes"]


class TestChangeListeners:
    @pytest.fixture
    def notified(self):
        calls = []

        def listener():
            calls.append(True)

        publisher.add_change_listener(listener)
        yield calls
        publisher.remove_change_listener(listener)

    def test_listener_runs_after_commit(self, test_db, notified):
        location_service.create_location({"name": "Corner Shop"})

        assert notified == [True]

    def test_listener_skipped_on_rollback(self, test_db, notified):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                location_service.create_location({"name": "Corner Shop"}, session=session)
                raise RuntimeError("abort")

        assert notified == []
        assert publisher.pending_count() == 0

    def test_listener_skipped_without_published_change(self, sample_recipe, notified):
        recipe_service.update_recipe(sample_recipe.id, {"notes": "rest overnight"})

        assert notified == []

    def test_failing_listener_does_not_break_commit(self, test_db, notified):
        def broken():
            raise RuntimeError("boom")

        publisher.add_change_listener(broken)
        try:
            location = location_service.create_location({"name": "Corner Shop"})
        finally:
            publisher.remove_change_listener(broken)

        assert location.id is not None
        assert notified == [True]
