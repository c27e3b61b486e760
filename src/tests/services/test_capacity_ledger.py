"""
Tests for the capacity ledger.

Covers reserve/release bookkeeping, slot acceptance rules (closed, cutoff,
past date), reservation handles and the no-oversell guarantee under
concurrent submissions.
"""

import gc
import threading
from datetime import timedelta

import pytest

from bakehouse.models import Order
from bakehouse.services import bake_slot_service, capacity_ledger, order_intake_service
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import (
    CapacityExceeded,
    NotFound,
    SlotClosed,
    ValidationError,
)
from bakehouse.utils.datetime_utils import as_utc


class TestReserve:
    """Booking loaves on a slot."""

    def test_reserve_books_units(self, sample_slot):
        reservation = capacity_ledger.reserve(sample_slot.id, 4)

        assert reservation.id is not None
        assert reservation.units == 4
        assert capacity_ledger.current_availability(sample_slot.id) == {
            "total": 10,
            "booked": 4,
            "remaining": 6,
        }

    def test_reserve_up_to_exact_capacity(self, sample_slot):
        capacity_ledger.reserve(sample_slot.id, 10)
        assert capacity_ledger.current_availability(sample_slot.id)["remaining"] == 0

    def test_reserve_past_capacity_changes_nothing(self, sample_slot):
        capacity_ledger.reserve(sample_slot.id, 8)

        with pytest.raises(CapacityExceeded) as exc_info:
            capacity_ledger.reserve(sample_slot.id, 3)

        assert exc_info.value.remaining == 2
        assert exc_info.value.requested == 3
        assert capacity_ledger.current_availability(sample_slot.id)["booked"] == 8

    @pytest.mark.parametrize("units", [0, -1, 1.5, True, "2"])
    def test_reserve_rejects_bad_units(self, sample_slot, units):
        with pytest.raises(ValidationError):
            capacity_ledger.reserve(sample_slot.id, units)

    def test_reserve_unknown_slot(self, test_db):
        with pytest.raises(NotFound) as exc_info:
            capacity_ledger.reserve(999, 1)
        assert exc_info.value.code == "ORD-104"

    def test_reserve_on_closed_slot(self, sample_slot):
        bake_slot_service.close_slot(sample_slot.id)

        with pytest.raises(SlotClosed):
            capacity_ledger.reserve(sample_slot.id, 1)

    def test_reserve_after_cutoff(self, sample_slot):
        late = as_utc(sample_slot.cutoff_time) + timedelta(hours=1)

        with pytest.raises(SlotClosed) as exc_info:
            capacity_ledger.reserve(sample_slot.id, 1, now=late)
        assert "cutoff" in exc_info.value.reason

    def test_staff_override_after_cutoff(self, sample_slot):
        late = as_utc(sample_slot.cutoff_time) + timedelta(hours=1)

        capacity_ledger.reserve(sample_slot.id, 1, now=late, allow_after_cutoff=True)

        assert capacity_ledger.current_availability(sample_slot.id)["booked"] == 1

    def test_override_does_not_reopen_past_dates(self, sample_slot):
        after_bake = as_utc(sample_slot.cutoff_time) + timedelta(days=5)

        with pytest.raises(SlotClosed):
            capacity_ledger.reserve(sample_slot.id, 1, now=after_bake, allow_after_cutoff=True)

    def test_submission_time_applies_to_cutoff_only(self, sample_slot):
        cutoff = as_utc(sample_slot.cutoff_time)
        submitted = cutoff - timedelta(minutes=5)

        capacity_ledger.reserve(
            sample_slot.id, 1, now=cutoff + timedelta(hours=1), cutoff_clock=submitted
        )
        with pytest.raises(SlotClosed) as exc_info:
            capacity_ledger.reserve(
                sample_slot.id, 1, now=cutoff + timedelta(days=5), cutoff_clock=submitted
            )

        assert "date" in exc_info.value.reason
        assert capacity_ledger.current_availability(sample_slot.id)["booked"] == 1


class TestRelease:
    """Giving loaves back."""

    def test_release_returns_units(self, sample_slot):
        capacity_ledger.reserve(sample_slot.id, 5)

        assert capacity_ledger.release(sample_slot.id, 2) == 3

    def test_release_clamps_at_zero(self, sample_slot):
        capacity_ledger.reserve(sample_slot.id, 2)

        assert capacity_ledger.release(sample_slot.id, 7) == 0
        assert capacity_ledger.current_availability(sample_slot.id)["remaining"] == 10

    def test_release_reservation_only_once(self, sample_slot):
        reservation = capacity_ledger.reserve(sample_slot.id, 3)

        assert capacity_ledger.release_reservation(reservation.id) is True
        assert capacity_ledger.release_reservation(reservation.id) is False
        assert capacity_ledger.current_availability(sample_slot.id)["booked"] == 0

    def test_release_unknown_reservation(self, test_db):
        with pytest.raises(NotFound):
            capacity_ledger.release_reservation(12345)


class TestSlotLock:
    def test_same_lock_per_slot(self):
        assert capacity_ledger.slot_lock(7) is capacity_ledger.slot_lock(7)
        assert capacity_ledger.slot_lock(7) is not capacity_ledger.slot_lock(8)

    def test_lock_is_reentrant(self):
        lock = capacity_ledger.slot_lock(9)
        with lock:
            assert lock.acquire(blocking=False)
            lock.release()

    def test_held_lock_blocks_other_threads(self):
        lock = capacity_ledger.slot_lock(10)
        acquired = []

        with lock:
            worker = threading.Thread(
                target=lambda: acquired.append(capacity_ledger.slot_lock(10).acquire(timeout=0.05))
            )
            worker.start()
            worker.join()

        assert acquired == [False]

    def test_unused_locks_are_dropped(self):
        lock = capacity_ledger.slot_lock(11)
        assert 11 in capacity_ledger._slot_locks

        del lock
        gc.collect()

        assert 11 not in capacity_ledger._slot_locks


class TestNoOversell:
    """Full slots refuse orders and concurrent orders never overbook."""

    def test_full_slot_rejects_order_and_writes_nothing(
        self, sample_slot, sample_flavor, make_request
    ):
        capacity_ledger.reserve(sample_slot.id, 10)

        with pytest.raises(CapacityExceeded):
            order_intake_service.submit_order(make_request(sample_slot.id, sample_flavor.id))

        with session_scope() as session:
            assert session.query(Order).count() == 0
        assert capacity_ledger.current_availability(sample_slot.id)["booked"] == 10

    @pytest.mark.slow
    def test_concurrent_orders_for_last_loaf(self, file_catalog, make_request):
        _, flavor, slot = file_catalog
        order_intake_service.submit_order(
            make_request(slot.id, flavor.id, quantity=9, email="first@example.com")
        )

        contenders = 6
        barrier = threading.Barrier(contenders)
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt(index):
            request = make_request(slot.id, flavor.id, email=f"racer{index}@example.com")
            barrier.wait()
            try:
                order_intake_service.submit_order(request)
                result = "accepted"
            except CapacityExceeded:
                result = "full"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(contenders)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(outcomes) == ["accepted"] + ["full"] * (contenders - 1)
        assert capacity_ledger.current_availability(slot.id) == {
            "total": 10,
            "booked": 10,
            "remaining": 0,
        }
        with session_scope() as session:
            assert session.query(Order).count() == 2
