"""
Capacity Ledger - Bake slot booking counts.

This module is the only writer of ``BakeSlot.current_orders``. It provides:
- reserve(): Book loaves on a slot and hand back a reservation handle
- release() / release_reservation(): Give loaves back, never below zero
- current_availability(): Total / booked / remaining for a slot
- slot_lock(): Per-slot critical section for callers that reserve and
  write dependent rows in one transaction

The booked count is changed with a single conditional UPDATE, so the
database itself refuses to move a slot past its capacity. Callers that
reserve and then write an order hold ``slot_lock(slot_id)`` until their
transaction commits, which makes the reserve + write + commit sequence
serial per slot within the process.

Example:
    with slot_lock(slot_id):
        with session_scope() as session:
            reservation = reserve(slot_id, 3, session=session)
            session.add(Order(..., reservation_id=reservation.id))
"""

import logging
import threading
import weakref
from contextlib import nullcontext
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import case, update

from bakehouse.models import BakeSlot, CapacityReservation
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import (
    CapacityExceeded,
    NotFound,
    SlotClosed,
    ValidationError,
)
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.services.sync.publisher import enqueue_change
from bakehouse.utils.datetime_utils import as_utc, utc_now

logger = get_service_logger(__name__)

# Entries vanish once no caller references the lock, so the registry only
# holds slots that are being booked right now.
_slot_locks: "weakref.WeakValueDictionary[int, threading.RLock]" = weakref.WeakValueDictionary()
_slot_locks_guard = threading.Lock()


def slot_lock(slot_id: int) -> threading.RLock:
    """
    Return the process-wide lock for a bake slot.

    Calls with the same slot id get the same lock object while any caller
    still references it.
    It is re-entrant, so a caller holding it may call reserve-and-write
    helpers that take it again. Callers keep the returned object for as long
    as they need the lock.
    """
    with _slot_locks_guard:
        lock = _slot_locks.get(slot_id)
        if lock is None:
            lock = threading.RLock()
            _slot_locks[slot_id] = lock
        return lock


def _get_slot(session, slot_id: int) -> BakeSlot:
    slot = session.get(BakeSlot, slot_id)
    if slot is None:
        raise NotFound("bake_slot", slot_id)
    return slot


def check_slot_accepting(
    slot: BakeSlot,
    now: datetime,
    allow_after_cutoff: bool = False,
    cutoff_clock: Optional[datetime] = None,
) -> None:
    """
    Raise SlotClosed unless the slot may take new bookings at ``now``.

    A slot whose date has passed never takes bookings, whatever is_open says.
    ``cutoff_clock`` (the time the customer submitted) replaces ``now`` for
    the cutoff comparison only; the bake date is always checked against ``now``.
    """
    now = as_utc(now)
    if slot.date < now.date():
        raise SlotClosed(slot.id, "bake date has passed")
    if not slot.is_open:
        raise SlotClosed(slot.id, "slot is closed")
    ordered_at = as_utc(cutoff_clock) if cutoff_clock is not None else now
    if not allow_after_cutoff and ordered_at >= as_utc(slot.cutoff_time):
        raise SlotClosed(slot.id, "ordering cutoff has passed")


def reserve(
    slot_id: int,
    units: int,
    *,
    now: Optional[datetime] = None,
    allow_after_cutoff: bool = False,
    cutoff_clock: Optional[datetime] = None,
    session=None,
) -> CapacityReservation:
    """
    Book ``units`` loaves on a bake slot.

    Args:
        slot_id: Bake slot ID
        units: Loaves to book (> 0)
        now: Clock override (defaults to utc_now())
        allow_after_cutoff: Staff override for bookings after the cutoff time
        cutoff_clock: Submission time to compare against the cutoff
        session: Optional database session (uses session_scope if not provided)

    Returns:
        The CapacityReservation handle (flushed, so it has an id)

    Raises:
        ValidationError: If units is not a positive integer
        NotFound: If the slot does not exist
        SlotClosed: If the slot is closed, past its date, or past its cutoff
        CapacityExceeded: If booked + units would exceed total capacity
    """
    if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
        raise ValidationError([f"Units to reserve must be a positive whole number, got {units!r}"])

    now = now or utc_now()
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot = _get_slot(session, slot_id)
        check_slot_accepting(slot, now, allow_after_cutoff, cutoff_clock)

        result = session.execute(
            update(BakeSlot)
            .where(BakeSlot.id == slot_id)
            .where(BakeSlot.current_orders + units <= BakeSlot.total_capacity)
            .values(current_orders=BakeSlot.current_orders + units)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.refresh(slot)
            log_operation(
                logger,
                operation="reserve",
                outcome="capacity_exceeded",
                level=logging.WARNING,
                bake_slot_id=slot_id,
                requested=units,
                remaining=slot.remaining,
            )
            raise CapacityExceeded(slot_id, requested=units, remaining=slot.remaining)

        session.refresh(slot)
        reservation = CapacityReservation(bake_slot_id=slot_id, units=units)
        session.add(reservation)
        enqueue_change(session, slot)
        session.flush()

        log_operation(
            logger,
            operation="reserve",
            outcome="success",
            bake_slot_id=slot_id,
            units=units,
            booked=slot.current_orders,
            total=slot.total_capacity,
        )
        return reservation


def release(slot_id: int, units: int, *, session=None) -> int:
    """
    Give ``units`` loaves back to a slot, clamping the booked count at zero.

    Args:
        slot_id: Bake slot ID
        units: Loaves to release (> 0)
        session: Optional database session

    Returns:
        The slot's booked count after the release

    Raises:
        ValidationError: If units is not a positive integer
        NotFound: If the slot does not exist
    """
    if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
        raise ValidationError([f"Units to release must be a positive whole number, got {units!r}"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot = _get_slot(session, slot_id)
        session.execute(
            update(BakeSlot)
            .where(BakeSlot.id == slot_id)
            .values(
                current_orders=case(
                    (BakeSlot.current_orders >= units, BakeSlot.current_orders - units),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        session.refresh(slot)
        enqueue_change(session, slot)

        log_operation(
            logger,
            operation="release",
            outcome="success",
            bake_slot_id=slot_id,
            units=units,
            booked=slot.current_orders,
        )
        return slot.current_orders


def release_reservation(
    reservation_id: int, *, now: Optional[datetime] = None, session=None
) -> bool:
    """
    Release a reservation handle exactly once.

    Args:
        reservation_id: CapacityReservation ID
        now: Clock override for released_at
        session: Optional database session

    Returns:
        True if capacity was released, False if the handle was already released

    Raises:
        NotFound: If the reservation does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        reservation = session.get(CapacityReservation, reservation_id)
        if reservation is None:
            raise NotFound("reservation", reservation_id)

        # Claim the handle first; only the claimant gives the units back.
        claimed = session.execute(
            update(CapacityReservation)
            .where(CapacityReservation.id == reservation_id)
            .where(CapacityReservation.released_at.is_(None))
            .values(released_at=now or utc_now())
            .execution_options(synchronize_session=False)
        )
        session.refresh(reservation)
        if claimed.rowcount != 1:
            log_operation(
                logger,
                operation="release_reservation",
                outcome="already_released",
                reservation_id=reservation_id,
            )
            return False

        release(reservation.bake_slot_id, reservation.units, session=session)
        return True


def current_availability(slot_id: int, *, session=None) -> Dict[str, int]:
    """
    Get the capacity figures for a slot.

    Returns:
        Dict with "total", "booked" and "remaining"

    Raises:
        NotFound: If the slot does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot = _get_slot(session, slot_id)
        session.refresh(slot)
        return {
            "total": slot.total_capacity,
            "booked": slot.current_orders,
            "remaining": slot.remaining,
        }
