"""
Bake Slot Service - Slot CRUD, bulk generation and open/close.

The booked count (current_orders) is owned by the capacity ledger; this
service never writes it. Closing a slot is a soft close and slots that
orders reference are never deleted.
"""

from contextlib import nullcontext
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from bakehouse.models import BakeSlot, Location, Order
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import InvalidState, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.services.sync.publisher import enqueue_change
from bakehouse.utils.config import DEFAULT_BUSINESS_SETTINGS, BusinessSettings
from bakehouse.utils.datetime_utils import utc_now

logger = get_service_logger(__name__)


def default_cutoff(bake_date: date, hours: int) -> datetime:
    """Ordering closes ``hours`` before midnight (UTC) at the start of the bake date."""
    start_of_day = datetime.combine(bake_date, time(0, 0), tzinfo=timezone.utc)
    return start_of_day - timedelta(hours=hours)


def _get(session, slot_id: int) -> BakeSlot:
    slot = session.get(BakeSlot, slot_id)
    if slot is None:
        raise NotFound("bake_slot", slot_id)
    return slot


def _validate_capacity(value: Any) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return "Total capacity: Must be a whole number of zero or more"
    return None


def create_slot(
    data: Dict[str, Any],
    *,
    settings: Optional[BusinessSettings] = None,
    session=None,
) -> BakeSlot:
    """
    Create a bake slot.

    Args:
        data: date (date), location_id, total_capacity, optional cutoff_time
            (defaults to settings.default_cutoff_hours before the date), is_open
        settings: Business settings for the default cutoff

    Raises:
        ValidationError: If a field is missing or invalid
        NotFound: If the location does not exist
    """
    settings = settings or DEFAULT_BUSINESS_SETTINGS
    errors = []
    if not isinstance(data.get("date"), date):
        errors.append("Date: This field is required")
    if not data.get("location_id"):
        errors.append("Location: This field is required")
    capacity_error = _validate_capacity(data.get("total_capacity"))
    if capacity_error:
        errors.append(capacity_error)
    if errors:
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.get(Location, data["location_id"]) is None:
            raise NotFound("location", data["location_id"])
        slot = BakeSlot(
            date=data["date"],
            location_id=data["location_id"],
            total_capacity=data["total_capacity"],
            current_orders=0,
            cutoff_time=data.get("cutoff_time")
            or default_cutoff(data["date"], settings.default_cutoff_hours),
            is_open=data.get("is_open", True),
        )
        session.add(slot)
        session.flush()
        enqueue_change(session, slot)
        log_operation(
            logger,
            operation="create_slot",
            outcome="success",
            bake_slot_id=slot.id,
            date=slot.date,
            capacity=slot.total_capacity,
        )
        return slot


def get_slot(slot_id: int, *, session=None) -> BakeSlot:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, slot_id)


def list_slots(
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    location_id: Optional[int] = None,
    open_only: bool = False,
    session=None,
) -> List[BakeSlot]:
    """List slots in date order, optionally limited to a date range and location."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(BakeSlot)
        if start_date is not None:
            query = query.filter(BakeSlot.date >= start_date)
        if end_date is not None:
            query = query.filter(BakeSlot.date <= end_date)
        if location_id is not None:
            query = query.filter(BakeSlot.location_id == location_id)
        if open_only:
            query = query.filter(BakeSlot.is_open.is_(True))
        return query.order_by(BakeSlot.date, BakeSlot.location_id).all()


def update_slot(slot_id: int, data: Dict[str, Any], *, session=None) -> BakeSlot:
    """
    Update total_capacity, cutoff_time or date.

    Raises:
        ValidationError: If capacity would drop below the loaves already booked
    """
    unknown = set(data) - {"total_capacity", "cutoff_time", "date"}
    if unknown:
        raise ValidationError([f"Field(s) cannot be changed: {', '.join(sorted(unknown))}"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot = _get(session, slot_id)
        if "total_capacity" in data:
            capacity_error = _validate_capacity(data["total_capacity"])
            if capacity_error:
                raise ValidationError([capacity_error])
            session.refresh(slot)
            if data["total_capacity"] < slot.current_orders:
                raise ValidationError(
                    [
                        f"Total capacity cannot be less than the {slot.current_orders} "
                        "loaves already booked"
                    ]
                )
            slot.total_capacity = data["total_capacity"]
        if "cutoff_time" in data:
            slot.cutoff_time = data["cutoff_time"]
        if "date" in data:
            slot.date = data["date"]
        session.flush()
        enqueue_change(session, slot)
        return slot


def close_slot(slot_id: int, *, session=None) -> BakeSlot:
    """Stop taking orders on a slot. Existing orders are untouched."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot = _get(session, slot_id)
        if slot.is_open:
            slot.is_open = False
            slot.manually_closed_at = utc_now()
            session.flush()
            enqueue_change(session, slot)
            log_operation(logger, operation="close_slot", outcome="success", bake_slot_id=slot_id)
        return slot


def reopen_slot(slot_id: int, *, session=None) -> BakeSlot:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot = _get(session, slot_id)
        if not slot.is_open:
            slot.is_open = True
            slot.manually_closed_at = None
            session.flush()
            enqueue_change(session, slot)
            log_operation(logger, operation="reopen_slot", outcome="success", bake_slot_id=slot_id)
        return slot


def delete_slot(slot_id: int, *, session=None) -> None:
    """
    Delete a slot that no order references.

    Raises:
        InvalidState: If orders reference the slot (close it instead)
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot = _get(session, slot_id)
        order_count = session.query(Order).filter(Order.bake_slot_id == slot_id).count()
        if order_count:
            raise InvalidState(
                "bake_slot", slot_id, f"referenced by {order_count} order(s)", "delete slot"
            )
        enqueue_change(session, slot)
        session.delete(slot)
        session.flush()
        log_operation(logger, operation="delete_slot", outcome="success", bake_slot_id=slot_id)


def generate_slots(
    start_date: date,
    end_date: date,
    weekdays: Iterable[int],
    location_ids: Iterable[int],
    total_capacity: int,
    *,
    cutoff_hours: Optional[int] = None,
    settings: Optional[BusinessSettings] = None,
    session=None,
) -> List[BakeSlot]:
    """
    Create slots for every matching weekday in a date range.

    Dates that already have a slot at a location are skipped, so generating
    the same range twice creates nothing new.

    Args:
        start_date, end_date: Inclusive date range
        weekdays: Weekday numbers (Monday=0 ... Sunday=6)
        location_ids: Locations to create slots for
        total_capacity: Capacity of each new slot
        cutoff_hours: Hours before the bake date ordering closes
            (defaults to settings.default_cutoff_hours)

    Returns:
        The newly created slots
    """
    settings = settings or DEFAULT_BUSINESS_SETTINGS
    weekdays = set(weekdays)
    location_ids = list(location_ids)
    errors = []
    if end_date < start_date:
        errors.append("End date must not be before start date")
    if not weekdays or not weekdays <= set(range(7)):
        errors.append("Weekdays must be numbers 0 (Monday) to 6 (Sunday)")
    if not location_ids:
        errors.append("At least one location is required")
    capacity_error = _validate_capacity(total_capacity)
    if capacity_error:
        errors.append(capacity_error)
    if errors:
        raise ValidationError(errors)

    hours = settings.default_cutoff_hours if cutoff_hours is None else cutoff_hours
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        for location_id in location_ids:
            if session.get(Location, location_id) is None:
                raise NotFound("location", location_id)

        existing = {
            (slot.location_id, slot.date)
            for slot in session.query(BakeSlot)
            .filter(BakeSlot.date >= start_date, BakeSlot.date <= end_date)
            .all()
        }

        created = []
        day = start_date
        while day <= end_date:
            if day.weekday() in weekdays:
                for location_id in location_ids:
                    if (location_id, day) in existing:
                        continue
                    slot = BakeSlot(
                        date=day,
                        location_id=location_id,
                        total_capacity=total_capacity,
                        current_orders=0,
                        cutoff_time=default_cutoff(day, hours),
                        is_open=True,
                    )
                    session.add(slot)
                    created.append(slot)
            day += timedelta(days=1)

        session.flush()
        for slot in created:
            enqueue_change(session, slot)

        log_operation(
            logger,
            operation="generate_slots",
            outcome="success",
            created=len(created),
            start=start_date,
            end=end_date,
        )
        return created
