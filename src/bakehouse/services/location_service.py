"""
Location Service - Pickup location CRUD.

Location changes are queued for the external store in the same transaction.
"""

from contextlib import nullcontext
from typing import Any, Dict, List

from bakehouse.models import BakeSlot, Location
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import InvalidState, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.services.sync.publisher import enqueue_change
from bakehouse.utils.validators import sanitize_string

logger = get_service_logger(__name__)

EDITABLE_FIELDS = ("name", "address", "description", "is_active", "sort_order")


def _get(session, location_id: int) -> Location:
    location = session.get(Location, location_id)
    if location is None:
        raise NotFound("location", location_id)
    return location


def _validate(data: Dict[str, Any], creating: bool) -> None:
    errors = []
    if creating or "name" in data:
        if not sanitize_string(data.get("name"), 200):
            errors.append("Name: This field is required")
    if "sort_order" in data and not isinstance(data["sort_order"], int):
        errors.append("Sort order: Must be a whole number")
    if errors:
        raise ValidationError(errors)


def create_location(data: Dict[str, Any], *, session=None) -> Location:
    """
    Create a pickup location.

    Args:
        data: name (required), address, description, is_active, sort_order
    """
    _validate(data, creating=True)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        location = Location(
            name=sanitize_string(data["name"], 200),
            address=data.get("address"),
            description=data.get("description"),
            is_active=data.get("is_active", True),
            sort_order=data.get("sort_order", 0),
        )
        session.add(location)
        session.flush()
        enqueue_change(session, location)
        log_operation(logger, operation="create_location", outcome="success", location_id=location.id)
        return location


def get_location(location_id: int, *, session=None) -> Location:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, location_id)


def list_locations(*, active_only: bool = False, session=None) -> List[Location]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Location)
        if active_only:
            query = query.filter(Location.is_active.is_(True))
        return query.order_by(Location.sort_order, Location.name).all()


def update_location(location_id: int, data: Dict[str, Any], *, session=None) -> Location:
    _validate(data, creating=False)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        location = _get(session, location_id)
        for key in EDITABLE_FIELDS:
            if key in data:
                value = data[key]
                if key == "name":
                    value = sanitize_string(value, 200)
                setattr(location, key, value)
        session.flush()
        enqueue_change(session, location)
        return location


def delete_location(location_id: int, *, session=None) -> None:
    """
    Delete a location that no bake slot uses.

    Raises:
        InvalidState: If bake slots reference the location (deactivate it instead)
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        location = _get(session, location_id)
        slot_count = session.query(BakeSlot).filter(BakeSlot.location_id == location_id).count()
        if slot_count:
            raise InvalidState(
                "location", location_id, f"used by {slot_count} bake slot(s)", "delete location"
            )
        enqueue_change(session, location)
        session.delete(location)
        session.flush()
        log_operation(logger, operation="delete_location", outcome="success", location_id=location_id)
