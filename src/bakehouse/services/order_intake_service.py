"""
Order Intake Service - Validate, price and accept customer orders.

An order is accepted in one transaction: the customer is found or created,
capacity for the sum of the line quantities is reserved on the bake slot,
and the order row is written. The transaction runs under the slot's lock
and commits before the lock is released. Any failure (validation, pricing,
capacity) leaves nothing behind.

Prices always come from the current flavor catalog; client-supplied prices
are never trusted.

Example:
    request = OrderRequest(
        bake_slot_id=3,
        items=[OrderLineRequest(flavor_id=1, size="Regular", quantity=2)],
        first_name="Ada",
        last_name="Baker",
        email="ada@example.com",
    )
    order = submit_order(request)
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from bakehouse.models import BakeSlot, Flavor, Location, Order, OrderItem, OrderStatus
from bakehouse.services import capacity_ledger, customer_service
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import NotFound, ServiceError, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.config import DEFAULT_BUSINESS_SETTINGS, BusinessSettings
from bakehouse.utils.constants import (
    MAX_NAME_LENGTH,
    MAX_NOTES_LENGTH,
    NOTIFICATION_PREFERENCES,
)
from bakehouse.utils.datetime_utils import utc_now
from bakehouse.utils.validators import (
    sanitize_string,
    validate_email,
    validate_int_range,
    validate_phone,
    validate_required_string,
)

logger = get_service_logger(__name__)


@dataclass
class OrderLineRequest:
    flavor_id: int
    size: str
    quantity: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderLineRequest":
        return cls(
            flavor_id=data.get("flavor_id", data.get("flavorId")),
            size=data.get("size") or "",
            quantity=data.get("quantity"),
        )


@dataclass
class OrderRequest:
    """
    An order as submitted by a customer, before validation.

    Attributes:
        bake_slot_id: Slot to book
        items: Requested lines (OrderLineRequest or plain dicts)
        first_name, last_name, email: Customer identity
        phone: Optional phone number (required for SMS notifications)
        pickup_location_id: Defaults to the slot's location
        notification_pref: 'email', 'sms' or 'both'
        sms_opt_in: SMS consent
        customer_notes: Free text from the customer
    """

    bake_slot_id: int
    items: List[Union[OrderLineRequest, Dict[str, Any]]]
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    pickup_location_id: Optional[int] = None
    notification_pref: str = "email"
    sms_opt_in: bool = False
    customer_notes: Optional[str] = None
    lines: List[OrderLineRequest] = field(init=False, default_factory=list)

    def __post_init__(self):
        self.lines = [
            line if isinstance(line, OrderLineRequest) else OrderLineRequest.from_dict(line)
            for line in (self.items or [])
            if isinstance(line, (OrderLineRequest, dict))
        ]

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)


def validate_order_request(
    request: OrderRequest, settings: BusinessSettings = DEFAULT_BUSINESS_SETTINGS
) -> List[str]:
    """
    Check the shape of an order request without touching the database.

    Returns:
        List of error messages (empty if the request is well-formed)
    """
    errors = []

    for value, label in (
        (request.first_name, "First name"),
        (request.last_name, "Last name"),
    ):
        valid, message = validate_required_string(value, label)
        if not valid:
            errors.append(message)
        elif len(value.strip()) > MAX_NAME_LENGTH:
            errors.append(f"{label}: Must be at most {MAX_NAME_LENGTH} characters")

    valid, message = validate_email(request.email)
    if not valid:
        errors.append(message)

    if request.phone:
        valid, message = validate_phone(request.phone)
        if not valid:
            errors.append(message)

    if request.notification_pref not in NOTIFICATION_PREFERENCES:
        errors.append(f"Notification preference must be one of {NOTIFICATION_PREFERENCES}")
    elif request.notification_pref in ("sms", "both") and not request.phone:
        errors.append("Phone: Required for SMS notifications")

    if request.customer_notes and len(request.customer_notes) > MAX_NOTES_LENGTH:
        errors.append(f"Notes: Must be at most {MAX_NOTES_LENGTH} characters")

    if not isinstance(request.items, list) or not request.items:
        errors.append("Order must contain at least one item")
        return errors
    if len(request.items) > settings.max_items_per_order:
        errors.append(f"Order may contain at most {settings.max_items_per_order} items")
    if len(request.lines) != len(request.items):
        errors.append("Each order item must be an object")

    for index, line in enumerate(request.lines, start=1):
        valid, message = validate_int_range(
            line.quantity, 1, settings.max_quantity_per_item, f"Item {index} quantity"
        )
        if not valid:
            errors.append(message)
        if isinstance(line.flavor_id, bool) or not isinstance(line.flavor_id, int):
            errors.append(f"Item {index}: Flavor is required")
        if not isinstance(line.size, str) or not line.size.strip():
            errors.append(f"Item {index}: Size is required")

    return errors


def price_items(
    lines: List[OrderLineRequest], session, settings: BusinessSettings = DEFAULT_BUSINESS_SETTINGS
) -> List[OrderItem]:
    """
    Price order lines from the current flavor catalog.

    Raises:
        NotFound: If a flavor does not exist
        ValidationError: If a flavor is inactive, a size is unknown, or the
            total exceeds the order maximum
    """
    items = []
    errors = []
    for index, line in enumerate(lines, start=1):
        flavor = session.get(Flavor, line.flavor_id)
        if flavor is None:
            raise NotFound("flavor", line.flavor_id)
        if not flavor.is_active:
            errors.append(f"Item {index}: {flavor.name} is not currently available")
            continue
        size = line.size.strip()
        unit_price = flavor.price_for(size)
        if unit_price is None:
            errors.append(f"Item {index}: {flavor.name} is not offered in size '{size}'")
            continue
        quantity = int(line.quantity)
        items.append(
            OrderItem(
                flavor_id=flavor.id,
                flavor_name=flavor.name,
                size=size,
                quantity=quantity,
                unit_price=unit_price,
                total_price=(unit_price * quantity).quantize(Decimal("0.01")),
            )
        )

    if not errors:
        total = sum((item.total_price for item in items), Decimal("0.00"))
        if total > settings.max_order_total:
            errors.append(f"Order total ${total} exceeds the maximum of ${settings.max_order_total}")
    if errors:
        raise ValidationError(errors)
    return items


def submit_order(
    request: OrderRequest,
    *,
    now: Optional[datetime] = None,
    settings: Optional[BusinessSettings] = None,
    external_id: Optional[str] = None,
    allow_after_cutoff: bool = False,
    cutoff_clock: Optional[datetime] = None,
    session=None,
) -> Order:
    """
    Accept an order: validate, price, reserve capacity and write it.

    Args:
        request: The submitted order
        now: Clock override for cutoff checks and timestamps
        settings: Order limits (defaults to DEFAULT_BUSINESS_SETTINGS)
        external_id: Intake row id when the order came from the public store
        allow_after_cutoff: Staff override for late orders
        cutoff_clock: When the customer submitted, if earlier than ``now``;
            used for the cutoff comparison only
        session: Optional database session; the caller's transaction must
            commit before it releases slot_lock(request.bake_slot_id)

    Returns:
        The created Order

    Raises:
        ValidationError: If the request is malformed or cannot be priced
        NotFound: If the slot, location or a flavor does not exist
        SlotClosed: If the slot is not taking orders
        CapacityExceeded: If the slot cannot take the quantity
    """
    settings = settings or DEFAULT_BUSINESS_SETTINGS
    now = now or utc_now()

    errors = validate_order_request(request, settings)
    if isinstance(request.bake_slot_id, bool) or not isinstance(request.bake_slot_id, int):
        errors.append("Bake slot is required")
    if errors:
        log_operation(
            logger,
            operation="submit_order",
            outcome="validation_failed",
            level=logging.WARNING,
            errors=len(errors),
        )
        raise ValidationError(errors)

    try:
        with capacity_ledger.slot_lock(request.bake_slot_id):
            cm = nullcontext(session) if session is not None else session_scope()
            with cm as session:
                order = _submit_order_impl(
                    request, now, settings, external_id, allow_after_cutoff, cutoff_clock, session
                )
    except ServiceError as e:
        log_operation(
            logger,
            operation="submit_order",
            outcome="rejected",
            level=logging.WARNING,
            bake_slot_id=request.bake_slot_id,
            code=e.code,
            reason=str(e),
        )
        raise

    log_operation(
        logger,
        operation="submit_order",
        outcome="success",
        order_id=order.id,
        bake_slot_id=order.bake_slot_id,
        loaves=order.total_quantity,
        total=order.total_amount,
    )
    return order


def _submit_order_impl(
    request, now, settings, external_id, allow_after_cutoff, cutoff_clock, session
) -> Order:
    slot = session.get(BakeSlot, request.bake_slot_id)
    if slot is None:
        raise NotFound("bake_slot", request.bake_slot_id)
    capacity_ledger.check_slot_accepting(slot, now, allow_after_cutoff, cutoff_clock)

    pickup_location_id = request.pickup_location_id or slot.location_id
    if session.get(Location, pickup_location_id) is None:
        raise NotFound("location", pickup_location_id)

    items = price_items(request.lines, session, settings)
    total = sum((item.total_price for item in items), Decimal("0.00"))

    customer = customer_service.find_or_create_customer(
        sanitize_string(request.first_name, MAX_NAME_LENGTH),
        sanitize_string(request.last_name, MAX_NAME_LENGTH),
        request.email,
        phone=request.phone,
        notification_pref=request.notification_pref,
        sms_opt_in=bool(request.sms_opt_in),
        session=session,
    )

    reservation = capacity_ledger.reserve(
        slot.id,
        sum(item.quantity for item in items),
        now=now,
        allow_after_cutoff=allow_after_cutoff,
        cutoff_clock=cutoff_clock,
        session=session,
    )

    order = Order(
        customer_id=customer.id,
        bake_slot_id=slot.id,
        pickup_location_id=pickup_location_id,
        total_amount=total,
        status=OrderStatus.SUBMITTED,
        reservation_id=reservation.id,
        external_id=external_id,
        customer_notes=sanitize_string(request.customer_notes, MAX_NOTES_LENGTH) or None,
    )
    order.items = items
    session.add(order)
    customer_service.record_order(customer, total, now)
    session.flush()
    return order


def cancel_order(order_id: int, *, session=None) -> Order:
    """
    Cancel an order and give its loaves back to the slot.

    Cancelling an already canceled order changes nothing; the reservation
    is released exactly once.

    Raises:
        NotFound: If the order does not exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = session.get(Order, order_id)
        if order is None:
            raise NotFound("order", order_id)

        if order.status == OrderStatus.CANCELED:
            log_operation(logger, operation="cancel_order", outcome="already_canceled", order_id=order_id)
            return order

        order.status = OrderStatus.CANCELED
        if order.reservation_id is not None:
            capacity_ledger.release_reservation(order.reservation_id, session=session)
        elif order.total_quantity > 0:
            capacity_ledger.release(order.bake_slot_id, order.total_quantity, session=session)
        session.flush()

        log_operation(
            logger,
            operation="cancel_order",
            outcome="success",
            order_id=order_id,
            bake_slot_id=order.bake_slot_id,
            loaves=order.total_quantity,
        )
        return order
