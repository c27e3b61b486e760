"""
Order Service - Order administration after intake.

This service provides:
- Listing and lookup with filters
- Status changes (cancellation releases capacity; a canceled order is final)
- Payment tracking and admin notes
- Bulk status updates
- Deletion of orders that were never fulfilled or paid
"""

import logging
from contextlib import nullcontext
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import joinedload

from bakehouse.models import BakeSlot, Location, Order, OrderStatus, PaymentStatus
from bakehouse.services import capacity_ledger, order_intake_service
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import InvalidState, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.constants import MAX_NOTES_LENGTH, PAYMENT_METHODS
from bakehouse.utils.validators import sanitize_string

logger = get_service_logger(__name__)


def _get(session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise NotFound("order", order_id)
    return order


def _coerce_status(status) -> OrderStatus:
    try:
        return OrderStatus(status)
    except ValueError:
        raise ValidationError([f"Unknown order status '{status}'"])


def get_order(order_id: int, *, session=None) -> Order:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, order_id)


def list_orders(
    *,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    bake_slot_id: Optional[int] = None,
    bake_date: Optional[date] = None,
    customer_id: Optional[int] = None,
    session=None,
) -> List[Order]:
    """
    List orders matching all given filters, oldest first.

    Args:
        status: OrderStatus value
        payment_status: PaymentStatus value
        bake_slot_id: Orders on one slot
        bake_date: Orders on any slot with this date
        customer_id: Orders of one customer
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Order).options(joinedload(Order.bake_slot))
        if status:
            query = query.filter(Order.status == _coerce_status(status))
        if payment_status:
            query = query.filter(Order.payment_status == PaymentStatus(payment_status))
        if bake_slot_id is not None:
            query = query.filter(Order.bake_slot_id == bake_slot_id)
        if bake_date is not None:
            query = query.join(BakeSlot, Order.bake_slot_id == BakeSlot.id).filter(
                BakeSlot.date == bake_date
            )
        if customer_id is not None:
            query = query.filter(Order.customer_id == customer_id)
        return query.order_by(Order.created_at, Order.id).all()


def update_order_status(order_id: int, status, *, session=None) -> Order:
    """
    Move an order to a new status.

    Cancelling releases the order's capacity (once). A canceled order
    cannot be moved back to any other status.

    Raises:
        NotFound: If the order does not exist
        ValidationError: If the status is unknown
        InvalidState: If the order is canceled and a different status is requested
    """
    new_status = _coerce_status(status)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get(session, order_id)
        if new_status == OrderStatus.CANCELED:
            return order_intake_service.cancel_order(order_id, session=session)
        if order.status == OrderStatus.CANCELED:
            raise InvalidState("order", order_id, order.status.value, f"set status to {new_status.value}")

        previous = order.status
        order.status = new_status
        session.flush()
        log_operation(
            logger,
            operation="update_order_status",
            outcome="success",
            order_id=order_id,
            previous=previous.value if previous else None,
            status=new_status.value,
        )
        return order


def update_order_payment(
    order_id: int,
    payment_status,
    payment_method: Optional[str] = None,
    *,
    session=None,
) -> Order:
    """
    Record payment state for an order.

    Raises:
        ValidationError: If the payment status or method is unknown
    """
    try:
        new_status = PaymentStatus(payment_status)
    except ValueError:
        raise ValidationError([f"Unknown payment status '{payment_status}'"])
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError([f"Payment method must be one of {PAYMENT_METHODS}"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get(session, order_id)
        order.payment_status = new_status
        if payment_method is not None:
            order.payment_method = payment_method
        session.flush()
        log_operation(
            logger,
            operation="update_order_payment",
            outcome="success",
            order_id=order_id,
            payment_status=new_status.value,
            payment_method=order.payment_method,
        )
        return order


def update_order(order_id: int, data: Dict[str, Any], *, session=None) -> Order:
    """
    Update editable order fields: admin_notes, customer_notes, pickup_location_id.

    Items and the bake slot are fixed after intake; cancel and resubmit instead.
    """
    unknown = set(data) - {"admin_notes", "customer_notes", "pickup_location_id"}
    if unknown:
        raise ValidationError([f"Field(s) cannot be changed: {', '.join(sorted(unknown))}"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get(session, order_id)
        if "pickup_location_id" in data:
            location_id = data["pickup_location_id"]
            if session.get(Location, location_id) is None:
                raise NotFound("location", location_id)
            order.pickup_location_id = location_id
        for key in ("admin_notes", "customer_notes"):
            if key in data:
                setattr(order, key, sanitize_string(data[key], MAX_NOTES_LENGTH) or None)
        session.flush()
        return order


def bulk_update_status(order_ids: List[int], status, *, session=None) -> Dict[str, Any]:
    """
    Apply a status to several orders.

    Each order is updated independently; failures are collected rather than
    aborting the batch.

    Returns:
        Dict with "updated" (ids) and "failed" ({id: message})
    """
    updated = []
    failed = {}
    for order_id in order_ids:
        try:
            update_order_status(order_id, status, session=session)
            updated.append(order_id)
        except (NotFound, InvalidState, ValidationError) as e:
            failed[order_id] = str(e)
    if failed:
        log_operation(
            logger,
            operation="bulk_update_status",
            outcome="partial",
            level=logging.WARNING,
            updated=len(updated),
            failed=len(failed),
        )
    return {"updated": updated, "failed": failed}


def delete_order(order_id: int, *, session=None) -> None:
    """
    Delete an order that was never fulfilled or paid.

    Any capacity still held is released first.

    Raises:
        NotFound: If the order does not exist
        InvalidState: If the order is picked up or paid
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get(session, order_id)
        if order.status == OrderStatus.PICKED_UP:
            raise InvalidState("order", order_id, order.status.value, "delete order")
        if order.payment_status == PaymentStatus.PAID:
            raise InvalidState("order", order_id, "paid", "delete order")

        if order.status != OrderStatus.CANCELED:
            if order.reservation_id is not None:
                capacity_ledger.release_reservation(order.reservation_id, session=session)
            elif order.total_quantity > 0:
                capacity_ledger.release(order.bake_slot_id, order.total_quantity, session=session)

        session.delete(order)
        session.flush()
        log_operation(logger, operation="delete_order", outcome="success", order_id=order_id)
