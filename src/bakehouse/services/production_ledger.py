"""
Production Ledger - What happened to the loaves after the bake.

This module provides:
- record_from_prep_item(): Create the planned record for a completed prep item
- update_status(): Move a record between any of the production statuses
- split_record(): Move part of a record's loaves into a new record
- update_order_payment_from_production(): Record payment and copy it onto
  the originating order

Splitting never changes the total: a record and everything split from it
always add up to the quantity originally produced.
"""

from contextlib import nullcontext
from decimal import Decimal
from typing import List, Optional

from bakehouse.models import (
    ExtraProduction,
    Order,
    PaymentStatus,
    PrepSheetItem,
    ProductionRecord,
    ProductionStatus,
)
from bakehouse.services import order_service
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import InvalidQuantity, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.constants import PAYMENT_METHODS

logger = get_service_logger(__name__)

MONEY_PLACES = Decimal("0.01")


def _get(session, record_id: int) -> ProductionRecord:
    record = session.get(ProductionRecord, record_id)
    if record is None:
        raise NotFound("production_record", record_id)
    return record


def _coerce_status(status) -> ProductionStatus:
    try:
        return ProductionStatus(status)
    except ValueError:
        raise ValidationError([f"Unknown production status '{status}'"])


def _order_line_price(order: Order, item: PrepSheetItem, quantity: int) -> Optional[Decimal]:
    for line in order.items:
        if line.flavor_id == item.flavor_id and line.size == (item.size or line.size):
            return (line.unit_price * quantity).quantize(MONEY_PLACES)
    return None


def record_from_prep_item(item: PrepSheetItem, *, session) -> ProductionRecord:
    """
    Create the production record for one prep sheet item at completion.

    The record starts 'planned' with the item's actual quantity (zero is
    allowed). Order-sourced records carry the order's price and payment
    state; extra-sourced ones carry the extra's sale price.
    """
    quantity = item.actual_quantity if item.actual_quantity is not None else item.planned_quantity
    record = ProductionRecord(
        prep_sheet_id=item.prep_sheet_id,
        prep_sheet_item_id=item.id,
        order_id=item.order_id,
        extra_production_id=item.extra_production_id,
        flavor_id=item.flavor_id,
        quantity=quantity,
        status=ProductionStatus.PLANNED,
    )
    if item.order_id is not None:
        order = session.get(Order, item.order_id)
        if order is not None:
            record.sale_price = _order_line_price(order, item, quantity)
            record.payment_status = order.payment_status
            record.payment_method = order.payment_method
    elif item.extra_production_id is not None:
        extra = session.get(ExtraProduction, item.extra_production_id)
        if extra is not None and extra.sale_price is not None:
            record.sale_price = Decimal(extra.sale_price)
    session.add(record)
    return record


def get_record(record_id: int, *, session=None) -> ProductionRecord:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, record_id)


def list_records(
    *,
    prep_sheet_id: Optional[int] = None,
    status: Optional[str] = None,
    order_id: Optional[int] = None,
    session=None,
) -> List[ProductionRecord]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(ProductionRecord)
        if prep_sheet_id is not None:
            query = query.filter(ProductionRecord.prep_sheet_id == prep_sheet_id)
        if status:
            query = query.filter(ProductionRecord.status == _coerce_status(status))
        if order_id is not None:
            query = query.filter(ProductionRecord.order_id == order_id)
        return query.order_by(ProductionRecord.id).all()


def update_status(record_id: int, status, *, session=None) -> ProductionRecord:
    """
    Set a record's status. Every transition between statuses is allowed.

    Raises:
        NotFound: If the record does not exist
        ValidationError: If the status is unknown
    """
    new_status = _coerce_status(status)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        record = _get(session, record_id)
        previous = record.status
        record.status = new_status
        session.flush()
        log_operation(
            logger,
            operation="update_production_status",
            outcome="success",
            record_id=record_id,
            previous=previous.value if previous else None,
            status=new_status.value,
        )
        return record


def split_record(
    record_id: int, split_quantity: int, new_status, *, session=None
) -> ProductionRecord:
    """
    Split loaves off a record into a new record with its own status.

    Example: a record of 5 loaves split by 3 with status 'sold' leaves the
    original with 2 and creates a new record of 3 sold loaves.

    Args:
        record_id: Record to split
        split_quantity: Loaves to move (0 < split_quantity < quantity)
        new_status: Status of the new record

    Returns:
        The new ProductionRecord

    Raises:
        InvalidQuantity: If split_quantity is out of range
        ValidationError: If the status is unknown
    """
    status = _coerce_status(new_status)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        record = _get(session, record_id)
        if (
            isinstance(split_quantity, bool)
            or not isinstance(split_quantity, int)
            or not 0 < split_quantity < record.quantity
        ):
            raise InvalidQuantity(
                split_quantity,
                f"Split quantity must be between 1 and {record.quantity - 1} "
                f"for a record of {record.quantity}, got {split_quantity!r}",
            )

        new_price = None
        if record.sale_price is not None:
            price = Decimal(record.sale_price)
            new_price = (price * split_quantity / record.quantity).quantize(MONEY_PLACES)
            record.sale_price = price - new_price

        split = ProductionRecord(
            prep_sheet_id=record.prep_sheet_id,
            prep_sheet_item_id=record.prep_sheet_item_id,
            order_id=record.order_id,
            extra_production_id=record.extra_production_id,
            flavor_id=record.flavor_id,
            quantity=split_quantity,
            status=status,
            sale_price=new_price,
            payment_status=record.payment_status,
            payment_method=record.payment_method,
            split_from_id=record.id,
        )
        record.quantity -= split_quantity
        session.add(split)
        session.flush()

        log_operation(
            logger,
            operation="split_record",
            outcome="success",
            record_id=record_id,
            new_record_id=split.id,
            moved=split_quantity,
            remaining=record.quantity,
        )
        return split


def update_order_payment_from_production(
    record_id: int,
    payment_status,
    payment_method: Optional[str] = None,
    *,
    session=None,
) -> ProductionRecord:
    """
    Record payment on a production record and its originating order.

    Raises:
        NotFound: If the record does not exist
        ValidationError: If the payment status or method is invalid
    """
    try:
        new_status = PaymentStatus(payment_status)
    except ValueError:
        raise ValidationError([f"Unknown payment status '{payment_status}'"])
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError([f"Payment method must be one of {PAYMENT_METHODS}"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        record = _get(session, record_id)
        if record.order_id is not None:
            order_service.update_order_payment(
                record.order_id, new_status, payment_method, session=session
            )
        record.payment_status = new_status
        if payment_method is not None:
            record.payment_method = payment_method
        session.flush()
        log_operation(
            logger,
            operation="update_order_payment_from_production",
            outcome="success",
            record_id=record_id,
            order_id=record.order_id,
            payment_status=new_status.value,
        )
        return record
