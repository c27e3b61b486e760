"""
Customer Service - Customer records and order statistics.

This service provides:
- find_or_create_customer(): Match by lower-cased e-mail at order intake
- record_order(): Roll an accepted order into the customer's statistics
- CRUD, search and store credit adjustments
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from bakehouse.models import Customer, Order
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import DatabaseError, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.constants import MAX_NAME_LENGTH, NOTIFICATION_PREFERENCES
from bakehouse.utils.datetime_utils import utc_now
from bakehouse.utils.validators import (
    normalize_phone,
    sanitize_string,
    validate_email,
    validate_phone,
)

logger = get_service_logger(__name__)


def _get(session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFound("customer", customer_id)
    return customer


def find_or_create_customer(
    first_name: str,
    last_name: str,
    email: str,
    *,
    phone: Optional[str] = None,
    notification_pref: str = "email",
    sms_opt_in: bool = False,
    session=None,
) -> Customer:
    """
    Return the customer with this e-mail, creating one if needed.

    Contact details of an existing customer are refreshed from the latest
    order. Inputs are expected to be validated and sanitized by the caller.

    Args:
        first_name, last_name: Customer name
        email: E-mail address (matched case-insensitively)
        phone: Optional phone number
        notification_pref: 'email', 'sms' or 'both'
        sms_opt_in: SMS consent
        session: Optional database session

    Returns:
        Customer instance (flushed)
    """
    normalized_email = email.strip().lower()
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        customer = session.query(Customer).filter(Customer.email == normalized_email).first()
        if customer is None:
            customer = Customer(
                first_name=first_name,
                last_name=last_name,
                email=normalized_email,
                phone=normalize_phone(phone) if phone else None,
                notification_pref=notification_pref,
                sms_opt_in=sms_opt_in,
            )
            session.add(customer)
            session.flush()
            log_operation(logger, operation="create_customer", outcome="success", customer_id=customer.id)
        else:
            customer.first_name = first_name
            customer.last_name = last_name
            if phone:
                customer.phone = normalize_phone(phone)
            customer.notification_pref = notification_pref
            customer.sms_opt_in = sms_opt_in
        return customer


def record_order(
    customer: Customer, amount: Decimal, when: Optional[datetime] = None
) -> None:
    """Add one accepted order of ``amount`` to the customer's statistics."""
    when = when or utc_now()
    customer.total_orders = (customer.total_orders or 0) + 1
    customer.total_spent = Decimal(customer.total_spent or 0) + Decimal(amount)
    if customer.first_order_date is None:
        customer.first_order_date = when
    customer.last_order_date = when


def get_customer(customer_id: int, *, session=None) -> Customer:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, customer_id)


def get_customer_by_email(email: str, *, session=None) -> Optional[Customer]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return (
            session.query(Customer).filter(Customer.email == email.strip().lower()).first()
        )


def list_customers(search: Optional[str] = None, *, session=None) -> List[Customer]:
    """
    List customers, optionally filtered by a name/e-mail substring.

    Results are ordered by last name, then first name.
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Customer)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    Customer.first_name.ilike(pattern),
                    Customer.last_name.ilike(pattern),
                    Customer.email.ilike(pattern),
                )
            )
        return query.order_by(Customer.last_name, Customer.first_name).all()


def update_customer(customer_id: int, data: Dict[str, Any], *, session=None) -> Customer:
    """
    Update customer contact details.

    Args:
        customer_id: Customer ID
        data: Any of first_name, last_name, email, phone, notification_pref, sms_opt_in

    Raises:
        NotFound: If the customer does not exist
        ValidationError: If a field is invalid or the e-mail belongs to someone else
    """
    errors = []
    if "email" in data:
        valid, message = validate_email(data["email"])
        if not valid:
            errors.append(message)
    if data.get("phone"):
        valid, message = validate_phone(data["phone"])
        if not valid:
            errors.append(message)
    if "notification_pref" in data and data["notification_pref"] not in NOTIFICATION_PREFERENCES:
        errors.append(f"Notification preference must be one of {NOTIFICATION_PREFERENCES}")
    for name_field in ("first_name", "last_name"):
        if name_field in data and not sanitize_string(data[name_field], MAX_NAME_LENGTH):
            errors.append(f"{name_field}: This field is required")
    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            customer = _get(session, customer_id)
            if "email" in data:
                email = data["email"].strip().lower()
                other = (
                    session.query(Customer)
                    .filter(Customer.email == email, Customer.id != customer_id)
                    .first()
                )
                if other is not None:
                    raise ValidationError([f"Email {email} is already used by another customer"])
                customer.email = email
            for name_field in ("first_name", "last_name"):
                if name_field in data:
                    setattr(customer, name_field, sanitize_string(data[name_field], MAX_NAME_LENGTH))
            if "phone" in data:
                customer.phone = normalize_phone(data["phone"]) if data["phone"] else None
            if "notification_pref" in data:
                customer.notification_pref = data["notification_pref"]
            if "sms_opt_in" in data:
                customer.sms_opt_in = bool(data["sms_opt_in"])
            session.flush()
            return customer
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to update customer: {str(e)}", e)


def adjust_credit(customer_id: int, amount: Decimal, *, session=None) -> Customer:
    """
    Add (positive) or spend (negative) store credit.

    Raises:
        ValidationError: If the balance would go negative
    """
    amount = Decimal(str(amount))
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        customer = _get(session, customer_id)
        balance = Decimal(customer.credit_balance or 0) + amount
        if balance < 0:
            raise ValidationError(
                [f"Credit balance cannot go negative (balance {customer.credit_balance}, change {amount})"]
            )
        customer.credit_balance = balance
        log_operation(
            logger,
            operation="adjust_credit",
            outcome="success",
            customer_id=customer_id,
            amount=amount,
            balance=balance,
        )
        return customer


def get_customer_orders(customer_id: int, *, session=None) -> List[Order]:
    """All orders of a customer, newest first."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        _get(session, customer_id)
        return (
            session.query(Order)
            .filter(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )
