"""
Extra Production Service - Loaves baked beyond customer orders.

Extras for a bake date are planned onto that date's prep sheet. Once the
sheet is completed, the extras it covered are frozen; dispositions after the
bake are tracked on production records instead.
"""

from contextlib import nullcontext
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from bakehouse.models import (
    BakeSlot,
    Disposition,
    ExtraProduction,
    Flavor,
    PrepSheet,
    PrepSheetItem,
    PrepSheetStatus,
)
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import InvalidState, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.constants import MAX_NOTES_LENGTH
from bakehouse.utils.validators import sanitize_string, validate_int_range

logger = get_service_logger(__name__)


def _get(session, extra_id: int) -> ExtraProduction:
    extra = session.get(ExtraProduction, extra_id)
    if extra is None:
        raise NotFound("extra_production", extra_id)
    return extra


def _validate(data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    """Validate fields and return the cleaned values."""
    errors = []
    cleaned: Dict[str, Any] = {}

    if creating or "production_date" in data:
        if not isinstance(data.get("production_date"), date):
            errors.append("Production date: This field is required")
        else:
            cleaned["production_date"] = data["production_date"]
    if creating or "flavor_id" in data:
        if not data.get("flavor_id"):
            errors.append("Flavor: This field is required")
        else:
            cleaned["flavor_id"] = data["flavor_id"]
    if creating or "quantity" in data:
        valid, message = validate_int_range(data.get("quantity"), 1, 10000, "Quantity")
        if not valid:
            errors.append(message)
        else:
            cleaned["quantity"] = int(data["quantity"])
    if "disposition" in data or creating:
        try:
            cleaned["disposition"] = Disposition(data.get("disposition", Disposition.SOLD))
        except ValueError:
            errors.append(f"Disposition must be one of {[d.value for d in Disposition]}")
    if data.get("sale_price") is not None:
        try:
            price = Decimal(str(data["sale_price"]))
            if price < 0:
                errors.append("Sale price: Must not be negative")
            cleaned["sale_price"] = price
        except InvalidOperation:
            errors.append("Sale price: Must be a number")
    elif "sale_price" in data:
        cleaned["sale_price"] = None
    if "notes" in data:
        cleaned["notes"] = sanitize_string(data["notes"], MAX_NOTES_LENGTH) or None
    if "bake_slot_id" in data:
        cleaned["bake_slot_id"] = data["bake_slot_id"]

    if errors:
        raise ValidationError(errors)
    return cleaned


def _check_not_frozen(session, extra: ExtraProduction) -> None:
    frozen = (
        session.query(PrepSheetItem)
        .join(PrepSheet, PrepSheetItem.prep_sheet_id == PrepSheet.id)
        .filter(PrepSheetItem.extra_production_id == extra.id)
        .filter(PrepSheet.status == PrepSheetStatus.COMPLETED)
        .first()
    )
    if frozen is not None:
        raise InvalidState(
            "extra_production", extra.id, "on a completed prep sheet", "change extra production"
        )


def create_extra(data: Dict[str, Any], *, session=None) -> ExtraProduction:
    """
    Record extra loaves for a bake date.

    Args:
        data: production_date, flavor_id, quantity (> 0), disposition,
            sale_price, notes, bake_slot_id

    Raises:
        ValidationError: If a field is invalid
        NotFound: If the flavor or bake slot does not exist
    """
    cleaned = _validate(data, creating=True)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.get(Flavor, cleaned["flavor_id"]) is None:
            raise NotFound("flavor", cleaned["flavor_id"])
        if cleaned.get("bake_slot_id") and session.get(BakeSlot, cleaned["bake_slot_id"]) is None:
            raise NotFound("bake_slot", cleaned["bake_slot_id"])
        extra = ExtraProduction(**cleaned)
        session.add(extra)
        session.flush()
        log_operation(
            logger,
            operation="create_extra",
            outcome="success",
            extra_production_id=extra.id,
            quantity=extra.quantity,
        )
        return extra


def get_extra(extra_id: int, *, session=None) -> ExtraProduction:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, extra_id)


def list_extras(
    *,
    production_date: Optional[date] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    session=None,
) -> List[ExtraProduction]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(ExtraProduction)
        if production_date is not None:
            query = query.filter(ExtraProduction.production_date == production_date)
        if start_date is not None:
            query = query.filter(ExtraProduction.production_date >= start_date)
        if end_date is not None:
            query = query.filter(ExtraProduction.production_date <= end_date)
        return query.order_by(ExtraProduction.production_date, ExtraProduction.id).all()


def update_extra(extra_id: int, data: Dict[str, Any], *, session=None) -> ExtraProduction:
    """
    Update an extra production entry.

    Raises:
        InvalidState: If the entry is on a completed prep sheet
    """
    cleaned = _validate(data, creating=False)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        extra = _get(session, extra_id)
        _check_not_frozen(session, extra)
        if "flavor_id" in cleaned and session.get(Flavor, cleaned["flavor_id"]) is None:
            raise NotFound("flavor", cleaned["flavor_id"])
        for key, value in cleaned.items():
            setattr(extra, key, value)
        session.flush()
        return extra


def delete_extra(extra_id: int, *, session=None) -> None:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        extra = _get(session, extra_id)
        _check_not_frozen(session, extra)
        for item in session.query(PrepSheetItem).filter(
            PrepSheetItem.extra_production_id == extra_id
        ):
            session.delete(item)
        session.delete(extra)
        session.flush()
        log_operation(logger, operation="delete_extra", outcome="success", extra_production_id=extra_id)


def disposition_summary(
    start_date: Optional[date] = None, end_date: Optional[date] = None, *, session=None
) -> Dict[str, Dict[str, Any]]:
    """
    Loaves and revenue per disposition over a date range.

    Returns:
        {disposition: {"quantity": int, "revenue": Decimal}} for every disposition
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(
            ExtraProduction.disposition,
            func.coalesce(func.sum(ExtraProduction.quantity), 0),
            func.coalesce(func.sum(ExtraProduction.sale_price), 0),
        )
        if start_date is not None:
            query = query.filter(ExtraProduction.production_date >= start_date)
        if end_date is not None:
            query = query.filter(ExtraProduction.production_date <= end_date)
        rows = query.group_by(ExtraProduction.disposition).all()

        summary = {d.value: {"quantity": 0, "revenue": Decimal("0.00")} for d in Disposition}
        for disposition, quantity, revenue in rows:
            summary[Disposition(disposition).value] = {
                "quantity": int(quantity),
                "revenue": Decimal(str(revenue)).quantize(Decimal("0.01")),
            }
        return summary
