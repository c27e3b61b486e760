"""
Prep Sheet Service - Per bake date production plans.

A prep sheet lists what to bake on one date: one item per line of every
non-canceled order on that date's slots, plus one item per extra production
entry. While the sheet is a draft, orders and extras can be added or
removed. Completing it snapshots the actual quantities and creates the
production records in a single transaction; a completed sheet never changes
again.

Functions:
- build_prep_sheet(): Create or rebuild the draft for a date
- get_prep_plan(): Flavor totals, scaled recipes and merged ingredient totals
- add_order() / remove_order() / add_extra() / update_extra() / remove_extra()
- complete_prep_sheet(): Draft -> completed, exactly once
"""

from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import update

from bakehouse.models import (
    BakeSlot,
    ExtraProduction,
    Flavor,
    Order,
    OrderStatus,
    PrepSheet,
    PrepSheetItem,
    PrepSheetStatus,
    ProductionRecord,
)
from bakehouse.services import (
    extra_production_service,
    ingredient_service,
    production_ledger,
    recipe_scaler,
    recipe_service,
)
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import InvalidState, NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.config import BusinessSettings
from bakehouse.utils.datetime_utils import utc_now
from bakehouse.utils.validators import validate_int_range

logger = get_service_logger(__name__)


@dataclass
class FlavorPlan:
    flavor_id: int
    flavor_name: str
    quantity: int
    scaled: recipe_scaler.ScaleResult


@dataclass
class PrepPlan:
    """
    What to bake and what it takes, for one prep sheet.

    Attributes:
        flavors: One entry per flavor, sorted by flavor name then id
        ingredient_totals: Merged ingredient quantities, sorted by name and unit
        missing_recipes: Names of flavors that have no active recipe
    """

    prep_sheet_id: int
    bake_date: date
    status: str
    flavors: List[FlavorPlan] = field(default_factory=list)
    ingredient_totals: List[Dict[str, Any]] = field(default_factory=list)
    missing_recipes: List[str] = field(default_factory=list)

    @property
    def total_loaves(self) -> int:
        return sum(plan.quantity for plan in self.flavors)

    @property
    def estimated_cost(self) -> Decimal:
        return sum(
            (plan.scaled.total_cost for plan in self.flavors if plan.scaled),
            Decimal("0"),
        )


def _get(session, prep_sheet_id: int) -> PrepSheet:
    sheet = session.get(PrepSheet, prep_sheet_id)
    if sheet is None:
        raise NotFound("prep_sheet", prep_sheet_id)
    return sheet


def _require_draft(sheet: PrepSheet, action: str) -> None:
    if sheet.status != PrepSheetStatus.DRAFT:
        raise InvalidState("prep_sheet", sheet.id, sheet.status.value, action)


def _order_items(order: Order) -> List[PrepSheetItem]:
    return [
        PrepSheetItem(
            flavor_id=line.flavor_id,
            size=line.size,
            planned_quantity=line.quantity,
            order_id=order.id,
        )
        for line in order.items
    ]


def _extra_item(extra: ExtraProduction) -> PrepSheetItem:
    return PrepSheetItem(
        flavor_id=extra.flavor_id,
        planned_quantity=extra.quantity,
        extra_production_id=extra.id,
    )


def build_prep_sheet(bake_date: date, *, session=None) -> PrepSheet:
    """
    Create the draft prep sheet for a date, or rebuild the existing draft.

    Args:
        bake_date: Bake date

    Returns:
        The draft PrepSheet with its items

    Raises:
        InvalidState: If the date's sheet is already completed
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = session.query(PrepSheet).filter(PrepSheet.bake_date == bake_date).first()
        if sheet is None:
            sheet = PrepSheet(bake_date=bake_date, status=PrepSheetStatus.DRAFT)
            session.add(sheet)
        else:
            _require_draft(sheet, "rebuild prep sheet")
            sheet.items.clear()
        session.flush()

        orders = (
            session.query(Order)
            .join(BakeSlot, Order.bake_slot_id == BakeSlot.id)
            .filter(BakeSlot.date == bake_date)
            .filter(Order.status != OrderStatus.CANCELED)
            .order_by(Order.id)
            .all()
        )
        for order in orders:
            sheet.items.extend(_order_items(order))

        extras = (
            session.query(ExtraProduction)
            .filter(ExtraProduction.production_date == bake_date)
            .order_by(ExtraProduction.id)
            .all()
        )
        for extra in extras:
            sheet.items.append(_extra_item(extra))

        session.flush()
        log_operation(
            logger,
            operation="build_prep_sheet",
            outcome="success",
            prep_sheet_id=sheet.id,
            bake_date=bake_date,
            orders=len(orders),
            extras=len(extras),
        )
        return sheet


def get_prep_sheet(prep_sheet_id: int, *, session=None) -> PrepSheet:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, prep_sheet_id)


def get_prep_sheet_for_date(bake_date: date, *, session=None) -> Optional[PrepSheet]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return session.query(PrepSheet).filter(PrepSheet.bake_date == bake_date).first()


def get_prep_plan(
    prep_sheet_id: int,
    *,
    settings: Optional[BusinessSettings] = None,
    session=None,
) -> PrepPlan:
    """
    Aggregate a prep sheet by flavor and scale each flavor's recipe.

    Completed sheets are planned from their actual quantities, drafts from
    planned quantities. Ingredient totals are merged across flavors by
    normalized name and unit. The result depends only on the multiset of
    items, not on the order they were added in.
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = _get(session, prep_sheet_id)
        completed = sheet.status == PrepSheetStatus.COMPLETED

        quantities: Dict[int, int] = {}
        for item in sheet.items:
            quantity = item.planned_quantity
            if completed and item.actual_quantity is not None:
                quantity = item.actual_quantity
            quantities[item.flavor_id] = quantities.get(item.flavor_id, 0) + quantity

        prices = ingredient_service.load_price_list(session=session)
        plan = PrepPlan(
            prep_sheet_id=sheet.id,
            bake_date=sheet.bake_date,
            status=sheet.status.value,
        )
        flavors = [session.get(Flavor, flavor_id) for flavor_id in quantities]
        for flavor in sorted(flavors, key=lambda f: (f.name, f.id)):
            recipe = recipe_service.get_active_recipe_for_flavor(flavor.id, session=session)
            scaled = recipe_scaler.scale(
                recipe, quantities[flavor.id], settings=settings, prices=prices
            )
            if not scaled:
                scaled = recipe_scaler.NoRecipe(flavor_id=flavor.id)
                plan.missing_recipes.append(flavor.name)
            plan.flavors.append(
                FlavorPlan(
                    flavor_id=flavor.id,
                    flavor_name=flavor.name,
                    quantity=quantities[flavor.id],
                    scaled=scaled,
                )
            )

        plan.ingredient_totals = recipe_scaler.merge_ingredient_totals(
            fp.scaled for fp in plan.flavors if fp.scaled
        )
        return plan


def add_order(prep_sheet_id: int, order_id: int, *, session=None) -> List[PrepSheetItem]:
    """
    Add an order's lines to a draft prep sheet.

    Raises:
        InvalidState: If the sheet is completed or the order is canceled
        ValidationError: If the order is already on the sheet
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = _get(session, prep_sheet_id)
        _require_draft(sheet, "add order")
        order = session.get(Order, order_id)
        if order is None:
            raise NotFound("order", order_id)
        if order.status == OrderStatus.CANCELED:
            raise InvalidState("order", order_id, order.status.value, "add order to prep sheet")
        if any(item.order_id == order_id for item in sheet.items):
            raise ValidationError([f"Order {order_id} is already on this prep sheet"])

        items = _order_items(order)
        sheet.items.extend(items)
        session.flush()
        return items


def remove_order(prep_sheet_id: int, order_id: int, *, session=None) -> int:
    """
    Remove an order's lines from a draft prep sheet.

    Returns:
        Number of items removed

    Raises:
        InvalidState: If the sheet is completed
        ValidationError: If the order is not on the sheet
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = _get(session, prep_sheet_id)
        _require_draft(sheet, "remove order")
        items = [item for item in sheet.items if item.order_id == order_id]
        if not items:
            raise ValidationError([f"Order {order_id} is not on this prep sheet"])
        for item in items:
            sheet.items.remove(item)
        session.flush()
        return len(items)


def add_extra(prep_sheet_id: int, data: Dict[str, Any], *, session=None) -> PrepSheetItem:
    """
    Record extra production for the sheet's date and plan it.

    Args:
        data: flavor_id, quantity, disposition, sale_price, notes
            (production_date is the sheet's bake date)

    Raises:
        InvalidState: If the sheet is completed
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = _get(session, prep_sheet_id)
        _require_draft(sheet, "add extra production")
        extra = extra_production_service.create_extra(
            {**data, "production_date": sheet.bake_date}, session=session
        )
        item = _extra_item(extra)
        sheet.items.append(item)
        session.flush()
        return item


def update_extra(
    prep_sheet_id: int, extra_id: int, data: Dict[str, Any], *, session=None
) -> PrepSheetItem:
    """
    Change an extra production entry on a draft sheet and its planned item.

    Raises:
        InvalidState: If the sheet is completed
        ValidationError: If the extra is not on the sheet
    """
    if "production_date" in data:
        raise ValidationError(["Production date of a planned extra cannot change"])
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = _get(session, prep_sheet_id)
        _require_draft(sheet, "update extra production")
        item = next((i for i in sheet.items if i.extra_production_id == extra_id), None)
        if item is None:
            raise ValidationError([f"Extra production {extra_id} is not on this prep sheet"])
        extra = extra_production_service.update_extra(extra_id, data, session=session)
        item.flavor_id = extra.flavor_id
        item.planned_quantity = extra.quantity
        session.flush()
        return item


def remove_extra(prep_sheet_id: int, extra_id: int, *, session=None) -> None:
    """Delete an extra production entry from a draft sheet."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = _get(session, prep_sheet_id)
        _require_draft(sheet, "remove extra production")
        item = next((i for i in sheet.items if i.extra_production_id == extra_id), None)
        if item is None:
            raise ValidationError([f"Extra production {extra_id} is not on this prep sheet"])
        sheet.items.remove(item)
        session.flush()
        extra_production_service.delete_extra(extra_id, session=session)


def complete_prep_sheet(
    prep_sheet_id: int,
    actual_quantities: Optional[Dict[int, int]] = None,
    *,
    now: Optional[datetime] = None,
    session=None,
) -> List[ProductionRecord]:
    """
    Complete a prep sheet and create its production records.

    All or nothing: either every item gets its actual quantity, every record
    is created and the sheet is marked completed, or nothing changes.

    Args:
        prep_sheet_id: Draft prep sheet ID
        actual_quantities: Prep sheet item ID -> loaves actually baked
            (items not listed default to their planned quantity; zero is allowed)
        now: Clock override for completed_at

    Returns:
        The created ProductionRecords, one per item

    Raises:
        InvalidState: If the sheet is already completed
        ValidationError: If a quantity is invalid or names an item not on the sheet
    """
    actual_quantities = actual_quantities or {}
    errors = []
    for item_id, quantity in actual_quantities.items():
        valid, message = validate_int_range(quantity, 0, 100000, f"Item {item_id} actual quantity")
        if not valid:
            errors.append(message)
    if errors:
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sheet = _get(session, prep_sheet_id)
        _require_draft(sheet, "complete prep sheet")
        item_ids = {item.id for item in sheet.items}
        unknown = sorted(set(actual_quantities) - item_ids)
        if unknown:
            raise ValidationError([f"Item(s) {unknown} are not on prep sheet {prep_sheet_id}"])

        claimed = session.execute(
            update(PrepSheet)
            .where(PrepSheet.id == prep_sheet_id)
            .where(PrepSheet.status == PrepSheetStatus.DRAFT)
            .values(status=PrepSheetStatus.COMPLETED, completed_at=now or utc_now())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            session.refresh(sheet)
            raise InvalidState("prep_sheet", prep_sheet_id, sheet.status.value, "complete prep sheet")

        records = []
        for item in sheet.items:
            item.actual_quantity = int(actual_quantities.get(item.id, item.planned_quantity))
            records.append(production_ledger.record_from_prep_item(item, session=session))
        session.flush()
        session.refresh(sheet)

        log_operation(
            logger,
            operation="complete_prep_sheet",
            outcome="success",
            prep_sheet_id=prep_sheet_id,
            records=len(records),
            loaves=sum(record.quantity for record in records),
        )
        return records
