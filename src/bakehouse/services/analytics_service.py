"""
Analytics Service - Sales, profit and capacity reporting.

Read-only. Canceled orders are excluded everywhere; revenue counts paid
orders only.
"""

from contextlib import nullcontext
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bakehouse.models import (
    BakeSlot,
    Disposition,
    ExtraProduction,
    Flavor,
    Order,
    OrderStatus,
    PaymentStatus,
)
from bakehouse.services import ingredient_service, recipe_scaler
from bakehouse.services.database import session_scope
from bakehouse.utils.config import BusinessSettings

MONEY = Decimal("0.01")
TOP_FLAVOR_LIMIT = 10


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _day_end(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def _orders_in_range(session, start_date: Optional[date], end_date: Optional[date]) -> List[Order]:
    query = session.query(Order).filter(Order.status != OrderStatus.CANCELED)
    if start_date is not None:
        query = query.filter(Order.created_at >= _day_start(start_date))
    if end_date is not None:
        query = query.filter(Order.created_at <= _day_end(end_date))
    return query.order_by(Order.id).all()


def get_order_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Order counts and revenue for orders created in a date range.

    Returns:
        Dict with:
        - total_orders: Non-canceled orders
        - total_revenue: Sum of paid order totals
        - average_order_value: total_revenue / total_orders
        - top_flavors: Up to 10 {name, quantity, revenue}, most loaves first
        - revenue_by_payment_method: {method: paid revenue}
        - orders_by_status: {status: count}
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        orders = _orders_in_range(session, start_date, end_date)

        total_revenue = sum(
            (Decimal(o.total_amount) for o in orders if o.payment_status == PaymentStatus.PAID),
            Decimal("0.00"),
        )
        flavors: Dict[str, Dict[str, Any]] = {}
        by_method: Dict[str, Decimal] = {}
        by_status: Dict[str, int] = {}
        for order in orders:
            for item in order.items:
                entry = flavors.setdefault(
                    item.flavor_name,
                    {"name": item.flavor_name, "quantity": 0, "revenue": Decimal("0.00")},
                )
                entry["quantity"] += item.quantity
                entry["revenue"] += item.total_price
            if order.payment_status == PaymentStatus.PAID and order.payment_method:
                by_method[order.payment_method] = (
                    by_method.get(order.payment_method, Decimal("0.00")) + order.total_amount
                )
            by_status[order.status.value] = by_status.get(order.status.value, 0) + 1

        top = sorted(flavors.values(), key=lambda f: (-f["quantity"], f["name"]))
        return {
            "total_orders": len(orders),
            "total_revenue": total_revenue.quantize(MONEY),
            "average_order_value": (
                (total_revenue / len(orders)).quantize(MONEY) if orders else Decimal("0.00")
            ),
            "top_flavors": top[:TOP_FLAVOR_LIMIT],
            "revenue_by_payment_method": by_method,
            "orders_by_status": by_status,
        }


def get_profit_by_flavor(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    *,
    settings: Optional[BusinessSettings] = None,
    session=None,
) -> List[Dict[str, Any]]:
    """
    Revenue, cost of goods and profit per flavor.

    Loaves come from order lines on slots dated within the range plus sold
    extra production for those dates. Cost per loaf comes from the flavor's
    active recipe (zero when it has none).

    Returns:
        List of {flavor_id, flavor_name, loaves, revenue, cost_per_loaf,
        cogs, profit}, highest profit first
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = (
            session.query(Order)
            .join(BakeSlot, Order.bake_slot_id == BakeSlot.id)
            .filter(Order.status != OrderStatus.CANCELED)
        )
        extras = session.query(ExtraProduction).filter(
            ExtraProduction.disposition == Disposition.SOLD
        )
        if start_date is not None:
            query = query.filter(BakeSlot.date >= start_date)
            extras = extras.filter(ExtraProduction.production_date >= start_date)
        if end_date is not None:
            query = query.filter(BakeSlot.date <= end_date)
            extras = extras.filter(ExtraProduction.production_date <= end_date)

        totals: Dict[int, Dict[str, Any]] = {}

        def _entry(flavor_id: int) -> Dict[str, Any]:
            return totals.setdefault(flavor_id, {"loaves": 0, "revenue": Decimal("0.00")})

        for order in query.all():
            for item in order.items:
                entry = _entry(item.flavor_id)
                entry["loaves"] += item.quantity
                entry["revenue"] += item.total_price
        for extra in extras.all():
            entry = _entry(extra.flavor_id)
            entry["loaves"] += extra.quantity
            entry["revenue"] += Decimal(extra.sale_price or 0)

        prices = ingredient_service.load_price_list(session=session)
        report = []
        for flavor_id, entry in totals.items():
            flavor = session.get(Flavor, flavor_id)
            recipe = flavor.active_recipe if flavor is not None else None
            per_loaf = (
                recipe_scaler.cost_per_loaf(recipe, settings=settings, prices=prices)
                if recipe is not None
                else Decimal("0")
            )
            cogs = (per_loaf * entry["loaves"]).quantize(MONEY)
            revenue = entry["revenue"].quantize(MONEY)
            report.append(
                {
                    "flavor_id": flavor_id,
                    "flavor_name": flavor.name if flavor is not None else "Unknown",
                    "loaves": entry["loaves"],
                    "revenue": revenue,
                    "cost_per_loaf": per_loaf,
                    "cogs": cogs,
                    "profit": revenue - cogs,
                }
            )
        return sorted(report, key=lambda r: (-r["profit"], r["flavor_name"]))


def get_open_capacity(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    *,
    session=None,
) -> List[Dict[str, Any]]:
    """Booked and remaining loaves for each open slot in a date range, by date."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(BakeSlot).filter(BakeSlot.is_open.is_(True))
        if start_date is not None:
            query = query.filter(BakeSlot.date >= start_date)
        if end_date is not None:
            query = query.filter(BakeSlot.date <= end_date)
        return [
            {
                "bake_slot_id": slot.id,
                "date": slot.date,
                "location_name": slot.location.name if slot.location else None,
                "total_capacity": slot.total_capacity,
                "booked": slot.current_orders,
                "remaining": slot.remaining,
            }
            for slot in query.order_by(BakeSlot.date, BakeSlot.id).all()
        ]
