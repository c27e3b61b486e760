"""
Operation Catalog - The presentation layer's only way into the core.

Every operation has a name, the capability it requires, and the service
function it runs. execute_operation() checks the caller's capabilities,
runs the operation in one transaction and returns an OperationResult with
plain (JSON-friendly) data or a structured failure. Service errors never
escape as exceptions.

Capabilities are a fixed enum. Roles map to capability sets: developers
and owners get everything, admins get read access except settings.

Example:
    result = execute_operation(
        "orders.update_status",
        capabilities_for_role("owner"),
        order_id=12,
        status="ready",
    )
    if not result.ok:
        show_error(result.error_code, result.message)
"""

import dataclasses
import enum
import inspect
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from bakehouse.models import BaseModel, PrepSheet
from bakehouse.services import (
    analytics_service,
    bake_slot_service,
    capacity_ledger,
    customer_service,
    extra_production_service,
    flavor_service,
    ingredient_service,
    location_service,
    order_intake_service,
    order_service,
    prep_sheet_service,
    production_ledger,
    recipe_service,
)
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import DatabaseError, ServiceError, ValidationError
from bakehouse.services.logging_utils import get_service_logger
from bakehouse.services.sync import publisher

logger = get_service_logger(__name__)


class Capability(str, enum.Enum):
    ORDERS_READ = "orders:read"
    ORDERS_WRITE = "orders:write"
    CUSTOMERS_READ = "customers:read"
    CUSTOMERS_WRITE = "customers:write"
    BAKE_SLOTS_READ = "bake_slots:read"
    BAKE_SLOTS_WRITE = "bake_slots:write"
    FLAVORS_READ = "flavors:read"
    FLAVORS_WRITE = "flavors:write"
    CONFIG_READ = "config:read"
    CONFIG_WRITE = "config:write"
    PRODUCTION_READ = "production:read"
    PRODUCTION_WRITE = "production:write"
    ANALYTICS_READ = "analytics:read"
    SETTINGS_READ = "settings:read"
    SETTINGS_WRITE = "settings:write"


ALL_CAPABILITIES: FrozenSet[Capability] = frozenset(Capability)

ROLE_CAPABILITIES: Dict[str, FrozenSet[Capability]] = {
    "developer": ALL_CAPABILITIES,
    "owner": ALL_CAPABILITIES,
    "admin": frozenset(
        c
        for c in Capability
        if c.value.endswith(":read") and c is not Capability.SETTINGS_READ
    ),
}

ERROR_PERMISSION_DENIED = "AUTH-403"
ERROR_UNKNOWN_OPERATION = "OP-404"
ERROR_BAD_ARGUMENTS = "OP-400"


def capabilities_for_role(role: str) -> FrozenSet[Capability]:
    """Capability set for a role name; unknown roles get nothing."""
    return ROLE_CAPABILITIES.get(role, frozenset())


@dataclass(frozen=True)
class Operation:
    name: str
    capability: Capability
    handler: Callable[..., Any]
    # Runs and commits its own transaction (e.g. under a slot lock)
    own_transaction: bool = False


@dataclass
class OperationResult:
    ok: bool
    value: Any = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, value: Any) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls, error_code: str, message: str, details: Optional[Dict[str, Any]] = None
    ) -> "OperationResult":
        return cls(ok=False, error_code=error_code, message=message, details=details)


def _submit_order(
    request,
    *,
    now: Optional[datetime] = None,
    external_id: Optional[str] = None,
    allow_after_cutoff: bool = False,
):
    if isinstance(request, dict):
        try:
            request = order_intake_service.OrderRequest(**request)
        except TypeError as e:
            raise ValidationError([f"Malformed order request: {e}"])
    return order_intake_service.submit_order(
        request, now=now, external_id=external_id, allow_after_cutoff=allow_after_cutoff
    )


_OPERATIONS = [
    # Orders
    Operation("orders.get", Capability.ORDERS_READ, order_service.get_order),
    Operation("orders.list", Capability.ORDERS_READ, order_service.list_orders),
    Operation("orders.submit", Capability.ORDERS_WRITE, _submit_order, own_transaction=True),
    Operation("orders.cancel", Capability.ORDERS_WRITE, order_intake_service.cancel_order),
    Operation("orders.update", Capability.ORDERS_WRITE, order_service.update_order),
    Operation("orders.update_status", Capability.ORDERS_WRITE, order_service.update_order_status),
    Operation("orders.update_payment", Capability.ORDERS_WRITE, order_service.update_order_payment),
    Operation("orders.bulk_update_status", Capability.ORDERS_WRITE, order_service.bulk_update_status),
    Operation("orders.delete", Capability.ORDERS_WRITE, order_service.delete_order),
    # Customers
    Operation("customers.get", Capability.CUSTOMERS_READ, customer_service.get_customer),
    Operation("customers.list", Capability.CUSTOMERS_READ, customer_service.list_customers),
    Operation("customers.orders", Capability.CUSTOMERS_READ, customer_service.get_customer_orders),
    Operation("customers.update", Capability.CUSTOMERS_WRITE, customer_service.update_customer),
    Operation("customers.adjust_credit", Capability.CUSTOMERS_WRITE, customer_service.adjust_credit),
    # Bake slots
    Operation("bake_slots.get", Capability.BAKE_SLOTS_READ, bake_slot_service.get_slot),
    Operation("bake_slots.list", Capability.BAKE_SLOTS_READ, bake_slot_service.list_slots),
    Operation("bake_slots.availability", Capability.BAKE_SLOTS_READ, capacity_ledger.current_availability),
    Operation("bake_slots.create", Capability.BAKE_SLOTS_WRITE, bake_slot_service.create_slot),
    Operation("bake_slots.update", Capability.BAKE_SLOTS_WRITE, bake_slot_service.update_slot),
    Operation("bake_slots.close", Capability.BAKE_SLOTS_WRITE, bake_slot_service.close_slot),
    Operation("bake_slots.reopen", Capability.BAKE_SLOTS_WRITE, bake_slot_service.reopen_slot),
    Operation("bake_slots.delete", Capability.BAKE_SLOTS_WRITE, bake_slot_service.delete_slot),
    Operation("bake_slots.generate", Capability.BAKE_SLOTS_WRITE, bake_slot_service.generate_slots),
    # Flavors
    Operation("flavors.get", Capability.FLAVORS_READ, flavor_service.get_flavor),
    Operation("flavors.list", Capability.FLAVORS_READ, flavor_service.list_flavors),
    Operation("flavors.create", Capability.FLAVORS_WRITE, flavor_service.create_flavor),
    Operation("flavors.update", Capability.FLAVORS_WRITE, flavor_service.update_flavor),
    Operation("flavors.duplicate", Capability.FLAVORS_WRITE, flavor_service.duplicate_flavor),
    Operation("flavors.delete", Capability.FLAVORS_WRITE, flavor_service.delete_flavor),
    # Locations, recipes and ingredients
    Operation("locations.get", Capability.CONFIG_READ, location_service.get_location),
    Operation("locations.list", Capability.CONFIG_READ, location_service.list_locations),
    Operation("locations.create", Capability.CONFIG_WRITE, location_service.create_location),
    Operation("locations.update", Capability.CONFIG_WRITE, location_service.update_location),
    Operation("locations.delete", Capability.CONFIG_WRITE, location_service.delete_location),
    Operation("recipes.get", Capability.CONFIG_READ, recipe_service.get_recipe),
    Operation("recipes.list", Capability.CONFIG_READ, recipe_service.list_recipes),
    Operation("recipes.cost", Capability.CONFIG_READ, recipe_service.get_recipe_cost),
    Operation("recipes.create", Capability.CONFIG_WRITE, recipe_service.create_recipe),
    Operation("recipes.update", Capability.CONFIG_WRITE, recipe_service.update_recipe),
    Operation("recipes.delete", Capability.CONFIG_WRITE, recipe_service.delete_recipe),
    Operation("ingredients.list", Capability.CONFIG_READ, ingredient_service.list_ingredients),
    Operation("ingredients.create", Capability.CONFIG_WRITE, ingredient_service.create_ingredient),
    Operation("ingredients.update", Capability.CONFIG_WRITE, ingredient_service.update_ingredient),
    Operation("ingredients.delete", Capability.CONFIG_WRITE, ingredient_service.delete_ingredient),
    # Prep sheets, production and extras
    Operation("prep_sheets.get", Capability.PRODUCTION_READ, prep_sheet_service.get_prep_sheet),
    Operation("prep_sheets.plan", Capability.PRODUCTION_READ, prep_sheet_service.get_prep_plan),
    Operation("prep_sheets.build", Capability.PRODUCTION_WRITE, prep_sheet_service.build_prep_sheet),
    Operation("prep_sheets.add_order", Capability.PRODUCTION_WRITE, prep_sheet_service.add_order),
    Operation("prep_sheets.remove_order", Capability.PRODUCTION_WRITE, prep_sheet_service.remove_order),
    Operation("prep_sheets.add_extra", Capability.PRODUCTION_WRITE, prep_sheet_service.add_extra),
    Operation("prep_sheets.update_extra", Capability.PRODUCTION_WRITE, prep_sheet_service.update_extra),
    Operation("prep_sheets.remove_extra", Capability.PRODUCTION_WRITE, prep_sheet_service.remove_extra),
    Operation("prep_sheets.complete", Capability.PRODUCTION_WRITE, prep_sheet_service.complete_prep_sheet),
    Operation("production.get", Capability.PRODUCTION_READ, production_ledger.get_record),
    Operation("production.list", Capability.PRODUCTION_READ, production_ledger.list_records),
    Operation("production.update_status", Capability.PRODUCTION_WRITE, production_ledger.update_status),
    Operation("production.split", Capability.PRODUCTION_WRITE, production_ledger.split_record),
    Operation(
        "production.update_payment",
        Capability.PRODUCTION_WRITE,
        production_ledger.update_order_payment_from_production,
    ),
    Operation("extras.get", Capability.PRODUCTION_READ, extra_production_service.get_extra),
    Operation("extras.list", Capability.PRODUCTION_READ, extra_production_service.list_extras),
    Operation("extras.create", Capability.PRODUCTION_WRITE, extra_production_service.create_extra),
    Operation("extras.update", Capability.PRODUCTION_WRITE, extra_production_service.update_extra),
    Operation("extras.delete", Capability.PRODUCTION_WRITE, extra_production_service.delete_extra),
    # Analytics
    Operation("analytics.summary", Capability.ANALYTICS_READ, analytics_service.get_order_summary),
    Operation("analytics.profit_by_flavor", Capability.ANALYTICS_READ, analytics_service.get_profit_by_flavor),
    Operation("analytics.open_capacity", Capability.ANALYTICS_READ, analytics_service.get_open_capacity),
    Operation("analytics.dispositions", Capability.ANALYTICS_READ, extra_production_service.disposition_summary),
    # Sync
    Operation("sync.pending", Capability.SETTINGS_READ, publisher.pending_count),
    Operation("sync.rebuild_catalog", Capability.SETTINGS_WRITE, publisher.enqueue_full_catalog),
]

OPERATIONS: Dict[str, Operation] = {op.name: op for op in _OPERATIONS}


def to_plain(value: Any) -> Any:
    """Convert models, dataclasses and scalar types into JSON-friendly values."""
    if isinstance(value, PrepSheet):
        data = value.to_dict()
        data["items"] = [to_plain(item) for item in value.items]
        return data
    if isinstance(value, BaseModel):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        data = {f.name: to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
        for name in ("total_loaves", "estimated_cost", "total_cost"):
            if hasattr(type(value), name):
                data[name] = to_plain(getattr(value, name))
        return data
    if isinstance(value, dict):
        return {str(to_plain(k)): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_plain(item) for item in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def list_operations(capabilities: Iterable[Capability]) -> Dict[str, str]:
    """Operation names the caller may run, with their capability."""
    allowed = set(capabilities)
    return {
        name: op.capability.value for name, op in OPERATIONS.items() if op.capability in allowed
    }


def execute_operation(
    name: str, capabilities: Iterable[Capability], **kwargs: Any
) -> OperationResult:
    """
    Run a named operation on behalf of a caller.

    Args:
        name: Operation name (e.g. "prep_sheets.complete")
        capabilities: The caller's capability set
        **kwargs: Arguments for the underlying service function

    Returns:
        OperationResult with plain data, or a failure carrying the service
        error's support code
    """
    operation = OPERATIONS.get(name)
    if operation is None:
        return OperationResult.failure(ERROR_UNKNOWN_OPERATION, f"Unknown operation '{name}'")
    if operation.capability not in set(capabilities):
        logger.warning(f"Denied {name}: missing {operation.capability.value}")
        return OperationResult.failure(
            ERROR_PERMISSION_DENIED,
            f"Permission denied: {operation.capability.value} required",
        )

    try:
        inspect.signature(operation.handler).bind(**kwargs)
    except TypeError as e:
        return OperationResult.failure(ERROR_BAD_ARGUMENTS, f"{name}: {e}")

    try:
        if operation.own_transaction:
            value = operation.handler(**kwargs)
            with session_scope() as session:
                if isinstance(value, BaseModel):
                    value = session.get(type(value), value.id)
                return OperationResult.success(to_plain(value))
        with session_scope() as session:
            value = operation.handler(session=session, **kwargs)
            session.flush()
            return OperationResult.success(to_plain(value))
    except ServiceError as e:
        return OperationResult.failure(
            e.code,
            str(e),
            details={"errors": e.errors} if hasattr(e, "errors") else None,
        )
    except SQLAlchemyError as e:
        logger.error(f"Database failure in {name}: {e}")
        error = DatabaseError(str(e.orig) if getattr(e, "orig", None) else str(e), e)
        return OperationResult.failure(error.code, str(error))
