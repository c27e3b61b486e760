"""
Ingredient Service - Ingredient price list.

Prices are keyed by normalized name so recipe lines like "Bread  Flour"
and "bread flour" find the same entry.
"""

from contextlib import nullcontext
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError

from bakehouse.models import Ingredient
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.validators import normalize_name

logger = get_service_logger(__name__)


def _get(session, ingredient_id: int) -> Ingredient:
    ingredient = session.get(Ingredient, ingredient_id)
    if ingredient is None:
        raise NotFound("ingredient", ingredient_id)
    return ingredient


def _parse_cost(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(["Cost per unit: Must be a number"])
    try:
        cost = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(["Cost per unit: Must be a number"])
    if cost < 0:
        raise ValidationError(["Cost per unit: Must not be negative"])
    return cost


def create_ingredient(data: Dict[str, Any], *, session=None) -> Ingredient:
    """
    Add an ingredient to the price list.

    Args:
        data: name (required), unit, cost_per_unit

    Raises:
        ValidationError: If the name is missing, duplicated, or the cost is invalid
    """
    name = normalize_name(data.get("name") or "")
    if not name:
        raise ValidationError(["Name: This field is required"])
    cost = _parse_cost(data.get("cost_per_unit", 0))

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        if session.query(Ingredient).filter(Ingredient.name == name).first() is not None:
            raise ValidationError([f"Ingredient '{name}' already exists"])
        ingredient = Ingredient(name=name, unit=(data.get("unit") or "oz").strip(), cost_per_unit=cost)
        session.add(ingredient)
        try:
            session.flush()
        except IntegrityError:
            raise ValidationError([f"Ingredient '{name}' already exists"])
        log_operation(logger, operation="create_ingredient", outcome="success", name=name)
        return ingredient


def list_ingredients(*, session=None) -> List[Ingredient]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return session.query(Ingredient).order_by(Ingredient.name).all()


def update_ingredient(ingredient_id: int, data: Dict[str, Any], *, session=None) -> Ingredient:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        ingredient = _get(session, ingredient_id)
        if "name" in data:
            name = normalize_name(data["name"] or "")
            if not name:
                raise ValidationError(["Name: This field is required"])
            ingredient.name = name
        if "unit" in data:
            ingredient.unit = (data["unit"] or "").strip()
        if "cost_per_unit" in data:
            ingredient.cost_per_unit = _parse_cost(data["cost_per_unit"])
        session.flush()
        return ingredient


def delete_ingredient(ingredient_id: int, *, session=None) -> None:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        session.delete(_get(session, ingredient_id))
        session.flush()


def load_price_list(*, session=None) -> Dict[str, Decimal]:
    """Return normalized ingredient name -> cost per unit."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return {
            normalize_name(ingredient.name): Decimal(ingredient.cost_per_unit)
            for ingredient in session.query(Ingredient).all()
        }
