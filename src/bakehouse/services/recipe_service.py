"""
Recipe Service - Recipe management and costing.

This service provides:
- Recipe CRUD with validated ingredient/step lists
- One active recipe per flavor (activating one deactivates the others)
- Cost summaries via the recipe scaler and the ingredient price list
"""

from contextlib import nullcontext
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bakehouse.models import Flavor, Recipe
from bakehouse.models.recipe import PHASES
from bakehouse.services import ingredient_service, recipe_scaler
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import NotFound, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.config import BusinessSettings
from bakehouse.utils.validators import sanitize_string

logger = get_service_logger(__name__)

SCALAR_FIELDS = ("name", "yields_loaves", "loaf_size", "notes", "season", "source")


def _get(session, recipe_id: int) -> Recipe:
    recipe = session.get(Recipe, recipe_id)
    if recipe is None:
        raise NotFound("recipe", recipe_id)
    return recipe


def _validate_scalars(data: Dict[str, Any], creating: bool) -> None:
    errors = []
    if creating or "name" in data:
        if not sanitize_string(data.get("name"), 200):
            errors.append("Name: This field is required")
    if creating or "yields_loaves" in data:
        value = data.get("yields_loaves", 1)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            errors.append("Yield: Must be a whole number of loaves greater than zero")
    if errors:
        raise ValidationError(errors)


def _apply(recipe: Recipe, data: Dict[str, Any]) -> None:
    for key in SCALAR_FIELDS:
        if key in data:
            value = sanitize_string(data[key], 200) if key == "name" else data[key]
            setattr(recipe, key, value)
    for phase in PHASES:
        key = f"{phase}_ingredients"
        if key in data:
            setattr(recipe, key, data[key] or [])
    if "steps" in data:
        recipe.steps = data["steps"] or []


def _deactivate_others(session, recipe: Recipe) -> None:
    if recipe.flavor_id is None or not recipe.is_active:
        return
    others = (
        session.query(Recipe)
        .filter(Recipe.flavor_id == recipe.flavor_id, Recipe.id != recipe.id)
        .filter(Recipe.is_active.is_(True))
        .all()
    )
    for other in others:
        other.is_active = False


def create_recipe(data: Dict[str, Any], *, session=None) -> Recipe:
    """
    Create a recipe.

    Args:
        data: name, yields_loaves (> 0), flavor_id, base_ingredients,
            fold_ingredients, lamination_ingredients (lists of
            {"name", "quantity", "unit", "cost_per_unit"}), steps, loaf_size,
            notes, season, source, is_active

    Raises:
        ValidationError: If a field or any ingredient line is invalid
        NotFound: If the flavor does not exist
    """
    _validate_scalars(data, creating=True)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        flavor_id = data.get("flavor_id")
        if flavor_id is not None and session.get(Flavor, flavor_id) is None:
            raise NotFound("flavor", flavor_id)

        recipe = Recipe(flavor_id=flavor_id, is_active=data.get("is_active", True))
        _apply(recipe, data)
        if recipe.yields_loaves is None:
            recipe.yields_loaves = 1
        session.add(recipe)
        session.flush()
        _deactivate_others(session, recipe)
        session.flush()
        log_operation(
            logger,
            operation="create_recipe",
            outcome="success",
            recipe_id=recipe.id,
            flavor_id=flavor_id,
        )
        return recipe


def get_recipe(recipe_id: int, *, session=None) -> Recipe:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get(session, recipe_id)


def get_active_recipe_for_flavor(flavor_id: int, *, session=None) -> Optional[Recipe]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return (
            session.query(Recipe)
            .filter(Recipe.flavor_id == flavor_id, Recipe.is_active.is_(True))
            .order_by(Recipe.id.desc())
            .first()
        )


def list_recipes(*, flavor_id: Optional[int] = None, session=None) -> List[Recipe]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Recipe)
        if flavor_id is not None:
            query = query.filter(Recipe.flavor_id == flavor_id)
        return query.order_by(Recipe.name).all()


def update_recipe(recipe_id: int, data: Dict[str, Any], *, session=None) -> Recipe:
    _validate_scalars(data, creating=False)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        recipe = _get(session, recipe_id)
        if "flavor_id" in data:
            if data["flavor_id"] is not None and session.get(Flavor, data["flavor_id"]) is None:
                raise NotFound("flavor", data["flavor_id"])
            recipe.flavor_id = data["flavor_id"]
        if "is_active" in data:
            recipe.is_active = bool(data["is_active"])
        _apply(recipe, data)
        session.flush()
        _deactivate_others(session, recipe)
        session.flush()
        return recipe


def delete_recipe(recipe_id: int, *, session=None) -> None:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        session.delete(_get(session, recipe_id))
        session.flush()
        log_operation(logger, operation="delete_recipe", outcome="success", recipe_id=recipe_id)


def get_recipe_cost(
    recipe_id: int,
    *,
    settings: Optional[BusinessSettings] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Cost summary for one recipe batch.

    Returns:
        Dict with batch_cost, yields_loaves, cost_per_loaf, overhead_per_loaf
        and per-line costs for each phase
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        recipe = _get(session, recipe_id)
        prices = ingredient_service.load_price_list(session=session)
        scaled = recipe_scaler.scale(
            recipe, recipe.yields_loaves, settings=settings, prices=prices
        )
        return {
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "yields_loaves": recipe.yields_loaves,
            "batch_cost": recipe_scaler.batch_cost(recipe, prices).quantize(Decimal("0.0001")),
            "cost_per_loaf": scaled.cost_per_loaf,
            "overhead_per_loaf": scaled.overhead_per_loaf,
            "lines": {
                phase: [
                    {
                        "name": line.name,
                        "quantity": line.quantity,
                        "unit": line.unit,
                        "cost_per_unit": line.cost_per_unit,
                        "cost": line.cost,
                    }
                    for line in lines
                ]
                for phase, lines in scaled.phases.items()
            },
        }
