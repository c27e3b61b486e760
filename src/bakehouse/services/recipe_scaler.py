"""
Recipe Scaler - Scale a recipe to a loaf count and cost it.

Pure functions, no database access: callers pass the recipe, the business
settings and (optionally) an ingredient price list.

Scaling is linear: every quantity is multiplied by loaves / yields_loaves,
phase by phase. Cost per loaf is the batch ingredient cost divided by the
batch yield, plus the per-loaf overhead (packaging + utilities).

Example:
    >>> result = scale(recipe, 5)           # recipe yields 1 loaf, 16 oz flour
    >>> result.phases["base"][0].quantity
    80.0
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from bakehouse.models import Recipe
from bakehouse.models.recipe import PHASES, RecipeIngredient
from bakehouse.services.exceptions import ValidationError
from bakehouse.utils.config import DEFAULT_BUSINESS_SETTINGS, BusinessSettings
from bakehouse.utils.validators import normalize_name

COST_PLACES = Decimal("0.0001")


@dataclass(frozen=True)
class NoRecipe:
    """Marker returned when a flavor has no recipe to scale."""

    flavor_id: Optional[int] = None

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class ScaledIngredient:
    name: str
    quantity: float
    unit: str
    cost_per_unit: Decimal
    cost: Decimal


@dataclass
class ScaledIngredients:
    """
    A recipe scaled to a number of loaves.

    Attributes:
        recipe_id / recipe_name: Source recipe
        loaves: Target loaf count
        scale_factor: loaves / yields_loaves
        phases: Phase name -> scaled ingredient lines
        ingredient_cost: Ingredient cost of the scaled quantities
        cost_per_loaf: Batch cost / yield + overhead per loaf
        overhead_per_loaf: Overhead included in cost_per_loaf
    """

    recipe_id: Optional[int]
    recipe_name: str
    loaves: int
    scale_factor: float
    phases: Dict[str, List[ScaledIngredient]] = field(default_factory=dict)
    ingredient_cost: Decimal = Decimal("0")
    cost_per_loaf: Decimal = Decimal("0")
    overhead_per_loaf: Decimal = Decimal("0")

    def all_ingredients(self) -> List[ScaledIngredient]:
        return [line for phase in PHASES for line in self.phases.get(phase, [])]

    @property
    def total_cost(self) -> Decimal:
        return (self.cost_per_loaf * self.loaves).quantize(COST_PLACES)


ScaleResult = Union[ScaledIngredients, NoRecipe]


def _unit_cost(ingredient: RecipeIngredient, prices: Mapping[str, Decimal]) -> Decimal:
    if ingredient.cost_per_unit is not None:
        return Decimal(str(ingredient.cost_per_unit))
    return Decimal(str(prices.get(normalize_name(ingredient.name), 0)))


def batch_cost(recipe: Recipe, prices: Optional[Mapping[str, Decimal]] = None) -> Decimal:
    """Ingredient cost of one batch (yields_loaves loaves) at listed quantities."""
    prices = prices or {}
    total = Decimal("0")
    for ingredients in recipe.ingredients_by_phase().values():
        for ingredient in ingredients:
            total += Decimal(str(ingredient.quantity)) * _unit_cost(ingredient, prices)
    return total


def cost_per_loaf(
    recipe: Recipe,
    *,
    settings: Optional[BusinessSettings] = None,
    prices: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    """Batch cost / yields_loaves + overhead_per_loaf."""
    settings = settings or DEFAULT_BUSINESS_SETTINGS
    per_loaf = batch_cost(recipe, prices) / Decimal(recipe.yields_loaves)
    return (per_loaf + settings.overhead_per_loaf).quantize(COST_PLACES)


def scale(
    recipe: Optional[Recipe],
    loaves: int,
    *,
    settings: Optional[BusinessSettings] = None,
    prices: Optional[Mapping[str, Decimal]] = None,
) -> ScaleResult:
    """
    Scale a recipe to ``loaves`` loaves.

    Args:
        recipe: Recipe to scale, or None
        loaves: Target loaf count (zero or more)
        settings: Business settings supplying the per-loaf overhead
        prices: Normalized ingredient name -> cost per unit, used for lines
            that carry no cost of their own (missing entries cost zero)

    Returns:
        ScaledIngredients, or NoRecipe if recipe is None

    Raises:
        ValidationError: If loaves is negative or the recipe yield is not positive
    """
    if recipe is None:
        return NoRecipe()
    if isinstance(loaves, bool) or not isinstance(loaves, int) or loaves < 0:
        raise ValidationError([f"Loaves must be a whole number of zero or more, got {loaves!r}"])
    if not recipe.yields_loaves or recipe.yields_loaves <= 0:
        raise ValidationError([f"Recipe {recipe.name} must yield at least one loaf"])

    settings = settings or DEFAULT_BUSINESS_SETTINGS
    prices = prices or {}
    factor = loaves / recipe.yields_loaves

    result = ScaledIngredients(
        recipe_id=recipe.id,
        recipe_name=recipe.name,
        loaves=loaves,
        scale_factor=factor,
        overhead_per_loaf=settings.overhead_per_loaf,
    )
    ingredient_cost = Decimal("0")
    for phase, ingredients in recipe.ingredients_by_phase().items():
        lines = []
        for ingredient in ingredients:
            quantity = ingredient.quantity * factor
            unit_cost = _unit_cost(ingredient, prices)
            cost = (Decimal(str(quantity)) * unit_cost).quantize(COST_PLACES)
            ingredient_cost += cost
            lines.append(
                ScaledIngredient(
                    name=ingredient.name,
                    quantity=quantity,
                    unit=ingredient.unit,
                    cost_per_unit=unit_cost,
                    cost=cost,
                )
            )
        result.phases[phase] = lines

    result.ingredient_cost = ingredient_cost
    result.cost_per_loaf = cost_per_loaf(recipe, settings=settings, prices=prices)
    return result


def merge_ingredient_totals(
    scaled: Iterable[ScaledIngredients],
) -> List[Dict[str, object]]:
    """
    Sum ingredient quantities across scaled recipes.

    Lines merge when their names match after case/whitespace normalization
    and their units match case-insensitively. The output is sorted by
    (name, unit), so it does not depend on the order of the input.

    Returns:
        List of {"name", "unit", "quantity", "cost"} dicts
    """
    quantities: Dict[Tuple[str, str], List[float]] = {}
    costs: Dict[Tuple[str, str], Decimal] = {}
    for result in scaled:
        for line in result.all_ingredients():
            key = (normalize_name(line.name), line.unit.strip().lower())
            quantities.setdefault(key, []).append(line.quantity)
            costs[key] = costs.get(key, Decimal("0")) + line.cost

    # fsum is exactly rounded: independent of summation order
    return [
        {
            "name": name,
            "unit": unit,
            "quantity": math.fsum(quantities[(name, unit)]),
            "cost": costs[(name, unit)],
        }
        for name, unit in sorted(quantities)
    ]
