"""
Recipe model and its typed ingredient/step values.

Ingredient and step lists are stored as JSON text on the recipes row. They
are deserialized into RecipeIngredient / RecipeStep values here, at the
persistence boundary, and validated on the way in and out, so services never
handle raw serialized strings.
"""

import json
from dataclasses import asdict, dataclass
from typing import Any, List, Optional

from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    Boolean,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from bakehouse.services.exceptions import ValidationError

PHASES = ("base", "fold", "lamination")


@dataclass(frozen=True)
class RecipeIngredient:
    """One ingredient line of a recipe phase, per batch."""

    name: str
    quantity: float
    unit: str
    cost_per_unit: Optional[float] = None


@dataclass(frozen=True)
class RecipeStep:
    step_number: int
    instruction: str
    duration: Optional[str] = None
    temperature: Optional[str] = None


def _parse_number(value: Any, field: str, errors: List[str]) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        errors.append(f"{field}: must be a number")
        return None
    try:
        return float(value)
    except ValueError:
        errors.append(f"{field}: must be a number")
        return None


def parse_ingredients(raw: Any, phase: str = "base") -> List[RecipeIngredient]:
    """
    Validate and convert a decoded JSON ingredient list.

    Accepts both snake_case and camelCase cost keys ("cost_per_unit",
    "costPerUnit").

    Args:
        raw: Decoded JSON (list of dicts) or None
        phase: Phase name used in error messages

    Returns:
        List of RecipeIngredient

    Raises:
        ValidationError: If the structure or any value is invalid
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError([f"{phase} ingredients: must be a list"])

    errors: List[str] = []
    result = []
    for index, entry in enumerate(raw):
        field = f"{phase}[{index}]"
        if not isinstance(entry, dict):
            errors.append(f"{field}: must be an object")
            continue
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(f"{field}.name: required")
            continue
        quantity = _parse_number(entry.get("quantity"), f"{field}.quantity", errors)
        if quantity is not None and quantity < 0:
            errors.append(f"{field}.quantity: must not be negative")
        cost = entry.get("cost_per_unit", entry.get("costPerUnit"))
        cost_value = None
        if cost is not None:
            cost_value = _parse_number(cost, f"{field}.cost_per_unit", errors)
            if cost_value is not None and cost_value < 0:
                errors.append(f"{field}.cost_per_unit: must not be negative")
        unit = entry.get("unit") or ""
        if not isinstance(unit, str):
            errors.append(f"{field}.unit: must be text")
            continue
        if quantity is not None:
            result.append(
                RecipeIngredient(
                    name=name.strip(),
                    quantity=quantity,
                    unit=unit.strip(),
                    cost_per_unit=cost_value,
                )
            )

    if errors:
        raise ValidationError(errors)
    return result


def parse_steps(raw: Any) -> List[RecipeStep]:
    """Validate and convert a decoded JSON step list, ordered by step number."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(["steps: must be a list"])

    errors: List[str] = []
    steps = []
    for index, entry in enumerate(raw):
        if isinstance(entry, str):
            steps.append(RecipeStep(step_number=index + 1, instruction=entry))
            continue
        if not isinstance(entry, dict) or not entry.get("instruction"):
            errors.append(f"steps[{index}]: instruction required")
            continue
        number = entry.get("step_number", entry.get("stepNumber", index + 1))
        steps.append(
            RecipeStep(
                step_number=int(number),
                instruction=str(entry["instruction"]),
                duration=entry.get("duration"),
                temperature=entry.get("temperature"),
            )
        )

    if errors:
        raise ValidationError(errors)
    return sorted(steps, key=lambda s: s.step_number)


def _load_json(text: Optional[str], field: str) -> Any:
    if not text:
        return []
    try:
        return json.loads(text)
    except ValueError:
        raise ValidationError([f"{field}: stored value is not valid JSON"])


class Recipe(BaseModel):
    """
    Recipe model with three phased ingredient lists.

    Attributes:
        flavor_id: Owning flavor (one active recipe per flavor)
        name: Recipe name
        yields_loaves: Loaves produced by one batch of the listed quantities
        loaf_size: Free-text loaf size (e.g., "1.5 lb")
        notes, season, source: Descriptive metadata
        is_active: Inactive recipes are kept for history only
    """

    __tablename__ = "recipes"

    flavor_id = Column(Integer, ForeignKey("flavors.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(200), nullable=False, index=True)

    base_ingredients_json = Column("base_ingredients", Text, nullable=False, default="[]")
    fold_ingredients_json = Column("fold_ingredients", Text, nullable=False, default="[]")
    lamination_ingredients_json = Column(
        "lamination_ingredients", Text, nullable=False, default="[]"
    )
    steps_json = Column("steps", Text, nullable=False, default="[]")

    yields_loaves = Column(Integer, nullable=False, default=1)
    loaf_size = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    season = Column(String(20), nullable=True)
    source = Column(String(500), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    flavor = relationship("Flavor", back_populates="recipes")

    __table_args__ = (
        Index("idx_recipe_flavor", "flavor_id"),
        CheckConstraint("yields_loaves > 0", name="ck_recipe_yield_positive"),
    )

    # Typed accessors

    @property
    def base_ingredients(self) -> List[RecipeIngredient]:
        return parse_ingredients(_load_json(self.base_ingredients_json, "base"), "base")

    @base_ingredients.setter
    def base_ingredients(self, value: Any) -> None:
        self.base_ingredients_json = _dump_ingredients(value, "base")

    @property
    def fold_ingredients(self) -> List[RecipeIngredient]:
        return parse_ingredients(_load_json(self.fold_ingredients_json, "fold"), "fold")

    @fold_ingredients.setter
    def fold_ingredients(self, value: Any) -> None:
        self.fold_ingredients_json = _dump_ingredients(value, "fold")

    @property
    def lamination_ingredients(self) -> List[RecipeIngredient]:
        return parse_ingredients(
            _load_json(self.lamination_ingredients_json, "lamination"), "lamination"
        )

    @lamination_ingredients.setter
    def lamination_ingredients(self, value: Any) -> None:
        self.lamination_ingredients_json = _dump_ingredients(value, "lamination")

    @property
    def steps(self) -> List[RecipeStep]:
        return parse_steps(_load_json(self.steps_json, "steps"))

    @steps.setter
    def steps(self, value: Any) -> None:
        parsed = parse_steps(_coerce_values(value))
        self.steps_json = json.dumps([asdict(step) for step in parsed])

    def ingredients_by_phase(self):
        """Return {"base": [...], "fold": [...], "lamination": [...]}."""
        return {
            "base": self.base_ingredients,
            "fold": self.fold_ingredients,
            "lamination": self.lamination_ingredients,
        }

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        for phase, ingredients in self.ingredients_by_phase().items():
            result.pop(f"{phase}_ingredients_json", None)
            result[f"{phase}_ingredients"] = [asdict(i) for i in ingredients]
        result.pop("steps_json", None)
        result["steps"] = [asdict(step) for step in self.steps]
        return result

    def __repr__(self) -> str:
        return f"Recipe(id={self.id}, name='{self.name}', yields_loaves={self.yields_loaves})"


def _coerce_values(value: Any) -> Any:
    """Turn lists of dataclass values back into plain dicts for validation."""
    if isinstance(value, list):
        return [asdict(v) if isinstance(v, (RecipeIngredient, RecipeStep)) else v for v in value]
    return value


def _dump_ingredients(value: Any, phase: str) -> str:
    parsed = parse_ingredients(_coerce_values(value), phase)
    return json.dumps([asdict(ingredient) for ingredient in parsed])
