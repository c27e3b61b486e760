"""
Flavor model for the bread catalog.

Sizes are stored as a JSON array of {"name", "price"} objects and exposed as
typed FlavorSize values.
"""

import json
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from sqlalchemy import Column, String, Integer, Text, Boolean, Numeric, Index
from sqlalchemy.orm import relationship

from .base import BaseModel
from bakehouse.services.exceptions import ValidationError
from bakehouse.utils.constants import SEASONS


@dataclass(frozen=True)
class FlavorSize:
    name: str
    price: Decimal

    def to_json(self) -> dict:
        return {"name": self.name, "price": float(self.price)}


def parse_sizes(raw: Any) -> List[FlavorSize]:
    """
    Validate and convert a decoded JSON size list.

    Raises:
        ValidationError: If any entry lacks a name or has a negative/non-numeric price
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(["sizes: must be a list"])

    errors = []
    sizes = []
    for index, entry in enumerate(raw):
        if isinstance(entry, FlavorSize):
            sizes.append(entry)
            continue
        if not isinstance(entry, dict) or not str(entry.get("name") or "").strip():
            errors.append(f"sizes[{index}].name: required")
            continue
        price = entry.get("price")
        if isinstance(price, bool) or price is None:
            errors.append(f"sizes[{index}].price: must be a number")
            continue
        try:
            value = Decimal(str(price))
        except InvalidOperation:
            errors.append(f"sizes[{index}].price: must be a number")
            continue
        if value < 0:
            errors.append(f"sizes[{index}].price: must not be negative")
            continue
        sizes.append(FlavorSize(name=str(entry["name"]).strip(), price=value))

    names = [size.name for size in sizes]
    if len(set(names)) != len(names):
        errors.append("sizes: names must be unique")
    if errors:
        raise ValidationError(errors)
    return sizes


class Flavor(BaseModel):
    """
    Flavor model representing a bread offered for sale.

    Attributes:
        name: Display name
        description: Public description
        sizes_json: JSON text of the size/price list (use ``sizes``)
        is_active: Inactive flavors are hidden from the public catalog
        season: 'year_round', 'spring', 'summer', 'fall' or 'winter'
        sort_order: Display order
        estimated_cost: Cached cost per loaf, informational only
    """

    __tablename__ = "flavors"

    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    sizes_json = Column("sizes", Text, nullable=False, default="[]")
    is_active = Column(Boolean, nullable=False, default=True)
    season = Column(String(20), nullable=False, default="year_round")
    sort_order = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Numeric(10, 4), nullable=True)

    recipes = relationship("Recipe", back_populates="flavor")

    __table_args__ = (Index("idx_flavor_active_sort", "is_active", "sort_order"),)

    @property
    def sizes(self) -> List[FlavorSize]:
        try:
            raw = json.loads(self.sizes_json or "[]")
        except ValueError:
            raise ValidationError([f"sizes: stored value for flavor {self.id} is not valid JSON"])
        return parse_sizes(raw)

    @sizes.setter
    def sizes(self, value: Any) -> None:
        parsed = parse_sizes(value)
        self.sizes_json = json.dumps([size.to_json() for size in parsed])

    def price_for(self, size_name: str) -> Optional[Decimal]:
        """Current price for a named size, or None if the flavor has no such size."""
        for size in self.sizes:
            if size.name == size_name:
                return size.price
        return None

    @property
    def active_recipe(self):
        for recipe in self.recipes:
            if recipe.is_active:
                return recipe
        return None

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        result.pop("sizes_json", None)
        result["sizes"] = [size.to_json() for size in self.sizes]
        return result

    def __repr__(self) -> str:
        return f"Flavor(id={self.id}, name='{self.name}', season='{self.season}')"


def validate_season(season: str) -> bool:
    return season in SEASONS
