"""
Ingredient price list used to cost recipes.
"""

from decimal import Decimal

from sqlalchemy import Column, String, Numeric, CheckConstraint

from .base import BaseModel


class Ingredient(BaseModel):
    """
    Ingredient price entry.

    Recipe ingredient lines that carry no cost of their own are costed from
    this list, matched by normalized name.

    Attributes:
        name: Ingredient name, unique after normalization
        unit: Unit the price applies to (e.g., "oz", "g", "each")
        cost_per_unit: Price per unit in dollars
    """

    __tablename__ = "ingredients"

    name = Column(String(200), nullable=False, unique=True, index=True)
    unit = Column(String(20), nullable=False, default="oz")
    cost_per_unit = Column(Numeric(10, 4), nullable=False, default=Decimal("0.0000"))

    __table_args__ = (
        CheckConstraint("cost_per_unit >= 0", name="ck_ingredient_cost_non_negative"),
    )

    def __repr__(self) -> str:
        return f"Ingredient(id={self.id}, name='{self.name}', unit='{self.unit}')"
