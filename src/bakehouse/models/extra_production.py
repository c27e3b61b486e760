"""
ExtraProduction model for loaves baked beyond customer orders.
"""

from sqlalchemy import (
    Column,
    Integer,
    Date,
    Text,
    Numeric,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel, enum_column
from .enums import Disposition


class ExtraProduction(BaseModel):
    """
    Extra loaves planned for a bake date, outside any order.

    Attributes:
        production_date: Bake date
        bake_slot_id: Optional slot the loaves were baked alongside
        flavor_id: Flavor baked
        quantity: Loaves baked (> 0)
        disposition: sold, gifted, wasted or personal
        sale_price: Total sale price when sold
        notes: Free text
    """

    __tablename__ = "extra_production"

    production_date = Column(Date, nullable=False, index=True)
    bake_slot_id = Column(
        Integer, ForeignKey("bake_slots.id", ondelete="SET NULL"), nullable=True
    )
    flavor_id = Column(Integer, ForeignKey("flavors.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False)
    disposition = Column(enum_column(Disposition), nullable=False, default=Disposition.SOLD)
    sale_price = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)

    flavor = relationship("Flavor", lazy="joined")
    bake_slot = relationship("BakeSlot")

    __table_args__ = (
        Index("idx_extra_production_date_flavor", "production_date", "flavor_id"),
        CheckConstraint("quantity > 0", name="ck_extra_production_quantity_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"ExtraProduction(id={self.id}, date={self.production_date}, "
            f"flavor_id={self.flavor_id}, quantity={self.quantity})"
        )
