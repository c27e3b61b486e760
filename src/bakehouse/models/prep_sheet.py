"""
Prep sheet models.

This module contains:
- PrepSheet: Per bake date production plan (draft -> completed, exactly once)
- PrepSheetItem: One planned line, sourced from an order line or an extra
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel, enum_column
from .enums import PrepSheetStatus


class PrepSheet(BaseModel):
    """
    Production plan for one bake date.

    While draft, items may be added and removed. Completion snapshots actual
    quantities and creates production records; a completed sheet is immutable.
    """

    __tablename__ = "prep_sheets"

    bake_date = Column(Date, nullable=False, unique=True)
    status = Column(
        enum_column(PrepSheetStatus), nullable=False, default=PrepSheetStatus.DRAFT
    )
    completed_at = Column(DateTime, nullable=True)

    items = relationship(
        "PrepSheetItem",
        back_populates="prep_sheet",
        cascade="all, delete-orphan",
        order_by="PrepSheetItem.id",
    )

    @property
    def is_completed(self) -> bool:
        return self.status == PrepSheetStatus.COMPLETED

    def __repr__(self) -> str:
        return f"PrepSheet(id={self.id}, bake_date={self.bake_date}, status='{self.status}')"


class PrepSheetItem(BaseModel):
    """
    One planned line of a prep sheet.

    Exactly one of order_id / extra_production_id is set. actual_quantity is
    filled at completion (defaulting to planned_quantity).
    """

    __tablename__ = "prep_sheet_items"

    prep_sheet_id = Column(
        Integer, ForeignKey("prep_sheets.id", ondelete="CASCADE"), nullable=False
    )
    flavor_id = Column(Integer, ForeignKey("flavors.id", ondelete="RESTRICT"), nullable=False)
    size = Column(String(50), nullable=True)
    planned_quantity = Column(Integer, nullable=False)
    actual_quantity = Column(Integer, nullable=True)

    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    extra_production_id = Column(
        Integer, ForeignKey("extra_production.id", ondelete="SET NULL"), nullable=True
    )

    prep_sheet = relationship("PrepSheet", back_populates="items")
    flavor = relationship("Flavor", lazy="joined")
    order = relationship("Order")
    extra_production = relationship("ExtraProduction")

    __table_args__ = (
        Index("idx_prep_item_sheet", "prep_sheet_id"),
        CheckConstraint("planned_quantity >= 0", name="ck_prep_item_planned_non_negative"),
        CheckConstraint("actual_quantity >= 0", name="ck_prep_item_actual_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"PrepSheetItem(id={self.id}, flavor_id={self.flavor_id}, "
            f"planned={self.planned_quantity})"
        )
