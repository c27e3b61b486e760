"""
ProductionRecord model for post-bake disposition tracking.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel, enum_column
from .enums import PaymentStatus, ProductionStatus


class ProductionRecord(BaseModel):
    """
    Loaves produced from one prep sheet item.

    Created in 'planned' state when a prep sheet is completed. Splitting
    moves part of the quantity into a new record whose split_from_id points
    back at the original; the quantities of a record and its splits always
    sum to the originally produced quantity.

    Attributes:
        prep_sheet_id / prep_sheet_item_id: Source of the record
        order_id / extra_production_id: Originating order or extra, if any
        flavor_id: Flavor produced
        quantity: Loaves in this record
        status: ProductionStatus
        sale_price: Sale price for sold loaves
        payment_status / payment_method: Payment tracking
        split_from_id: Record this one was split from
    """

    __tablename__ = "production_records"

    prep_sheet_id = Column(
        Integer, ForeignKey("prep_sheets.id", ondelete="RESTRICT"), nullable=False
    )
    prep_sheet_item_id = Column(
        Integer, ForeignKey("prep_sheet_items.id", ondelete="SET NULL"), nullable=True
    )
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    extra_production_id = Column(
        Integer, ForeignKey("extra_production.id", ondelete="SET NULL"), nullable=True
    )
    flavor_id = Column(Integer, ForeignKey("flavors.id", ondelete="RESTRICT"), nullable=False)

    quantity = Column(Integer, nullable=False)
    status = Column(
        enum_column(ProductionStatus), nullable=False, default=ProductionStatus.PLANNED
    )
    sale_price = Column(Numeric(10, 2), nullable=True)
    payment_status = Column(enum_column(PaymentStatus), nullable=True)
    payment_method = Column(String(20), nullable=True)

    split_from_id = Column(
        Integer, ForeignKey("production_records.id", ondelete="SET NULL"), nullable=True
    )

    flavor = relationship("Flavor", lazy="joined")
    order = relationship("Order")
    split_from = relationship("ProductionRecord", remote_side="ProductionRecord.id")

    __table_args__ = (
        Index("idx_production_prep_sheet", "prep_sheet_id"),
        Index("idx_production_order", "order_id"),
        CheckConstraint("quantity >= 0", name="ck_production_quantity_non_negative"),
    )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        if self.flavor is not None:
            result["flavor_name"] = self.flavor.name
        return result

    def __repr__(self) -> str:
        return (
            f"ProductionRecord(id={self.id}, flavor_id={self.flavor_id}, "
            f"quantity={self.quantity}, status='{self.status}')"
        )
