"""
Order model.

Order lines are stored as JSON text and exposed as typed OrderItem values.
The sum of line quantities always equals the units held by the order's
capacity reservation.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    Numeric,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel, enum_column
from .enums import OrderStatus, PaymentStatus
from bakehouse.services.exceptions import ValidationError


@dataclass(frozen=True)
class OrderItem:
    """One order line, priced server-side at intake."""

    flavor_id: int
    flavor_name: str
    size: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    def to_json(self) -> dict:
        return {
            "flavor_id": self.flavor_id,
            "flavor_name": self.flavor_name,
            "size": self.size,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price),
            "total_price": float(self.total_price),
        }

    @classmethod
    def from_json(cls, data: Any, index: int = 0) -> "OrderItem":
        if not isinstance(data, dict):
            raise ValidationError([f"items[{index}]: must be an object"])
        try:
            return cls(
                flavor_id=int(data["flavor_id"]),
                flavor_name=str(data.get("flavor_name") or ""),
                size=str(data.get("size") or ""),
                quantity=int(data["quantity"]),
                unit_price=Decimal(str(data.get("unit_price", 0))),
                total_price=Decimal(str(data.get("total_price", 0))),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise ValidationError([f"items[{index}]: invalid stored order line ({e})"])


class Order(BaseModel):
    """
    Customer order against one bake slot.

    Attributes:
        customer_id: Ordering customer
        bake_slot_id: Slot the order is booked on
        pickup_location_id: Where the order is collected
        items_json: JSON text of the order lines (use ``items``)
        total_amount: Server-computed order total
        status: OrderStatus
        payment_status: PaymentStatus
        payment_method: How the order was paid, once paid
        reservation_id: Capacity reservation held by the order
        external_id: Intake row id, when the order came from the public store
        customer_notes / admin_notes: Free text
    """

    __tablename__ = "orders"

    customer_id = Column(
        Integer, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    bake_slot_id = Column(
        Integer, ForeignKey("bake_slots.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    pickup_location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True
    )
    items_json = Column("items", Text, nullable=False, default="[]")
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    status = Column(enum_column(OrderStatus), nullable=False, default=OrderStatus.SUBMITTED)
    payment_status = Column(
        enum_column(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    payment_method = Column(String(20), nullable=True)

    reservation_id = Column(
        Integer, ForeignKey("capacity_reservations.id", ondelete="SET NULL"), nullable=True
    )
    external_id = Column(String(64), nullable=True, unique=True)

    customer_notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    customer = relationship("Customer", back_populates="orders", lazy="joined")
    bake_slot = relationship("BakeSlot", back_populates="orders")
    pickup_location = relationship("Location")
    reservation = relationship("CapacityReservation")

    __table_args__ = (
        Index("idx_order_slot_status", "bake_slot_id", "status"),
        CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
    )

    @property
    def items(self) -> List[OrderItem]:
        try:
            raw = json.loads(self.items_json or "[]")
        except ValueError:
            raise ValidationError([f"items: stored value for order {self.id} is not valid JSON"])
        if not isinstance(raw, list):
            raise ValidationError(["items: must be a list"])
        return [OrderItem.from_json(entry, index) for index, entry in enumerate(raw)]

    @items.setter
    def items(self, value: List[OrderItem]) -> None:
        self.items_json = json.dumps([item.to_json() for item in value])

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def is_canceled(self) -> bool:
        return self.status == OrderStatus.CANCELED

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        result.pop("items_json", None)
        result["items"] = [item.to_json() for item in self.items]
        if self.customer is not None:
            result["customer_name"] = self.customer.full_name
            result["customer_email"] = self.customer.email
        return result

    def __repr__(self) -> str:
        status: Optional[str] = self.status.value if self.status else None
        return f"Order(id={self.id}, bake_slot_id={self.bake_slot_id}, status='{status}')"
