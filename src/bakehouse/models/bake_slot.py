"""
BakeSlot model for dated production runs with finite capacity.
"""

from sqlalchemy import (
    Column,
    Integer,
    Date,
    DateTime,
    Boolean,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class BakeSlot(BaseModel):
    """
    A dated production run with finite capacity measured in loaves.

    Invariant: 0 <= current_orders <= total_capacity. current_orders is only
    changed by the capacity ledger's conditional update.

    Attributes:
        date: Bake/pickup date
        location_id: Pickup location
        total_capacity: Loaves the slot can take
        current_orders: Loaves currently booked
        cutoff_time: Ordering closes at this instant (UTC)
        is_open: Staff switch; closing is a soft close, slots are never deleted
            once orders reference them
        manually_closed_at: When staff closed the slot, if they did
    """

    __tablename__ = "bake_slots"

    date = Column(Date, nullable=False, index=True)
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    total_capacity = Column(Integer, nullable=False)
    current_orders = Column(Integer, nullable=False, default=0)
    cutoff_time = Column(DateTime, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True)
    manually_closed_at = Column(DateTime, nullable=True)

    location = relationship("Location", back_populates="bake_slots", lazy="joined")
    orders = relationship("Order", back_populates="bake_slot")

    __table_args__ = (
        Index("idx_bake_slot_location_date", "location_id", "date"),
        CheckConstraint("total_capacity >= 0", name="ck_bake_slot_capacity_non_negative"),
        CheckConstraint("current_orders >= 0", name="ck_bake_slot_booked_non_negative"),
        CheckConstraint(
            "current_orders <= total_capacity", name="ck_bake_slot_booked_within_capacity"
        ),
    )

    @property
    def remaining(self) -> int:
        return max(0, self.total_capacity - self.current_orders)

    def __repr__(self) -> str:
        return (
            f"BakeSlot(id={self.id}, date={self.date}, "
            f"booked={self.current_orders}/{self.total_capacity})"
        )


class CapacityReservation(BaseModel):
    """
    Reservation handle returned by the capacity ledger.

    Releasing a reservation sets released_at; a released handle is never
    released again.
    """

    __tablename__ = "capacity_reservations"

    bake_slot_id = Column(
        Integer, ForeignKey("bake_slots.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    units = Column(Integer, nullable=False)
    released_at = Column(DateTime, nullable=True)

    bake_slot = relationship("BakeSlot")

    __table_args__ = (CheckConstraint("units > 0", name="ck_reservation_units_positive"),)

    @property
    def is_released(self) -> bool:
        return self.released_at is not None

    def __repr__(self) -> str:
        return (
            f"CapacityReservation(id={self.id}, bake_slot_id={self.bake_slot_id}, "
            f"units={self.units}, released={self.is_released})"
        )
