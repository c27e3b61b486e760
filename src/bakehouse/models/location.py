"""
Location model for pickup locations.
"""

from sqlalchemy import Column, String, Integer, Text, Boolean
from sqlalchemy.orm import relationship

from .base import BaseModel


class Location(BaseModel):
    """
    Pickup location where bake slots are handed out.

    Attributes:
        name: Display name (e.g., "Farmstand")
        address: Street address shown to customers
        description: Optional pickup instructions
        is_active: Inactive locations are hidden from the public catalog
        sort_order: Display order
    """

    __tablename__ = "locations"

    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    bake_slots = relationship("BakeSlot", back_populates="location")

    def __repr__(self) -> str:
        return f"Location(id={self.id}, name='{self.name}')"
