"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .enums import (
    OrderStatus,
    PaymentStatus,
    Disposition,
    PrepSheetStatus,
    ProductionStatus,
    OutboxStatus,
    IntakeOutcome,
)
from .location import Location
from .bake_slot import BakeSlot, CapacityReservation
from .customer import Customer
from .flavor import Flavor, FlavorSize
from .recipe import Recipe, RecipeIngredient, RecipeStep
from .ingredient import Ingredient
from .order import Order, OrderItem
from .extra_production import ExtraProduction
from .prep_sheet import PrepSheet, PrepSheetItem
from .production_record import ProductionRecord
from .sync_state import SyncOutboxEntry, ProcessedIntakeRow

__all__ = [
    "Base",
    "BaseModel",
    # Enums
    "OrderStatus",
    "PaymentStatus",
    "Disposition",
    "PrepSheetStatus",
    "ProductionStatus",
    "OutboxStatus",
    "IntakeOutcome",
    # Catalog
    "Location",
    "BakeSlot",
    "CapacityReservation",
    "Flavor",
    "FlavorSize",
    "Recipe",
    "RecipeIngredient",
    "RecipeStep",
    "Ingredient",
    # Orders
    "Customer",
    "Order",
    "OrderItem",
    # Production
    "ExtraProduction",
    "PrepSheet",
    "PrepSheetItem",
    "ProductionRecord",
    # Sync
    "SyncOutboxEntry",
    "ProcessedIntakeRow",
]
