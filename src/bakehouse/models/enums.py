"""
Enumerations shared by the order, planning and production models.

- OrderStatus / PaymentStatus: Order lifecycle and payment tracking
- Disposition: What happened to extra (non-order) loaves
- PrepSheetStatus: Draft -> completed, exactly once
- ProductionStatus: Post-bake disposition of a production record
- OutboxStatus / IntakeOutcome: Sync bookkeeping
"""

from enum import Enum


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

    Values:
        SUBMITTED: Accepted and holding capacity
        READY: Baked and waiting for pickup
        PICKED_UP: Handed to the customer
        CANCELED: Canceled; capacity released
        NO_SHOW: Customer never collected the order
    """

    SUBMITTED = "submitted"
    READY = "ready"
    PICKED_UP = "picked_up"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class Disposition(str, Enum):
    """Disposition of extra production loaves."""

    SOLD = "sold"
    GIFTED = "gifted"
    WASTED = "wasted"
    PERSONAL = "personal"


class PrepSheetStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"


class ProductionStatus(str, Enum):
    """
    Production record status.

    Any transition between these values is allowed; quantity only changes
    through a split.
    """

    PLANNED = "planned"
    BAKED = "baked"
    SOLD = "sold"
    WASTED = "wasted"
    GIFTED = "gifted"
    PERSONAL = "personal"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    PUBLISHED = "published"


class IntakeOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
