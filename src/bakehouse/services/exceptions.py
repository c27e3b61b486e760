"""Service layer exception classes for Bakehouse.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application. Every exception carries a
stable support ``code`` that the operation catalog and the public API hand
back to callers for triage.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── NotFound
    ├── CapacityExceeded
    ├── SlotClosed
    ├── InvalidState
    ├── InvalidQuantity
    ├── DatabaseError
    ├── ConfigMissing
    └── SyncError
        ├── SyncUnavailable
        └── ExternalStoreError
"""

from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    code = "ORD-001"


class ValidationError(ServiceError):
    """Raised when input validation fails, before any mutation.

    Args:
        errors: List of human-readable validation messages

    Example:
        >>> raise ValidationError(["Quantity must be between 1 and 50"])
        ValidationError: Validation failed: Quantity must be between 1 and 50
    """

    code = "DATA-403"

    def __init__(self, errors: List[str]):
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


class NotFound(ServiceError):
    """Raised when a referenced record does not exist.

    Args:
        entity: Entity name (e.g., "order", "bake_slot")
        identifier: The id or uuid that was looked up
    """

    ENTITY_CODES: Dict[str, str] = {
        "order": "ORD-101",
        "bake_slot": "ORD-104",
        "flavor": "ORD-105",
    }

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        self.code = self.ENTITY_CODES.get(entity, "DATA-403")
        label = entity.replace("_", " ").capitalize()
        super().__init__(f"{label} with ID {identifier} not found")


class CapacityExceeded(ServiceError):
    """Raised when a reservation would push a slot past its capacity.

    Example:
        >>> raise CapacityExceeded(7, requested=2, remaining=1)
        CapacityExceeded: Bake slot 7 has 1 unit(s) left, 2 requested
    """

    code = "ORD-106"

    def __init__(self, slot_id: int, requested: int, remaining: int):
        self.slot_id = slot_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Bake slot {slot_id} has {remaining} unit(s) left, {requested} requested"
        )


class SlotClosed(ServiceError):
    """Raised when a slot is closed, past its cutoff, or already baked."""

    code = "ORD-104"

    def __init__(self, slot_id: int, reason: str):
        self.slot_id = slot_id
        self.reason = reason
        super().__init__(f"Bake slot {slot_id} is not accepting orders: {reason}")


class InvalidState(ServiceError):
    """Raised when an operation is not allowed in the record's current state.

    Args:
        entity: Entity name (e.g., "prep_sheet")
        entity_id: Record id
        state: Current state value
        action: What the caller tried to do
    """

    code = "ORD-103"

    def __init__(self, entity: str, entity_id: Any, state: str, action: str):
        self.entity = entity
        self.entity_id = entity_id
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action}: {entity} {entity_id} is {state}")


class InvalidQuantity(ServiceError):
    """Raised for an out-of-range split or quantity argument."""

    code = "DATA-405"

    def __init__(self, quantity: Any, message: str):
        self.quantity = quantity
        super().__init__(message)


class DatabaseError(ServiceError):
    """Raised when a database operation fails."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")


class ConfigMissing(ServiceError):
    """Raised when sync credentials are not configured.

    Fatal for SyncBridge initialization only; the rest of the application
    keeps working offline.
    """

    code = "CFG-501"

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"External store not configured, missing: {', '.join(missing)}")


class SyncError(ServiceError):
    """Base class for external store failures."""

    code = "SYNC-203"


class SyncUnavailable(SyncError):
    """Raised after retries against the external store are exhausted.

    Non-fatal: the private store stays authoritative and the bridge retries
    on its next pass.
    """

    code = "SYNC-201"

    def __init__(self, operation: str, attempts: int, last_error: Optional[str] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"External store unavailable for {operation} after {attempts} attempt(s): "
            f"{last_error or 'unknown error'}"
        )


class ExternalStoreError(SyncError):
    """Raised when the external store rejects a request (non-retryable)."""

    def __init__(self, operation: str, status_code: int, detail: str):
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"External store error during {operation} ({status_code}): {detail}")
