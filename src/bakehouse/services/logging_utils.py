"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across intake, planning and sync.

Usage:
    from bakehouse.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="submit_order",
        outcome="success",
        order_id=123,
        bake_slot_id=4,
    )

    log_operation(
        logger,
        operation="reserve",
        outcome="capacity_exceeded",
        level=logging.WARNING,
        bake_slot_id=4,
        requested=2,
    )
"""

import logging
from typing import Any


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger named with the 'bakehouse.services' prefix.

    Example:
        >>> get_service_logger("bakehouse.services.capacity_ledger").name
        'bakehouse.services.capacity_ledger'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"bakehouse.services.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via the 'extra' parameter for structured handlers
    and appended to the message so plain-text logs keep it too.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "reserve", "complete_prep_sheet")
        outcome: Outcome description (e.g., "success", "capacity_exceeded")
        level: Log level (default: INFO)
        **context: Additional context fields (entity IDs, error details, etc.)
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **{f"ctx_{key}": value for key, value in context.items()},
    }
    details = " ".join(f"{key}={value}" for key, value in context.items())
    message = f"{operation}: {outcome}"
    if details:
        message = f"{message} ({details})"
    logger.log(level, message, extra=extra)
