"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across costing, snapshot and production
operations.

Usage:
    from src.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="complete_production_task",
        outcome="success",
        task_id=123,
    )
"""

import logging
from typing import Any

# Attribute names owned by logging.LogRecord; context keys must not shadow them
_RESERVED_RECORD_KEYS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger named 'bakehouse.services.<module>'.

    Example:
        >>> logger = get_service_logger("src.services.costing_service")
        >>> logger.name
        'bakehouse.services.costing_service'
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

    The message is "<operation>: <outcome>"; the operation, outcome and
    context fields are attached to the record via 'extra'. Context keys that
    collide with LogRecord attributes are prefixed with 'ctx_'.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "build_snapshot", "flatten")
        outcome: Outcome description (e.g., "success", "degenerate_branch")
        level: Log level (default: INFO). Use DEBUG for verbose/frequent logs.
        **context: Additional context fields (entity IDs, error details, etc.)

    Example:
        >>> log_operation(
        ...     logger,
        ...     operation="complete_production_task",
        ...     outcome="insufficient_stock",
        ...     level=logging.WARNING,
        ...     task_id=45,
        ...     missing_ingredients=["flour"],
        ... )
    """
    extra = {"operation": operation, "outcome": outcome}
    for key, value in context.items():
        if key in _RESERVED_RECORD_KEYS:
            key = f"ctx_{key}"
        extra[key] = value
    logger.log(level, f"{operation}: {outcome}", extra=extra)
