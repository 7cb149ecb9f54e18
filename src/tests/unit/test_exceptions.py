"""Unit tests for the service exception hierarchy."""

import inspect
from decimal import Decimal

import pytest

from src.services import exceptions as exc_module
from src.services.exceptions import (
    BadRequestError,
    DegenerateRecipeError,
    InsufficientStock,
    NotFoundError,
    ProductNotFound,
    RecipeCycleError,
    ServiceError,
    SnapshotDecodeError,
    StockShortage,
    ValidationError,
)


def get_all_exception_classes():
    """All exception classes defined in the exceptions module."""
    return [
        (name, obj)
        for name, obj in inspect.getmembers(exc_module, inspect.isclass)
        if issubclass(obj, Exception) and obj.__module__ == exc_module.__name__
    ]


@pytest.mark.parametrize("name,cls", get_all_exception_classes())
def test_inherits_from_service_error(name, cls):
    assert issubclass(cls, ServiceError), f"{name} must inherit from ServiceError"


def test_not_found_errors_share_a_base():
    error = ProductNotFound(12)
    assert isinstance(error, NotFoundError)
    assert error.product_id == 12
    assert str(error) == "Product with ID 12 not found"


def test_validation_error_joins_messages():
    error = ValidationError(["Quantity must be positive", "Start date is required"])

    assert isinstance(error, BadRequestError)
    assert error.errors == ["Quantity must be positive", "Start date is required"]
    assert "Quantity must be positive; Start date is required" in str(error)


def test_insufficient_stock_lists_every_shortage():
    error = InsufficientStock(
        [
            StockShortage(1, "Flour", Decimal("500"), Decimal("400")),
            StockShortage(2, "Salt", Decimal("20"), Decimal("0")),
        ]
    )

    assert "Flour: required 500g, available 400g" in str(error)
    assert "Salt" in str(error)
    assert error.shortages[0].missing == Decimal("100")


def test_cycle_error_shows_path():
    error = RecipeCycleError(["Loaf v1", "Levain v2", "Loaf v1"])
    assert str(error) == "Recipe cycle detected: Loaf v1 -> Levain v2 -> Loaf v1"


def test_degenerate_error_keeps_reason_and_location():
    error = DegenerateRecipeError("total ratio is zero", "component 'Main dough'")

    assert error.reason == "total ratio is zero"
    assert "component 'Main dough'" in str(error)


def test_snapshot_decode_error_names_task():
    assert "task 7" in str(SnapshotDecodeError(7, "invalid JSON"))
