"""Service layer exception classes for the Bakehouse costing engine.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application.

Exception Hierarchy:
    ServiceError (base)
    ├── NotFoundError
    │   ├── RecipeNotFound
    │   ├── ProductNotFound
    │   ├── IngredientNotFound
    │   └── ProductionTaskNotFound
    ├── BadRequestError
    │   ├── ValidationError
    │   ├── InvalidTaskStateError
    │   ├── DiscontinuedRecipeError
    │   └── InsufficientStock
    ├── RecipeCycleError
    ├── DegenerateRecipeError
    ├── SnapshotDecodeError
    ├── SnapshotImmutableError
    └── DatabaseError

Records outside the caller's tenant are reported as NotFound, never as a
permission error.
"""

from decimal import Decimal
from typing import Iterable, List, Sequence


class ServiceError(Exception):
    """Base exception for all service layer errors."""

    pass


class NotFoundError(ServiceError):
    """Base for records that are absent or outside the tenant's scope."""

    pass


class BadRequestError(ServiceError):
    """Base for requests that are well-formed but not allowed."""

    pass


class RecipeNotFound(NotFoundError):
    """Raised when a recipe family or version cannot be found by ID."""

    def __init__(self, recipe_id: int):
        self.recipe_id = recipe_id
        super().__init__(f"Recipe with ID {recipe_id} not found")


class ProductNotFound(NotFoundError):
    """Raised when a product cannot be found by ID.

    Example:
        >>> raise ProductNotFound(123)
        ProductNotFound: Product with ID 123 not found
    """

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found")


class IngredientNotFound(NotFoundError):
    """Raised when an ingredient cannot be found by ID."""

    def __init__(self, ingredient_id: int):
        self.ingredient_id = ingredient_id
        super().__init__(f"Ingredient with ID {ingredient_id} not found")


class ProductionTaskNotFound(NotFoundError):
    """Raised when a production task cannot be found by ID."""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Production task with ID {task_id} not found")


class ValidationError(BadRequestError):
    """Raised when data validation fails."""

    def __init__(self, errors: list):
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


class InvalidTaskStateError(BadRequestError):
    """Raised when a task operation is not allowed in the task's current status.

    Example:
        >>> raise InvalidTaskStateError(7, "COMPLETED", "edit")
        InvalidTaskStateError: Cannot edit production task 7 in status COMPLETED
    """

    def __init__(self, task_id: int, status: str, operation: str):
        self.task_id = task_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} production task {task_id} in status {status}")


class DiscontinuedRecipeError(BadRequestError):
    """Raised when a new or edited task references a soft-deleted recipe family."""

    def __init__(self, product_name: str, family_name: str):
        self.product_name = product_name
        self.family_name = family_name
        super().__init__(
            f"Product '{product_name}' uses discontinued recipe '{family_name}'"
        )


class StockShortage:
    """One ingredient that lacks stock for an operation."""

    def __init__(self, ingredient_id: int, ingredient_name: str, required: Decimal, available: Decimal):
        self.ingredient_id = ingredient_id
        self.ingredient_name = ingredient_name
        self.required = required
        self.available = available

    @property
    def missing(self) -> Decimal:
        """Grams that would have to be procured."""
        return self.required - self.available

    def to_dict(self) -> dict:
        return {
            "ingredient_id": self.ingredient_id,
            "ingredient_name": self.ingredient_name,
            "required": self.required,
            "available": self.available,
            "missing": self.missing,
        }

    def __repr__(self) -> str:
        return (
            f"StockShortage({self.ingredient_name}: required {self.required}, "
            f"available {self.available})"
        )


class InsufficientStock(BadRequestError):
    """Raised when tracked ingredient stock cannot cover an operation."""

    def __init__(self, shortages: Sequence[StockShortage]):
        self.shortages: List[StockShortage] = list(shortages)
        details = ", ".join(
            f"{s.ingredient_name}: required {s.required}g, available {s.available}g"
            for s in self.shortages
        )
        super().__init__(f"Insufficient stock for {details}")


class RecipeCycleError(ServiceError):
    """Raised when a recipe tree refers back to a recipe already on the path.

    Recipe trees must be acyclic; a cycle is a defect in the authored data.
    """

    def __init__(self, path: Iterable[str]):
        self.path = list(path)
        super().__init__(f"Recipe cycle detected: {' -> '.join(self.path)}")


class DegenerateRecipeError(ServiceError):
    """Raised in strict resolution mode when a recipe branch cannot be scaled.

    Covers zero total ratio, a non-positive loss divisor and dangling
    ingredient or sub-recipe references.
    """

    def __init__(self, reason: str, location: str):
        self.reason = reason
        self.location = location
        super().__init__(f"Cannot resolve {location}: {reason}")


class SnapshotDecodeError(ServiceError):
    """Raised when a stored recipe snapshot cannot be decoded."""

    def __init__(self, task_id, message: str):
        self.task_id = task_id
        super().__init__(f"Recipe snapshot for task {task_id} is unreadable: {message}")


class SnapshotImmutableError(ServiceError):
    """Raised when something attempts to modify a persisted recipe snapshot."""

    def __init__(self, task_id):
        self.task_id = task_id
        super().__init__(f"Recipe snapshot for task {task_id} is immutable")


class DatabaseError(ServiceError):
    """Raised when a database operation fails."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")
