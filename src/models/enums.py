"""
Enumerations shared by recipe, ingredient and production models.

Values are stored in the database as their string value.
"""

from enum import Enum


class RecipeType(str, Enum):
    """
    Role of a recipe family.

    Values:
        MAIN: Sellable base recipe bound to products
        PRE_DOUGH: Sub-recipe scaled by a fraction of the parent's flour
        EXTRA: Reusable sub-recipe (filling, topping) scaled by batch ratio
    """

    MAIN = "MAIN"
    PRE_DOUGH = "PRE_DOUGH"
    EXTRA = "EXTRA"


class RecipeCategory(str, Enum):
    """Product category of a recipe family; one task may not mix categories."""

    BREAD = "BREAD"
    PASTRY = "PASTRY"
    DESSERT = "DESSERT"
    DRINK = "DRINK"
    OTHER = "OTHER"


class IngredientType(str, Enum):
    """
    Inventory-tracking class of an ingredient.

    Values:
        STANDARD: Purchased and stock-tracked
        NON_INVENTORIED: Consumed but never stock-tracked (e.g. tap water)
        SELF_MADE: Produced in-house by a recipe family and stock-tracked
    """

    STANDARD = "STANDARD"
    NON_INVENTORIED = "NON_INVENTORIED"
    SELF_MADE = "SELF_MADE"

    @property
    def is_tracked(self) -> bool:
        """Whether stock levels are maintained for this class."""
        return self is not IngredientType.NON_INVENTORIED


class ProductIngredientType(str, Enum):
    """Role of a product-level add-on line."""

    MIX_IN = "MIX_IN"
    FILLING = "FILLING"
    TOPPING = "TOPPING"


class ProductionTaskStatus(str, Enum):
    """
    Production task lifecycle.

    PENDING -> IN_PROGRESS -> COMPLETED (terminal), or
    PENDING / IN_PROGRESS -> CANCELLED (terminal).
    """

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
