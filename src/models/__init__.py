"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .enums import (
    IngredientType,
    ProductIngredientType,
    ProductionTaskStatus,
    RecipeCategory,
    RecipeType,
)
from .ingredient import Ingredient, IngredientStockAdjustment, ProcurementRecord
from .recipe import ComponentIngredient, RecipeComponent, RecipeFamily, RecipeVersion
from .product import Product, ProductIngredient
from .production_task import ProductionTask, ProductionTaskItem
from .recipe_snapshot import RecipeSnapshot
from .production_log import (
    IngredientConsumptionLog,
    ProductionLog,
    ProductionOverproductionLog,
    ProductionSpoilageLog,
)

__all__ = [
    "Base",
    "BaseModel",
    # Enums
    "IngredientType",
    "ProductIngredientType",
    "ProductionTaskStatus",
    "RecipeCategory",
    "RecipeType",
    # Ingredient ledger
    "Ingredient",
    "IngredientStockAdjustment",
    "ProcurementRecord",
    # Recipes
    "RecipeFamily",
    "RecipeVersion",
    "RecipeComponent",
    "ComponentIngredient",
    "Product",
    "ProductIngredient",
    # Production
    "ProductionTask",
    "ProductionTaskItem",
    "RecipeSnapshot",
    "ProductionLog",
    "IngredientConsumptionLog",
    "ProductionSpoilageLog",
    "ProductionOverproductionLog",
]
