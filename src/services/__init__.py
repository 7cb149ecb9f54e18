"""Services package - Business logic layer for the Bakehouse costing engine.

This package contains all service modules that provide business logic
and database operations for the application.

Architecture:
- Services: Stateless functions organized by domain, each taking tenant_id
  first and an optional keyword-only session
- Transactions: Managed via session_scope() context manager
- Exceptions: Consistent error handling via ServiceError hierarchy
- Pure computation: recipe_graph, recipe_resolver and the pricing functions
  of costing_service never touch the database

Service Modules:
- recipe_graph: Shallow and resolved recipe node types
- recipe_resolver: Flattening of resolved recipe trees into ingredient weights
- snapshot_assembler: Batched fetch and stitch of recipe trees
- costing_service: Moving-average pricing, breakdowns, history, details
- recipe_snapshot_service: Immutable task snapshots (encode, decode, migrate)
- consumption_service: Theoretical, total-input and spoilage consumption
- production_task_service: Task lifecycle and completion postings
- bill_of_materials_service: Procurement list across tasks
- ingredient_service: Procurement and stock movements
- product_service: Tenant-scoped lookups

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured service logging
"""

# Service modules
from . import (
    database,
    recipe_graph,
    recipe_resolver,
    snapshot_assembler,
    costing_service,
    recipe_snapshot_service,
    consumption_service,
    production_task_service,
    bill_of_materials_service,
    ingredient_service,
    product_service,
)

# Costing
from .costing_service import (
    calculate_product_cost,
    get_cost_breakdown,
    get_cost_history,
    get_calculated_product_details,
)

# Snapshots
from .recipe_snapshot_service import build_snapshot, get_task_snapshot

# Consumption and bill of materials
from .consumption_service import calculate_product_consumptions, calculate_task_consumptions
from .bill_of_materials_service import get_bill_of_materials, get_bill_of_materials_for_tasks

# Production tasks
from .production_task_service import (
    create_production_task,
    get_production_task,
    list_production_tasks,
    update_production_task,
    delete_production_task,
    start_production_task,
    cancel_production_task,
    check_stock_sufficiency,
    complete_production_task,
)

# Ingredient ledger
from .ingredient_service import adjust_stock, get_ingredient, record_procurement

# Exceptions
from .exceptions import (
    ServiceError,
    NotFoundError,
    BadRequestError,
    RecipeNotFound,
    ProductNotFound,
    IngredientNotFound,
    ProductionTaskNotFound,
    ValidationError,
    InvalidTaskStateError,
    DiscontinuedRecipeError,
    InsufficientStock,
    StockShortage,
    RecipeCycleError,
    DegenerateRecipeError,
    SnapshotDecodeError,
    SnapshotImmutableError,
    DatabaseError,
)

__all__ = [
    # Service modules
    "database",
    "recipe_graph",
    "recipe_resolver",
    "snapshot_assembler",
    "costing_service",
    "recipe_snapshot_service",
    "consumption_service",
    "production_task_service",
    "bill_of_materials_service",
    "ingredient_service",
    "product_service",
    # Costing
    "calculate_product_cost",
    "get_cost_breakdown",
    "get_cost_history",
    "get_calculated_product_details",
    # Snapshots
    "build_snapshot",
    "get_task_snapshot",
    # Consumption and bill of materials
    "calculate_product_consumptions",
    "calculate_task_consumptions",
    "get_bill_of_materials",
    "get_bill_of_materials_for_tasks",
    # Production tasks
    "create_production_task",
    "get_production_task",
    "list_production_tasks",
    "update_production_task",
    "delete_production_task",
    "start_production_task",
    "cancel_production_task",
    "check_stock_sufficiency",
    "complete_production_task",
    # Ingredient ledger
    "adjust_stock",
    "get_ingredient",
    "record_procurement",
    # Exceptions
    "ServiceError",
    "NotFoundError",
    "BadRequestError",
    "RecipeNotFound",
    "ProductNotFound",
    "IngredientNotFound",
    "ProductionTaskNotFound",
    "ValidationError",
    "InvalidTaskStateError",
    "DiscontinuedRecipeError",
    "InsufficientStock",
    "StockShortage",
    "RecipeCycleError",
    "DegenerateRecipeError",
    "SnapshotDecodeError",
    "SnapshotImmutableError",
    "DatabaseError",
]
