"""Ingredient Service - stock and moving-average valuation of base ingredients.

This module provides business logic for the ingredient ledger: tenant-scoped
lookup, procurement recording and stock movements.

Stock is valued with a moving weighted average. A procurement adds
packages x package weight grams and packages x price money; a deduction
removes grams x current unit cost (never more than the stock value), so the
average cost per gram of the remaining stock is unchanged.

Every ingredient class keeps a price basis from its procurements. Only
tracked classes (STANDARD, SELF_MADE) have stock deducted and may not go
negative.

Example Usage:
  >>> from src.services.ingredient_service import record_procurement
  >>> from decimal import Decimal
  >>>
  >>> record_procurement("tenant-1", flour_id, packages_purchased=2,
  ...                    price_per_package=Decimal("18.50"),
  ...                    package_weight_in_grams=Decimal("25000"))
  {'procurement_id': 7, 'ingredient_id': 3, 'current_stock_in_grams': Decimal('50000'), ...}
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Ingredient, IngredientStockAdjustment, ProcurementRecord, ProductionLog
from ..utils.datetime_utils import utc_now
from .database import session_scope
from .exceptions import (
    DatabaseError,
    IngredientNotFound,
    InsufficientStock,
    StockShortage,
    ValidationError as ServiceValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

ZERO = Decimal("0")


def require_ingredient(session: Session, tenant_id: str, ingredient_id: int) -> Ingredient:
    """
    Load a live ingredient inside an open session.

    Raises:
        IngredientNotFound: If absent, soft-deleted or owned by another tenant
    """
    ingredient = (
        session.query(Ingredient)
        .filter(
            Ingredient.id == ingredient_id,
            Ingredient.tenant_id == tenant_id,
            Ingredient.deleted_at.is_(None),
        )
        .first()
    )
    if ingredient is None:
        raise IngredientNotFound(ingredient_id)
    return ingredient


def get_ingredient(tenant_id: str, ingredient_id: int, *, session=None) -> Ingredient:
    """Retrieve ingredient by ID.

    Args:
        tenant_id: Calling tenant
        ingredient_id: Ingredient identifier
        session: Optional database session (uses session_scope if not provided)

    Returns:
        Ingredient: Ingredient object

    Raises:
        IngredientNotFound: If the ingredient doesn't exist for this tenant
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return require_ingredient(session, tenant_id, ingredient_id)


def list_ingredients(tenant_id: str, *, session=None) -> List[Ingredient]:
    """All live ingredients of a tenant, ordered by name."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return (
            session.query(Ingredient)
            .filter(Ingredient.tenant_id == tenant_id, Ingredient.deleted_at.is_(None))
            .order_by(Ingredient.name)
            .all()
        )


def _stock_dict(ingredient: Ingredient) -> Dict[str, Any]:
    return {
        "ingredient_id": ingredient.id,
        "current_stock_in_grams": Decimal(str(ingredient.current_stock_in_grams)),
        "current_stock_value": Decimal(str(ingredient.current_stock_value)),
        "unit_cost_per_gram": ingredient.unit_cost_per_gram,
    }


def apply_stock_change(
    session: Session,
    ingredient: Ingredient,
    change_in_grams: Decimal,
    *,
    value_change: Optional[Decimal] = None,
    reason: Optional[str] = None,
    production_log: Optional[ProductionLog] = None,
    record_adjustment: bool = True,
) -> Decimal:
    """
    Move an ingredient's stock and value inside an open session.

    Deductions (negative change) of tracked ingredients are valued at the
    current unit cost and clamped so the stock value never goes below zero.
    Untracked ingredients are left untouched. Increases add value_change
    (default: grams x current unit cost).

    Args:
        session: Open session (the caller owns the transaction)
        ingredient: Ingredient to move
        change_in_grams: Signed grams (negative = deduction)
        value_change: Money added by an increase
        reason: Audit reason stored on the adjustment row
        production_log: Originating production log, if any
        record_adjustment: Whether to append an IngredientStockAdjustment row

    Returns:
        The signed money change applied to the stock value

    Raises:
        InsufficientStock: If a tracked ingredient would go below zero grams
    """
    change = Decimal(str(change_in_grams))
    if change == 0 or not ingredient.is_tracked:
        return ZERO

    grams = Decimal(str(ingredient.current_stock_in_grams or 0))
    value = Decimal(str(ingredient.current_stock_value or 0))
    unit_cost = ingredient.unit_cost_per_gram

    if change < 0:
        if grams + change < 0:
            raise InsufficientStock(
                [StockShortage(ingredient.id, ingredient.name, -change, grams)]
            )
        money = -min(value, -change * unit_cost)
    else:
        money = Decimal(str(value_change)) if value_change is not None else change * unit_cost

    ingredient.current_stock_in_grams = grams + change
    ingredient.current_stock_value = max(ZERO, value + money)

    if record_adjustment:
        session.add(
            IngredientStockAdjustment(
                ingredient_id=ingredient.id,
                production_log=production_log,
                change_in_grams=change,
                reason=reason,
            )
        )
    return money


def adjust_stock(
    tenant_id: str,
    ingredient_id: int,
    change_in_grams: Decimal,
    reason: str,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Manual stock correction with an audit reason.

    Returns:
        Dict with ingredient_id, current stock grams and value, unit cost and
        the money change applied

    Raises:
        IngredientNotFound: If the ingredient doesn't exist for this tenant
        ValidationError: If the change is zero or the reason is blank
        InsufficientStock: If tracked stock would go negative
    """
    errors = []
    if Decimal(str(change_in_grams)) == 0:
        errors.append("Stock change must not be zero")
    if not reason or not reason.strip():
        errors.append("A reason is required for stock adjustments")
    if errors:
        raise ServiceValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        ingredient = require_ingredient(session, tenant_id, ingredient_id)
        money = apply_stock_change(session, ingredient, change_in_grams, reason=reason.strip())
        session.flush()

        log_operation(
            logger,
            operation="adjust_stock",
            outcome="success",
            tenant_id=tenant_id,
            ingredient_id=ingredient_id,
            change_in_grams=str(change_in_grams),
        )
        result = _stock_dict(ingredient)
        result["value_change"] = money
        return result


def record_procurement(
    tenant_id: str,
    ingredient_id: int,
    packages_purchased: int,
    price_per_package: Decimal,
    package_weight_in_grams: Decimal,
    purchase_date: Optional[datetime] = None,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Record a purchase and fold it into the moving-average stock valuation.

    Args:
        tenant_id: Calling tenant
        ingredient_id: Purchased ingredient
        packages_purchased: Number of packages (> 0)
        price_per_package: Money per package (>= 0)
        package_weight_in_grams: Grams per package (> 0)
        purchase_date: When it was bought (default: now)
        session: Optional database session (uses session_scope if not provided)

    Returns:
        Dict with procurement_id plus the ingredient's new stock figures

    Raises:
        IngredientNotFound: If the ingredient doesn't exist for this tenant
        ValidationError: If any quantity is out of range
        DatabaseError: If the database write fails
    """
    price = Decimal(str(price_per_package))
    weight = Decimal(str(package_weight_in_grams))
    errors = []
    if packages_purchased is None or int(packages_purchased) <= 0:
        errors.append("Packages purchased must be positive")
    if price < 0:
        errors.append("Price per package must not be negative")
    if weight <= 0:
        errors.append("Package weight must be positive")
    if errors:
        raise ServiceValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    try:
        with cm as session:
            ingredient = require_ingredient(session, tenant_id, ingredient_id)
            packages = int(packages_purchased)

            record = ProcurementRecord(
                ingredient_id=ingredient.id,
                packages_purchased=packages,
                price_per_package=price,
                package_weight_in_grams=weight,
                purchase_date=purchase_date or utc_now(),
            )
            session.add(record)

            ingredient.current_stock_in_grams = (
                Decimal(str(ingredient.current_stock_in_grams or 0)) + packages * weight
            )
            ingredient.current_stock_value = (
                Decimal(str(ingredient.current_stock_value or 0)) + packages * price
            )
            session.flush()

            log_operation(
                logger,
                operation="record_procurement",
                outcome="success",
                tenant_id=tenant_id,
                ingredient_id=ingredient.id,
                procurement_id=record.id,
                packages=packages,
            )
            result = _stock_dict(ingredient)
            result["procurement_id"] = record.id
            return result
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to record procurement", original_error=e)
