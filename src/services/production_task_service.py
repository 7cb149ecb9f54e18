"""
Production Task Service - task lifecycle and the completion posting pipeline.

This module provides functions for:
- Creating production tasks (with recipe snapshot capture in the same
  transaction)
- Editing and deleting PENDING tasks
- Starting, cancelling and completing tasks
- Advisory stock sufficiency checks

State machine:
    PENDING -> IN_PROGRESS -> COMPLETED (terminal)
    PENDING / IN_PROGRESS -> CANCELLED (terminal)

Completion atomically posts, in one transaction:
1. Consumption of successfully completed units (IngredientConsumptionLog)
2. Spoilage per stage (ProductionSpoilageLog + stock adjustments)
3. Process loss (stock adjustments)
4. Stock increments of self-made output ingredients
5. Overproduction logs for units beyond plan

Any failure rolls all of it back. The stock check before posting is advisory
(fast feedback with every shortage listed); the postings re-validate each
tracked ingredient and refuse to take stock below zero.
"""

import logging
from contextlib import nullcontext
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from src.models import (
    Ingredient,
    IngredientConsumptionLog,
    ProductionLog,
    ProductionOverproductionLog,
    ProductionSpoilageLog,
    ProductionTask,
    ProductionTaskItem,
    ProductionTaskStatus,
)
from src.services.consumption_service import (
    is_postable,
    process_loss,
    spoilage_consumption,
    task_item_products,
    theoretical_consumption,
    total_input_consumption,
)
from src.services.costing_service import load_unit_costs, total_cost
from src.services.database import session_scope
from src.services.exceptions import (
    DiscontinuedRecipeError,
    InsufficientStock,
    InvalidTaskStateError,
    StockShortage,
    ValidationError,
)
from src.services.ingredient_service import apply_stock_change
from src.services.logging_utils import get_service_logger, log_operation
from src.services.product_service import require_product, require_task
from src.services.recipe_graph import ZERO, ResolvedProduct, as_decimal
from src.services.recipe_resolver import merge_weights
from src.services.recipe_snapshot_service import capture_snapshot, replace_pending_snapshot
from src.utils.config import get_config
from src.utils.constants import PROCESS_LOSS_REASON, SPOILAGE_REASON
from src.utils.datetime_utils import as_date, utc_now

logger = get_service_logger(__name__)

_EDITABLE_STATUSES = (ProductionTaskStatus.PENDING.value,)
_CANCELLABLE_STATUSES = (
    ProductionTaskStatus.PENDING.value,
    ProductionTaskStatus.IN_PROGRESS.value,
)


# =============================================================================
# Helpers
# =============================================================================


def _task_to_dict(task: ProductionTask) -> Dict[str, Any]:
    snapshot = task.snapshot
    return {
        "id": task.id,
        "tenant_id": task.tenant_id,
        "status": task.status,
        "start_date": task.start_date,
        "end_date": task.end_date,
        "notes": task.notes,
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name if item.product else None,
                "quantity": as_decimal(item.quantity),
            }
            for item in task.items
        ],
        "snapshot_id": snapshot.id if snapshot is not None else None,
        "has_snapshot": snapshot is not None,
    }


def _require_status(task: ProductionTask, allowed: Sequence[str], operation: str) -> None:
    if task.status not in allowed:
        raise InvalidTaskStateError(task.id, task.status, operation)


def _validate_window(start_date: date, end_date: Optional[date]) -> List[str]:
    if start_date is None:
        return ["Start date is required"]
    if end_date is not None and end_date < start_date:
        return ["End date must not be before start date"]
    return []


def _validate_items(
    session: Session, tenant_id: str, items: Sequence[Mapping[str, Any]]
) -> List[Tuple[int, Decimal]]:
    """
    Check requested task items and return (product_id, quantity) pairs.

    Raises:
        ValidationError: Empty list, bad quantity, duplicate or mixed categories
        ProductNotFound: Unknown, deleted or foreign product
        DiscontinuedRecipeError: Product made from a soft-deleted recipe family
    """
    if not items:
        raise ValidationError(["A production task needs at least one item"])

    errors = []
    seen = set()
    pairs = []
    categories = {}
    for item in items:
        product_id = item.get("product_id")
        quantity = as_decimal(item.get("quantity"), None)
        if quantity is None or quantity <= 0:
            errors.append(f"Quantity for product {product_id} must be positive")
            continue
        if product_id in seen:
            errors.append(f"Product {product_id} is listed more than once")
            continue
        seen.add(product_id)

        product = require_product(session, tenant_id, product_id)
        family = product.version.family
        if family.is_discontinued:
            raise DiscontinuedRecipeError(product.name, family.name)
        categories.setdefault(family.category, []).append(product.name)
        pairs.append((product_id, quantity))

    if len(categories) > 1:
        errors.append(
            "A production task cannot mix product categories: "
            + ", ".join(sorted(categories))
        )
    if errors:
        raise ValidationError(errors)
    return pairs


def _load_ingredients(
    session: Session, tenant_id: str, ingredient_ids
) -> Dict[int, Ingredient]:
    ids = list(ingredient_ids)
    if not ids:
        return {}
    rows = (
        session.query(Ingredient)
        .filter(Ingredient.id.in_(ids), Ingredient.tenant_id == tenant_id)
        .with_for_update()
        .all()
    )
    return {ingredient.id: ingredient for ingredient in rows}


def _stock_shortages(
    ingredients: Mapping[int, Ingredient], required: Mapping[int, Decimal]
) -> List[StockShortage]:
    """Tracked ingredients whose stock cannot cover the required grams."""
    shortages = []
    for ingredient_id, grams in required.items():
        ingredient = ingredients.get(ingredient_id)
        # Live inventory class, the same source the bill of materials uses
        if ingredient is None or not ingredient.is_tracked:
            continue
        available = Decimal(str(ingredient.current_stock_in_grams or 0))
        if grams > available:
            shortages.append(StockShortage(ingredient.id, ingredient.name, grams, available))
    shortages.sort(key=lambda shortage: shortage.ingredient_name)
    return shortages


# =============================================================================
# CRUD
# =============================================================================


def create_production_task(
    tenant_id: str,
    items: Sequence[Mapping[str, Any]],
    start_date: date,
    end_date: Optional[date] = None,
    notes: Optional[str] = None,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Create a PENDING production task and capture its recipe snapshot.

    Args:
        tenant_id: Owning tenant
        items: [{"product_id": int, "quantity": number}, ...]
        start_date: First active day
        end_date: Last active day (None = start_date only)
        notes: Optional notes
        session: Optional database session (uses session_scope if not provided)

    Returns:
        Task dict (see get_production_task)

    Raises:
        ValidationError: Bad items, dates or mixed categories
        ProductNotFound: Unknown product for this tenant
        DiscontinuedRecipeError: Product uses a discontinued recipe
        RecipeCycleError: A product's recipe tree contains a cycle
    """
    start_date = as_date(start_date) if start_date is not None else None
    end_date = as_date(end_date) if end_date is not None else None
    errors = _validate_window(start_date, end_date)
    if errors:
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        pairs = _validate_items(session, tenant_id, items)

        task = ProductionTask(
            tenant_id=tenant_id,
            status=ProductionTaskStatus.PENDING.value,
            start_date=start_date,
            end_date=end_date,
            notes=notes,
        )
        for product_id, quantity in pairs:
            task.items.append(ProductionTaskItem(product_id=product_id, quantity=quantity))
        session.add(task)
        session.flush()

        capture_snapshot(session, task)

        log_operation(
            logger,
            operation="create_production_task",
            outcome="success",
            tenant_id=tenant_id,
            task_id=task.id,
            item_count=len(pairs),
        )
        return _task_to_dict(task)


def get_production_task(tenant_id: str, task_id: int, *, session=None) -> Dict[str, Any]:
    """
    Retrieve a production task.

    Returns:
        Dict with id, tenant_id, status, start_date, end_date, notes, items
        ([{id, product_id, product_name, quantity}]), snapshot_id, has_snapshot

    Raises:
        ProductionTaskNotFound: If the task doesn't exist for this tenant
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _task_to_dict(require_task(session, tenant_id, task_id))


def list_production_tasks(
    tenant_id: str,
    target_date: Optional[date] = None,
    statuses: Optional[Sequence[str]] = None,
    *,
    session=None,
) -> List[Dict[str, Any]]:
    """Live tasks of a tenant, optionally only those active on target_date."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return [
            _task_to_dict(task)
            for task in query_tasks(session, tenant_id, target_date, statuses)
        ]


def query_tasks(
    session: Session,
    tenant_id: str,
    target_date: Optional[date] = None,
    statuses: Optional[Sequence[str]] = None,
) -> List[ProductionTask]:
    query = session.query(ProductionTask).filter(
        ProductionTask.tenant_id == tenant_id, ProductionTask.deleted_at.is_(None)
    )
    if statuses:
        query = query.filter(ProductionTask.status.in_(list(statuses)))
    if target_date is not None:
        target_date = as_date(target_date)
        query = query.filter(ProductionTask.start_date <= target_date)
    tasks = query.order_by(ProductionTask.start_date, ProductionTask.id).all()
    if target_date is not None:
        tasks = [task for task in tasks if task.is_active_on(target_date)]
    return tasks


def update_production_task(
    tenant_id: str, task_id: int, task_data: Mapping[str, Any], *, session=None
) -> Dict[str, Any]:
    """
    Edit a PENDING task.

    task_data may contain "items", "start_date", "end_date" and "notes".
    Changing items re-validates them and replaces the task's snapshot.

    Raises:
        ProductionTaskNotFound: If the task doesn't exist for this tenant
        InvalidTaskStateError: If the task is not PENDING
        ValidationError / ProductNotFound / DiscontinuedRecipeError: As for create
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id)
        _require_status(task, _EDITABLE_STATUSES, "edit")

        start_date = as_date(task_data["start_date"]) if "start_date" in task_data else task.start_date
        if "end_date" in task_data:
            end_date = as_date(task_data["end_date"]) if task_data["end_date"] is not None else None
        else:
            end_date = task.end_date
        errors = _validate_window(start_date, end_date)
        if errors:
            raise ValidationError(errors)

        task.start_date = start_date
        task.end_date = end_date
        if "notes" in task_data:
            task.notes = task_data["notes"]

        if "items" in task_data:
            pairs = _validate_items(session, tenant_id, task_data["items"])
            task.items.clear()
            session.flush()
            for product_id, quantity in pairs:
                task.items.append(ProductionTaskItem(product_id=product_id, quantity=quantity))
            session.flush()
            replace_pending_snapshot(session, task)

        session.flush()
        log_operation(
            logger,
            operation="update_production_task",
            outcome="success",
            tenant_id=tenant_id,
            task_id=task.id,
            items_changed="items" in task_data,
        )
        return _task_to_dict(task)


def delete_production_task(tenant_id: str, task_id: int, *, session=None) -> None:
    """
    Soft-delete a PENDING task.

    Raises:
        ProductionTaskNotFound: If the task doesn't exist for this tenant
        InvalidTaskStateError: If the task is not PENDING
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id)
        _require_status(task, _EDITABLE_STATUSES, "delete")
        task.deleted_at = utc_now()
        log_operation(
            logger, operation="delete_production_task", outcome="success", task_id=task_id
        )


def _transition(
    tenant_id: str,
    task_id: int,
    allowed: Sequence[str],
    new_status: ProductionTaskStatus,
    operation: str,
    session,
) -> Dict[str, Any]:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id)
        _require_status(task, allowed, operation)
        old_status = task.status
        task.status = new_status.value
        session.flush()
        log_operation(
            logger,
            operation=f"{operation}_production_task",
            outcome="success",
            task_id=task_id,
            from_status=old_status,
            to_status=new_status.value,
        )
        return _task_to_dict(task)


def start_production_task(tenant_id: str, task_id: int, *, session=None) -> Dict[str, Any]:
    """PENDING -> IN_PROGRESS."""
    return _transition(
        tenant_id,
        task_id,
        (ProductionTaskStatus.PENDING.value,),
        ProductionTaskStatus.IN_PROGRESS,
        "start",
        session,
    )


def cancel_production_task(tenant_id: str, task_id: int, *, session=None) -> Dict[str, Any]:
    """PENDING or IN_PROGRESS -> CANCELLED."""
    return _transition(
        tenant_id,
        task_id,
        _CANCELLABLE_STATUSES,
        ProductionTaskStatus.CANCELLED,
        "cancel",
        session,
    )


# =============================================================================
# Stock check
# =============================================================================


def check_stock_sufficiency(tenant_id: str, task_id: int, *, session=None) -> Dict[str, Any]:
    """
    Advisory check of tracked stock against the task's total input.

    Returns:
        Dict with "sufficient" (bool) and "shortages" (list of dicts with
        ingredient_id, ingredient_name, required, available, missing)
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id)
        required: Dict[int, Decimal] = {}
        for product, quantity in task_item_products(session, task):
            required = merge_weights(required, total_input_consumption(product, quantity))
        ingredients = _load_ingredients(session, tenant_id, required.keys())
        shortages = _stock_shortages(ingredients, required)
        return {
            "sufficient": not shortages,
            "shortages": [shortage.to_dict() for shortage in shortages],
        }


# =============================================================================
# Completion
# =============================================================================


class _ItemPlan:
    """Consumption figures of one task item at completion."""

    def __init__(
        self,
        product: ResolvedProduct,
        planned: Decimal,
        completed: Decimal,
        spoilage: List[Dict[str, Any]],
    ):
        self.product = product
        self.planned = planned
        self.completed = completed
        self.spoilage = spoilage
        self.spoiled = sum((entry["quantity"] for entry in spoilage), ZERO)
        self.basis = max(planned, completed + self.spoiled)
        self.total_input = total_input_consumption(product, self.basis)
        self.completed_weights = theoretical_consumption(product, completed)
        self.spoiled_weights = spoilage_consumption(product, self.spoiled)

    @property
    def overproduced(self) -> Decimal:
        return self.completed - self.planned if self.completed > self.planned else ZERO


def _parse_completed_items(
    task: ProductionTask, completed_items: Optional[Sequence[Mapping[str, Any]]]
) -> Dict[int, Tuple[Decimal, List[Dict[str, Any]]]]:
    """
    Map product id -> (completed quantity, spoilage entries).

    Task items not mentioned are completed as planned without spoilage.

    Raises:
        ValidationError: Unknown product, negative quantity or bad spoilage entry
    """
    planned = {item.product_id: as_decimal(item.quantity) for item in task.items}
    parsed = {product_id: (quantity, []) for product_id, quantity in planned.items()}

    errors = []
    for entry in completed_items or []:
        product_id = entry.get("product_id")
        if product_id not in planned:
            errors.append(f"Product {product_id} is not part of production task {task.id}")
            continue
        completed = as_decimal(entry.get("completed_quantity"), None)
        if completed is None or completed < 0:
            errors.append(f"Completed quantity for product {product_id} must not be negative")
            continue
        spoilage = []
        for detail in entry.get("spoilage_details") or []:
            quantity = as_decimal(detail.get("quantity"), None)
            stage = (detail.get("stage") or "").strip()
            if not stage:
                errors.append(f"Spoilage for product {product_id} needs a stage")
            elif quantity is None or quantity <= 0:
                errors.append(f"Spoiled quantity for product {product_id} must be positive")
            else:
                spoilage.append({"stage": stage, "quantity": quantity, "notes": detail.get("notes")})
        parsed[product_id] = (completed, spoilage)

    if errors:
        raise ValidationError(errors)
    return parsed


def _post_consumption(
    session: Session,
    production_log: ProductionLog,
    ingredient: Ingredient,
    grams: Decimal,
) -> Dict[str, Any]:
    """Consume grams for successfully produced units and log it."""
    cost = grams * ingredient.unit_cost_per_gram
    apply_stock_change(session, ingredient, -grams, record_adjustment=False)
    session.add(
        IngredientConsumptionLog(
            production_log=production_log,
            ingredient_id=ingredient.id,
            quantity_in_grams=grams,
            total_cost=cost,
        )
    )
    return {
        "ingredient_id": ingredient.id,
        "ingredient_name": ingredient.name,
        "quantity_in_grams": grams,
        "total_cost": cost,
    }


def _post_adjustment(
    session: Session,
    production_log: ProductionLog,
    ingredient: Ingredient,
    grams: Decimal,
    reason: str,
) -> Dict[str, Any]:
    """Deduct grams as a spoilage or process-loss stock adjustment."""
    apply_stock_change(
        session, ingredient, -grams, reason=reason, production_log=production_log
    )
    return {
        "ingredient_id": ingredient.id,
        "ingredient_name": ingredient.name,
        "quantity_in_grams": grams,
        "reason": reason,
    }


def complete_production_task(
    tenant_id: str,
    task_id: int,
    completed_items: Optional[Sequence[Mapping[str, Any]]] = None,
    notes: Optional[str] = None,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Complete an IN_PROGRESS task and post all stock movements atomically.

    Per item, the consumption basis is max(planned, completed + spoiled).
    Successful units consume their theoretical weights, spoiled units are
    posted per stage, and whatever input is left above the epsilon is
    posted as process loss.

    Args:
        tenant_id: Calling tenant
        task_id: Task to complete
        completed_items: [{"product_id", "completed_quantity",
            "spoilage_details": [{"stage", "quantity", "notes"}]}]; items not
            listed are completed as planned
        notes: Completion notes
        session: Optional database session (uses session_scope if not provided)

    Returns:
        Dict with task_id, status, production_log_id, consumptions,
        spoilage, process_loss, overproduction and self_made postings

    Raises:
        ProductionTaskNotFound: If the task doesn't exist for this tenant
        InvalidTaskStateError: If the task is not IN_PROGRESS
        ValidationError: If completed_items is malformed
        InsufficientStock: If tracked stock cannot cover the total input
    """
    epsilon = get_config().consumption_epsilon_grams

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id)
        _require_status(task, (ProductionTaskStatus.IN_PROGRESS.value,), "complete")

        parsed = _parse_completed_items(task, completed_items)
        plans = []
        for product, planned in task_item_products(session, task):
            completed, spoilage = parsed[product.id]
            plans.append(_ItemPlan(product, planned, completed, spoilage))

        required = merge_weights(*[plan.total_input for plan in plans])
        output_ids = [
            plan.product.version.output_ingredient_id
            for plan in plans
            if plan.product.version is not None
            and plan.product.version.output_ingredient_id is not None
        ]
        ingredients = _load_ingredients(session, tenant_id, list(required) + output_ids)

        # Advisory pre-check: nothing has been written yet
        shortages = _stock_shortages(ingredients, required)
        if shortages:
            log_operation(
                logger,
                operation="complete_production_task",
                outcome="insufficient_stock",
                level=logging.WARNING,
                task_id=task_id,
                missing_ingredients=[shortage.ingredient_name for shortage in shortages],
            )
            raise InsufficientStock(shortages)

        unit_costs = load_unit_costs(session, tenant_id, ingredients.keys())

        production_log = ProductionLog(task=task, completed_at=utc_now(), notes=notes)
        session.add(production_log)
        session.flush()

        consumed = merge_weights(*[plan.completed_weights for plan in plans])
        consumption_rows = []
        for ingredient_id, grams in sorted(consumed.items()):
            ingredient = ingredients.get(ingredient_id)
            if ingredient is None or not is_postable(grams, epsilon):
                continue
            consumption_rows.append(
                _post_consumption(session, production_log, ingredient, grams)
            )

        spoilage_rows = []
        for plan in plans:
            for entry in plan.spoilage:
                session.add(
                    ProductionSpoilageLog(
                        production_log=production_log,
                        product_id=plan.product.id,
                        product_name=plan.product.name,
                        stage=entry["stage"],
                        quantity=entry["quantity"],
                        notes=entry["notes"],
                    )
                )
                reason = SPOILAGE_REASON.format(task_id=task.id, stage=entry["stage"])
                stage_weights = spoilage_consumption(plan.product, entry["quantity"])
                for ingredient_id, grams in sorted(stage_weights.items()):
                    ingredient = ingredients.get(ingredient_id)
                    if ingredient is None or not is_postable(grams, epsilon):
                        continue
                    spoilage_rows.append(
                        _post_adjustment(session, production_log, ingredient, grams, reason)
                    )

        losses = merge_weights(
            *[
                process_loss(plan.total_input, plan.completed_weights, plan.spoiled_weights, epsilon)
                for plan in plans
            ]
        )
        loss_reason = PROCESS_LOSS_REASON.format(task_id=task.id)
        loss_rows = []
        for ingredient_id, grams in sorted(losses.items()):
            ingredient = ingredients.get(ingredient_id)
            if ingredient is None:
                continue
            loss_rows.append(
                _post_adjustment(session, production_log, ingredient, grams, loss_reason)
            )

        self_made_rows = []
        for plan in plans:
            version = plan.product.version
            output = ingredients.get(version.output_ingredient_id) if version else None
            if output is None or plan.completed <= 0:
                continue
            grams = plan.completed * plan.product.base_dough_weight
            value = total_cost(plan.completed_weights, unit_costs)
            apply_stock_change(
                session,
                output,
                grams,
                value_change=value,
                reason=f"Produced by production task {task.id}",
                production_log=production_log,
            )
            self_made_rows.append(
                {"ingredient_id": output.id, "quantity_in_grams": grams, "value": value}
            )

        overproduction_rows = []
        for plan in plans:
            if plan.overproduced > 0:
                session.add(
                    ProductionOverproductionLog(
                        production_log=production_log,
                        product_id=plan.product.id,
                        product_name=plan.product.name,
                        quantity=plan.overproduced,
                    )
                )
                overproduction_rows.append(
                    {"product_id": plan.product.id, "quantity": plan.overproduced}
                )

        task.status = ProductionTaskStatus.COMPLETED.value
        session.flush()

        log_operation(
            logger,
            operation="complete_production_task",
            outcome="success",
            tenant_id=tenant_id,
            task_id=task_id,
            production_log_id=production_log.id,
            consumption_count=len(consumption_rows),
            spoilage_count=len(spoilage_rows),
            process_loss_count=len(loss_rows),
        )

        return {
            "task_id": task.id,
            "status": task.status,
            "production_log_id": production_log.id,
            "consumptions": consumption_rows,
            "spoilage": spoilage_rows,
            "process_loss": loss_rows,
            "overproduction": overproduction_rows,
            "self_made": self_made_rows,
        }
