"""
Bill of Materials Service - procurement list across production tasks.

Sums the total-input consumption (see consumption_service) of a set of
production tasks, grouped by ingredient and split by inventory class:

- standard_items: stock-tracked ingredients (STANDARD and SELF_MADE), each
  row carrying current stock and the shortfall to procure
- non_inventoried_items: consumed but never stocked (e.g. tap water)

Rows are sorted by required weight, heaviest first. Each task's consumption
comes from its recipe snapshot; the inventory class of each ingredient comes
from the live ingredient row, as completion decides what to deduct.
"""

from contextlib import nullcontext
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from src.models import Ingredient, IngredientType, ProductionTask
from src.services.consumption_service import task_consumption_weights
from src.services.database import session_scope
from src.services.logging_utils import get_service_logger, log_operation
from src.services.product_service import require_task
from src.services.production_task_service import query_tasks
from src.services.recipe_graph import ZERO, IngredientRef
from src.services.recipe_resolver import merge_weights
from src.utils.constants import ACTIVE_TASK_STATUSES, WEIGHT_QUANTUM
from src.utils.datetime_utils import as_date

logger = get_service_logger(__name__)


def aggregate_bill_of_materials(
    required: Mapping[int, Decimal],
    refs: Mapping[int, IngredientRef],
    stock: Mapping[int, Decimal],
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Split required grams by inventory class and attach stock figures.

    Args:
        required: ingredient id -> grams needed
        refs: ingredient id -> IngredientRef (name and class)
        stock: ingredient id -> current stock grams

    Returns:
        {"standard_items": [...], "non_inventoried_items": [...]}; standard
        rows have ingredient_id, ingredient_name, ingredient_type,
        required_quantity, current_stock and shortfall; non-inventoried rows
        omit the stock columns
    """
    standard = []
    non_inventoried = []
    for ingredient_id, grams in required.items():
        if grams <= 0:
            continue
        ref = refs.get(ingredient_id)
        ingredient_type = ref.ingredient_type if ref else IngredientType.STANDARD.value
        row = {
            "ingredient_id": ingredient_id,
            "ingredient_name": ref.name if ref else str(ingredient_id),
            "ingredient_type": ingredient_type,
            "required_quantity": grams.quantize(WEIGHT_QUANTUM),
        }
        if IngredientType(ingredient_type).is_tracked:
            current = stock.get(ingredient_id, ZERO)
            row["current_stock"] = current
            row["shortfall"] = max(ZERO, grams - current).quantize(WEIGHT_QUANTUM)
            standard.append(row)
        else:
            non_inventoried.append(row)

    def _order(row):
        return (-row["required_quantity"], row["ingredient_name"])

    standard.sort(key=_order)
    non_inventoried.sort(key=_order)
    return {"standard_items": standard, "non_inventoried_items": non_inventoried}


def _bill_for_tasks(
    session: Session, tenant_id: str, tasks: Iterable[ProductionTask]
) -> Dict[str, Any]:
    required: Dict[int, Decimal] = {}
    refs: Dict[int, IngredientRef] = {}
    task_ids = []
    for task in tasks:
        weights, task_refs = task_consumption_weights(session, task, include_losses=True)
        required = merge_weights(required, weights)
        for ingredient_id, ref in task_refs.items():
            refs.setdefault(ingredient_id, ref)
        task_ids.append(task.id)

    stock = {}
    if required:
        rows = (
            session.query(Ingredient)
            .filter(Ingredient.id.in_(list(required)), Ingredient.tenant_id == tenant_id)
            .all()
        )
        stock = {row.id: Decimal(str(row.current_stock_in_grams or 0)) for row in rows}
        # Inventory class is read live, not from the snapshot
        for row in rows:
            if row.id in refs:
                refs[row.id] = replace(refs[row.id], ingredient_type=row.ingredient_type)

    result = aggregate_bill_of_materials(required, refs, stock)
    result["task_ids"] = task_ids
    return result


def get_bill_of_materials(
    tenant_id: str,
    target_date: date,
    statuses: Optional[Sequence[str]] = None,
    *,
    session=None,
) -> Dict[str, Any]:
    """
    Bill of materials of every task active on target_date.

    Args:
        tenant_id: Calling tenant
        target_date: Day to plan for; a task counts when the day falls inside
            its start/end window
        statuses: Task statuses to include (default PENDING and IN_PROGRESS)
        session: Optional database session (uses session_scope if not provided)

    Returns:
        Dict with standard_items, non_inventoried_items, task_ids and date
    """
    target_date = as_date(target_date)
    if statuses is None:
        statuses = ACTIVE_TASK_STATUSES

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        tasks = query_tasks(session, tenant_id, target_date, statuses)
        result = _bill_for_tasks(session, tenant_id, tasks)
        result["date"] = target_date
        log_operation(
            logger,
            operation="get_bill_of_materials",
            outcome="success",
            tenant_id=tenant_id,
            target_date=target_date.isoformat(),
            task_count=len(result["task_ids"]),
        )
        return result


def get_bill_of_materials_for_tasks(
    tenant_id: str, task_ids: Sequence[int], *, session=None
) -> Dict[str, Any]:
    """
    Bill of materials of an explicit set of tasks.

    Raises:
        ProductionTaskNotFound: If any task doesn't exist for this tenant
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        tasks = [require_task(session, tenant_id, task_id) for task_id in dict.fromkeys(task_ids)]
        return _bill_for_tasks(session, tenant_id, tasks)
