"""
Consumption Service - ingredient consumption of products and production tasks.

Three views of the same resolved product, each a flatten at a different
weight target:

- theoretical: base_dough_weight * quantity, no loss corrections at all
  ("what a perfect batch consumes")
- total input: (base_dough_weight + division_loss) / (1 - loss_ratio) per
  unit, sub-recipe losses included ("what the batch physically uses"); this
  is the basis for stock checks and the bill of materials
- spoilage: theoretical consumption at the reported spoiled quantity

At completion, process loss = total input - theoretical(completed) -
theoretical(spoiled), per ingredient; amounts below the configured epsilon
are decimal noise and are dropped.

Task-level calculations always read the task's recipe snapshot (generated
once if missing), never the live recipes.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from src.models import ProductionTask
from src.services.database import session_scope
from src.services.exceptions import ProductNotFound
from src.services.logging_utils import get_service_logger, log_operation
from src.services.product_service import require_product, require_task
from src.services.recipe_graph import (
    ZERO,
    IngredientRef,
    ResolvedProduct,
    as_decimal,
    collect_ingredient_refs,
)
from src.services.recipe_resolver import flatten_product, merge_weights
from src.services.recipe_snapshot_service import load_task_snapshot
from src.services.snapshot_assembler import SnapshotAssembler
from src.utils.config import get_config
from src.utils.constants import WEIGHT_QUANTUM

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class ConsumptionLine:
    """Total grams of one base ingredient."""

    ingredient_id: int
    ingredient_name: str
    ingredient_type: str
    total_weight: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ingredient_id": self.ingredient_id,
            "ingredient_name": self.ingredient_name,
            "ingredient_type": self.ingredient_type,
            "total_weight": self.total_weight.quantize(WEIGHT_QUANTUM),
        }


# =============================================================================
# Views
# =============================================================================


def theoretical_consumption(product: ResolvedProduct, quantity: Decimal) -> Dict[int, Decimal]:
    """Loss-free consumption of `quantity` units."""
    return flatten_product(product, as_decimal(quantity), include_losses=False)


def total_input_consumption(product: ResolvedProduct, quantity: Decimal) -> Dict[int, Decimal]:
    """Consumption of `quantity` units inflated by division and process losses."""
    return flatten_product(product, as_decimal(quantity), include_losses=True)


def spoilage_consumption(product: ResolvedProduct, spoiled_quantity: Decimal) -> Dict[int, Decimal]:
    """Theoretical consumption attributable to spoiled units."""
    return theoretical_consumption(product, spoiled_quantity)


def is_postable(grams: Decimal, epsilon: Decimal) -> bool:
    """Whether an amount is large enough to post; amounts below epsilon are noise."""
    return grams > 0 and grams >= epsilon


def process_loss(
    total_input: Mapping[int, Decimal],
    completed: Mapping[int, Decimal],
    spoiled: Mapping[int, Decimal],
    epsilon: Optional[Decimal] = None,
) -> Dict[int, Decimal]:
    """
    Input not explained by successful output or reported spoilage.

    Amounts below epsilon are dropped (see is_postable).
    """
    if epsilon is None:
        epsilon = get_config().consumption_epsilon_grams
    losses = {}
    for ingredient_id, grams in total_input.items():
        remainder = grams - completed.get(ingredient_id, ZERO) - spoiled.get(ingredient_id, ZERO)
        if is_postable(remainder, epsilon):
            losses[ingredient_id] = remainder
    return losses


def consumption_lines(
    weights: Mapping[int, Decimal], refs: Mapping[int, IngredientRef]
) -> List[ConsumptionLine]:
    """Consumption map as named lines, heaviest first; zero rows are dropped."""
    lines = []
    for ingredient_id, grams in weights.items():
        if grams <= 0:
            continue
        ref = refs.get(ingredient_id)
        lines.append(
            ConsumptionLine(
                ingredient_id=ingredient_id,
                ingredient_name=ref.name if ref else str(ingredient_id),
                ingredient_type=ref.ingredient_type if ref else "",
                total_weight=grams,
            )
        )
    lines.sort(key=lambda line: (-line.total_weight, line.ingredient_name))
    return lines


def consumptions(
    product: ResolvedProduct, quantity: Decimal, include_losses: bool = True
) -> List[ConsumptionLine]:
    """Per-ingredient consumption of a live or snapshot product node."""
    if include_losses:
        weights = total_input_consumption(product, quantity)
    else:
        weights = theoretical_consumption(product, quantity)
    return consumption_lines(weights, collect_ingredient_refs(product))


# =============================================================================
# Tasks
# =============================================================================


def task_item_products(
    session: Session, task: ProductionTask
) -> List[Tuple[ResolvedProduct, Decimal]]:
    """
    (snapshot product, planned quantity) for every item of a task.

    Items whose product is absent from the snapshot contribute nothing and
    are logged.
    """
    snapshot = load_task_snapshot(session, task)
    pairs = []
    for item in task.items:
        product = snapshot.product(item.product_id)
        if product is None:
            log_operation(
                logger,
                operation="task_item_products",
                outcome="product_missing_from_snapshot",
                level=logging.WARNING,
                task_id=task.id,
                product_id=item.product_id,
            )
            continue
        pairs.append((product, as_decimal(item.quantity)))
    return pairs


def task_consumption_weights(
    session: Session, task: ProductionTask, include_losses: bool = True
) -> Tuple[Dict[int, Decimal], Dict[int, IngredientRef]]:
    """Aggregated consumption of all task items plus the ingredients referenced."""
    weights: Dict[int, Decimal] = {}
    refs: Dict[int, IngredientRef] = {}
    for product, quantity in task_item_products(session, task):
        if include_losses:
            item_weights = total_input_consumption(product, quantity)
        else:
            item_weights = theoretical_consumption(product, quantity)
        weights = merge_weights(weights, item_weights)
        for ingredient_id, ref in collect_ingredient_refs(product).items():
            refs.setdefault(ingredient_id, ref)
    return weights, refs


def calculate_task_consumptions(
    tenant_id: str, task_id: int, *, include_losses: bool = True, session=None
) -> List[Dict[str, Any]]:
    """
    Ingredient consumption of a production task, from its recipe snapshot.

    Args:
        tenant_id: Calling tenant
        task_id: Production task
        include_losses: Total-input view (default) or theoretical view
        session: Optional database session (uses session_scope if not provided)

    Returns:
        List of {ingredient_id, ingredient_name, ingredient_type, total_weight},
        heaviest first

    Raises:
        ProductionTaskNotFound: If the task doesn't exist for this tenant
        SnapshotDecodeError: If the stored snapshot is unreadable
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id)
        weights, refs = task_consumption_weights(session, task, include_losses)
        return [line.to_dict() for line in consumption_lines(weights, refs)]


def calculate_product_consumptions(
    tenant_id: str,
    product_id: int,
    quantity: Decimal,
    *,
    include_losses: bool = True,
    session=None,
) -> List[Dict[str, Any]]:
    """
    Ingredient consumption of `quantity` units of a product from live recipes.

    Raises:
        ProductNotFound: If the product doesn't exist for this tenant
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        require_product(session, tenant_id, product_id)
        product = SnapshotAssembler(session, tenant_id).assemble_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return [line.to_dict() for line in consumptions(product, quantity, include_losses)]
