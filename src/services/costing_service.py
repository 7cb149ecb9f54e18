"""Costing Service - prices flattened recipes with moving-average costs.

This module provides:
- Pure pricing functions over ingredient-id -> grams maps (total_cost,
  cost_breakdown, cost_history_points)
- Tenant-scoped product operations built on them (calculate_product_cost,
  get_cost_breakdown, get_cost_history, get_calculated_product_details)

Unit cost is the weighted average current_stock_value / current_stock_in_grams
of each ingredient, the same for every inventory class. An ingredient with no
stock has unit cost 0; that is not an error.

A product's cost is the priced total input of ONE unit: the main component
inflated by its division loss and loss ratios, plus add-on lines.
"""

from contextlib import nullcontext
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from src.models import Ingredient, ProcurementRecord
from src.services.database import session_scope
from src.services.exceptions import ProductNotFound
from src.services.logging_utils import get_service_logger
from src.services.product_service import require_product
from src.services.recipe_graph import ZERO, ResolvedProduct, as_decimal, collect_ingredient_refs
from src.services.recipe_resolver import (
    AddonBreakdown,
    ComponentBreakdown,
    LineBreakdown,
    ProductBreakdown,
    resolve_product,
)
from src.services.snapshot_assembler import SnapshotAssembler
from src.utils.config import get_config
from src.utils.constants import COST_QUANTUM, OTHER_BUCKET_NAME, WEIGHT_QUANTUM
from src.utils.datetime_utils import as_date, utc_today

logger = get_service_logger(__name__)


# =============================================================================
# Pure pricing
# =============================================================================


def unit_cost_per_gram(stock_in_grams: Any, stock_value: Any) -> Decimal:
    """Weighted-average cost per gram; 0 when there is no stock to divide by."""
    grams = as_decimal(stock_in_grams)
    if grams <= 0:
        return ZERO
    return as_decimal(stock_value) / grams


def total_cost(weights: Mapping[int, Decimal], unit_costs: Mapping[int, Decimal]) -> Decimal:
    """Sum of grams x unit cost; ingredients without a known cost count as 0."""
    return sum(
        (grams * unit_costs.get(ingredient_id, ZERO) for ingredient_id, grams in weights.items()),
        ZERO,
    )


def cost_breakdown(
    weights: Mapping[int, Decimal],
    unit_costs: Mapping[int, Decimal],
    names: Mapping[int, str],
    top_n: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Per-ingredient costs, largest first, with the tail collapsed.

    Only positive values are listed. When more than top_n rows remain, the
    first top_n are kept and the rest are summed into a single "Other" row
    (if that sum is positive), so the result has at most top_n + 1 rows and
    always sums to the total cost.

    Returns:
        List of {"name": str, "value": Decimal}
    """
    if top_n is None:
        top_n = get_config().cost_breakdown_top_n

    rows = []
    for ingredient_id, grams in weights.items():
        value = grams * unit_costs.get(ingredient_id, ZERO)
        if value > 0:
            rows.append({"name": names.get(ingredient_id, str(ingredient_id)), "value": value})
    rows.sort(key=lambda row: row["value"], reverse=True)

    if len(rows) <= top_n:
        return rows

    head = rows[:top_n]
    remainder = sum((row["value"] for row in rows[top_n:]), ZERO)
    if remainder > 0:
        head.append({"name": OTHER_BUCKET_NAME, "value": remainder})
    return head


def price_at(history: Sequence[Tuple[date, Decimal]], on_date: date) -> Optional[Decimal]:
    """Price per gram of the latest purchase at or before on_date, if any."""
    price = None
    for purchase_date, price_per_gram in history:
        if purchase_date > on_date:
            break
        price = price_per_gram
    return price


def cost_history_points(
    weights: Mapping[int, Decimal],
    purchase_history: Mapping[int, Sequence[Tuple[date, Decimal]]],
    live_unit_costs: Mapping[int, Decimal],
    today: date,
    points: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Replay the cost of a weight map over past purchase dates.

    For each of the last `points` distinct purchase dates, every ingredient is
    priced at its most recent purchase at or before that date (falling back
    to its live unit cost when it had none yet). The live cost is appended as
    today's point, unless the last point is already today with the same cost.

    Args:
        weights: ingredient id -> grams
        purchase_history: ingredient id -> [(purchase date, price per gram)],
            sorted by date
        live_unit_costs: ingredient id -> current moving-average cost per gram
        today: Date of the live point
        points: Number of purchase dates to replay (default from config)

    Returns:
        List of {"date": date, "cost": Decimal}, oldest first
    """
    if points is None:
        points = get_config().cost_history_points

    relevant = {ingredient_id: purchase_history.get(ingredient_id, ()) for ingredient_id in weights}
    dates = sorted({purchase_date for history in relevant.values() for purchase_date, _ in history})
    if points > 0:
        dates = dates[-points:]
    else:
        dates = []

    series: List[Dict[str, Any]] = []
    for history_date in dates:
        unit_costs = {}
        for ingredient_id in weights:
            price = price_at(relevant[ingredient_id], history_date)
            unit_costs[ingredient_id] = (
                price if price is not None else live_unit_costs.get(ingredient_id, ZERO)
            )
        series.append({"date": history_date, "cost": total_cost(weights, unit_costs)})

    live = total_cost(weights, live_unit_costs)
    if not series or series[-1]["date"] != today or series[-1]["cost"] != live:
        series.append({"date": today, "cost": live})
    return series


def _money(value: Decimal) -> Decimal:
    return value.quantize(COST_QUANTUM)


def _grams(value: Decimal) -> Decimal:
    return value.quantize(WEIGHT_QUANTUM)


# =============================================================================
# Data access helpers
# =============================================================================


def load_unit_costs(
    session: Session, tenant_id: str, ingredient_ids
) -> Dict[int, Decimal]:
    """Current moving-average unit cost per gram, keyed by ingredient id."""
    ids = list(ingredient_ids)
    if not ids:
        return {}
    ingredients = (
        session.query(Ingredient)
        .filter(Ingredient.id.in_(ids), Ingredient.tenant_id == tenant_id)
        .all()
    )
    return {
        ingredient.id: unit_cost_per_gram(
            ingredient.current_stock_in_grams, ingredient.current_stock_value
        )
        for ingredient in ingredients
    }


def load_purchase_history(
    session: Session, ingredient_ids
) -> Dict[int, List[Tuple[date, Decimal]]]:
    """Procurement prices per gram, keyed by ingredient id, oldest first."""
    ids = list(ingredient_ids)
    history: Dict[int, List[Tuple[date, Decimal]]] = {ingredient_id: [] for ingredient_id in ids}
    if not ids:
        return history
    records = (
        session.query(ProcurementRecord)
        .filter(ProcurementRecord.ingredient_id.in_(ids))
        .order_by(ProcurementRecord.purchase_date, ProcurementRecord.id)
        .all()
    )
    for record in records:
        history[record.ingredient_id].append((as_date(record.purchase_date), record.price_per_gram))
    return history


def _resolve_live_product(session: Session, tenant_id: str, product_id: int) -> ResolvedProduct:
    require_product(session, tenant_id, product_id)
    product = SnapshotAssembler(session, tenant_id).assemble_product(product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _price_unit(
    session: Session, tenant_id: str, product_id: int
) -> Tuple[ProductBreakdown, Dict[int, Decimal], Dict[int, str]]:
    product = _resolve_live_product(session, tenant_id, product_id)
    breakdown = resolve_product(product, Decimal("1"), include_losses=True)
    refs = collect_ingredient_refs(product)
    unit_costs = load_unit_costs(session, tenant_id, refs.keys())
    names = {ingredient_id: ref.name for ingredient_id, ref in refs.items()}
    return breakdown, unit_costs, names


# =============================================================================
# Product operations
# =============================================================================


def calculate_product_cost(tenant_id: str, product_id: int, *, session=None) -> Dict[str, Any]:
    """
    Cost of producing one unit of a product from live recipe data.

    Args:
        tenant_id: Calling tenant
        product_id: Product to price
        session: Optional database session (uses session_scope if not provided)

    Returns:
        Dict with "product_id" and "total_cost" (Decimal)

    Raises:
        ProductNotFound: If the product doesn't exist for this tenant
        RecipeCycleError: If the product's recipe tree contains a cycle
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        breakdown, unit_costs, _ = _price_unit(session, tenant_id, product_id)
        return {
            "product_id": product_id,
            "total_cost": _money(total_cost(breakdown.weights, unit_costs)),
        }


def get_cost_breakdown(tenant_id: str, product_id: int, *, session=None) -> List[Dict[str, Any]]:
    """
    Largest ingredient costs of one unit, top N plus an "Other" bucket.

    Returns:
        List of {"name": str, "value": Decimal}, largest first
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        breakdown, unit_costs, names = _price_unit(session, tenant_id, product_id)
        return [
            {"name": row["name"], "value": _money(row["value"])}
            for row in cost_breakdown(breakdown.weights, unit_costs, names)
        ]


def get_cost_history(tenant_id: str, product_id: int, *, session=None) -> List[Dict[str, Any]]:
    """
    Unit cost of a product replayed over its ingredients' recent purchase dates.

    Returns:
        List of {"date": date, "cost": Decimal}, oldest first; the last
        point is today's live cost
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        breakdown, unit_costs, _ = _price_unit(session, tenant_id, product_id)
        history = load_purchase_history(session, breakdown.weights.keys())
        series = cost_history_points(breakdown.weights, history, unit_costs, utc_today())
        return [{"date": point["date"], "cost": _money(point["cost"])} for point in series]


# =============================================================================
# Display tree
# =============================================================================


def _line_kind(line_breakdown: LineBreakdown) -> str:
    line = line_breakdown.line
    if line.is_leaf:
        return "INGREDIENT"
    return "PRE_DOUGH" if line.scales_by_flour else "EXTRA"


def _component_details(
    component: ComponentBreakdown, unit_costs: Mapping[int, Decimal]
) -> Tuple[Dict[str, Any], Decimal]:
    """Priced display dict of a component breakdown plus its cost."""
    lines = []
    component_cost = ZERO
    for line_breakdown in component.lines:
        line = line_breakdown.line
        sub_details = None
        if line_breakdown.sub is not None:
            sub_details, line_cost = _component_details(line_breakdown.sub, unit_costs)
        elif line.ingredient is not None:
            line_cost = line_breakdown.weight * unit_costs.get(line.ingredient.id, ZERO)
        else:
            line_cost = ZERO
        component_cost += line_cost
        lines.append(
            {
                "line_id": line.id,
                "kind": _line_kind(line_breakdown),
                "name": line.label,
                "ingredient_id": line.ingredient.id if line.ingredient else None,
                "ratio": line.ratio,
                "flour_ratio": line.flour_ratio,
                "weight": _grams(line_breakdown.weight),
                "cost": _money(line_cost),
                "sub_recipe": sub_details,
            }
        )

    details = {
        "component_id": component.component.id,
        "name": component.component.name,
        "recipe_name": component.recipe_name,
        "loss_ratio": component.component.loss_ratio,
        "division_loss": component.component.division_loss,
        "total_ratio": component.total_ratio,
        "flour_weight_ref": _grams(component.flour_weight_ref),
        "input_weight": _grams(component.input_weight),
        "output_weight": _grams(component.target_output),
        "lines": lines,
        "cost": _money(component_cost),
    }
    return details, component_cost


def _addon_details(
    addon: AddonBreakdown, unit_costs: Mapping[int, Decimal]
) -> Tuple[Dict[str, Any], Decimal]:
    line = addon.line
    sub_details = None
    if addon.sub is not None:
        sub_details, cost = _component_details(addon.sub, unit_costs)
    elif line.ingredient is not None:
        cost = addon.weight * unit_costs.get(line.ingredient.id, ZERO)
    else:
        cost = ZERO
    return (
        {
            "line_id": line.id,
            "line_type": line.line_type,
            "name": line.label,
            "ingredient_id": line.ingredient.id if line.ingredient else None,
            "ratio": line.ratio,
            "weight_in_grams": line.weight_in_grams,
            "weight": _grams(addon.weight),
            "cost": _money(cost),
            "sub_recipe": sub_details,
        },
        cost,
    )


def build_product_details(
    breakdown: ProductBreakdown,
    unit_costs: Mapping[int, Decimal],
) -> Dict[str, Any]:
    """Assemble the priced display tree of a resolved product."""
    product = breakdown.product
    version = product.version

    total = ZERO
    main_details = None
    if breakdown.main is not None:
        main_details, main_cost = _component_details(breakdown.main, unit_costs)
        total += main_cost

    addons = []
    for addon in breakdown.addons:
        addon_details, addon_cost = _addon_details(addon, unit_costs)
        addons.append(addon_details)
        total += addon_cost

    # Later components are shown as authored; only the root is scaled
    other_components = []
    if version is not None:
        for component in version.components[1:]:
            other_components.append(
                {
                    "component_id": component.id,
                    "name": component.name,
                    "loss_ratio": component.loss_ratio,
                    "division_loss": component.division_loss,
                    "lines": [
                        {"line_id": line.id, "name": line.label, "ratio": line.ratio,
                         "flour_ratio": line.flour_ratio}
                        for line in component.lines
                    ],
                }
            )

    refs = collect_ingredient_refs(product)
    ingredients = [
        {
            "ingredient_id": ingredient_id,
            "name": refs[ingredient_id].name if ingredient_id in refs else str(ingredient_id),
            "weight": _grams(grams),
            "unit_cost": unit_costs.get(ingredient_id, ZERO),
            "cost": _money(grams * unit_costs.get(ingredient_id, ZERO)),
        }
        for ingredient_id, grams in sorted(
            breakdown.weights.items(), key=lambda item: item[1], reverse=True
        )
    ]

    return {
        "product_id": product.id,
        "name": product.name,
        "base_dough_weight": product.base_dough_weight,
        "recipe_name": version.family_name if version else None,
        "recipe_version": version.version_number if version else None,
        "category": product.category,
        "main_component": main_details,
        "other_components": other_components,
        "addons": addons,
        "ingredients": ingredients,
        "total_weight": _grams(breakdown.total_weight),
        "total_cost": _money(total),
        "true_hydration": breakdown.true_hydration,
    }


def get_calculated_product_details(
    tenant_id: str, product_id: int, *, session=None
) -> Dict[str, Any]:
    """
    Full priced recipe tree of one unit of a product, for display.

    Includes per component the flour-weight reference, input and output
    weights, each line's weight and cost, nested sub-recipes, product add-on
    lines, flattened ingredient totals, total weight, total cost and true
    hydration.

    Raises:
        ProductNotFound: If the product doesn't exist for this tenant
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        breakdown, unit_costs, _ = _price_unit(session, tenant_id, product_id)
        return build_product_details(breakdown, unit_costs)
