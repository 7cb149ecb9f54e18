"""
Recipe tree resolver - pure flattening of resolved recipe trees.

Turns a resolved component (or product) and a target output weight into
absolute base-ingredient weights. Nothing here touches the database; inputs
are the frozen node types from recipe_graph.

Scaling rules (ratios are baker's percentages, flour = 100 points):

- input = target_output / (1 - loss_ratio)
- total_ratio = sum of leaf and extra ratios, plus flour_ratio * sub_total_ratio
  for every pre-dough line (the points the pre-dough occupies in its parent)
- weight_per_point = input / total_ratio; flour_weight_ref = weight_per_point * 100
- leaf line: weight_per_point * ratio
- extra line: weight_per_point * ratio is the extra's target output
- pre-dough line: flour_weight_ref * flour_ratio grams of flour are routed into
  the pre-dough, whose target output is routed * sub_total_ratio / 100

Every recursive call returns its own fold (ComponentBreakdown) and the caller
merges the children's Totals; there is no shared accumulator.

Degenerate branches (zero total ratio, loss divisor <= 0, a missing
ingredient or sub-recipe) go through _degenerate(): by default they contribute
zero and are logged at WARNING; in strict mode they raise
DegenerateRecipeError.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

from src.services.exceptions import DegenerateRecipeError
from src.services.logging_utils import get_service_logger, log_operation
from src.services.recipe_graph import (
    ZERO,
    ResolvedComponent,
    ResolvedLine,
    ResolvedProduct,
    ResolvedProductLine,
    ResolvedVersion,
    as_decimal,
)
from src.utils.config import get_config
from src.utils.constants import BAKERS_PERCENT_BASIS

logger = get_service_logger(__name__)

ONE = Decimal("1")


# ============================================================================
# Fold structures
# ============================================================================


@dataclass(frozen=True)
class Totals:
    """Flattened leaf weights of a subtree plus its flour and water content."""

    weights: Mapping[int, Decimal] = field(default_factory=dict)
    flour_weight: Decimal = ZERO
    water_weight: Decimal = ZERO

    @property
    def total_weight(self) -> Decimal:
        return sum(self.weights.values(), ZERO)

    def merge(self, other: "Totals") -> "Totals":
        return Totals(
            weights=merge_weights(self.weights, other.weights),
            flour_weight=self.flour_weight + other.flour_weight,
            water_weight=self.water_weight + other.water_weight,
        )


EMPTY_TOTALS = Totals()


@dataclass(frozen=True)
class LineBreakdown:
    """
    One line of a resolved component with its computed weight.

    For leaf lines weight is the ingredient's grams; for sub-recipe lines it
    is the sub-recipe's target output and sub holds its own breakdown.
    """

    line: ResolvedLine
    weight: Decimal
    sub: Optional["ComponentBreakdown"] = None


@dataclass(frozen=True)
class ComponentBreakdown:
    """Result of resolving one component against a target output weight."""

    component: ResolvedComponent
    target_output: Decimal
    input_weight: Decimal
    total_ratio: Decimal
    flour_weight_ref: Decimal
    lines: Tuple[LineBreakdown, ...] = ()
    totals: Totals = EMPTY_TOTALS
    recipe_name: Optional[str] = None

    @property
    def weights(self) -> Mapping[int, Decimal]:
        return self.totals.weights


@dataclass(frozen=True)
class AddonBreakdown:
    """A product add-on line with its grams and, for linked extras, the extra's breakdown."""

    line: ResolvedProductLine
    weight: Decimal
    sub: Optional[ComponentBreakdown] = None


@dataclass(frozen=True)
class ProductBreakdown:
    """
    Resolution of a product at a quantity.

    main is the breakdown of the recipe version's root component; addons are
    the product-level mix-ins, fillings and toppings.
    """

    product: ResolvedProduct
    quantity: Decimal
    include_losses: bool
    main: Optional[ComponentBreakdown]
    addons: Tuple[AddonBreakdown, ...]
    totals: Totals

    @property
    def weights(self) -> Mapping[int, Decimal]:
        return self.totals.weights

    @property
    def total_weight(self) -> Decimal:
        return self.totals.total_weight

    @property
    def true_hydration(self) -> Decimal:
        return true_hydration(self.totals)


# ============================================================================
# Helpers
# ============================================================================


def merge_weights(*maps: Mapping[int, Decimal]) -> Dict[int, Decimal]:
    """Sum several ingredient-id -> grams maps."""
    merged: Dict[int, Decimal] = {}
    for weights in maps:
        for ingredient_id, grams in weights.items():
            merged[ingredient_id] = merged.get(ingredient_id, ZERO) + grams
    return merged


def true_hydration(totals: Totals) -> Decimal:
    """Total water weight / total flour weight; 0 when there is no flour."""
    if totals.flour_weight <= 0:
        return ZERO
    return totals.water_weight / totals.flour_weight


def _resolve_strict(strict: Optional[bool]) -> bool:
    if strict is None:
        return get_config().strict_resolution
    return strict


def _degenerate(reason: str, location: str, strict: bool) -> None:
    """Apply the degenerate-branch policy: raise in strict mode, else warn."""
    if strict:
        raise DegenerateRecipeError(reason, location)
    log_operation(
        logger,
        operation="resolve_recipe",
        outcome="degenerate_branch",
        level=logging.WARNING,
        reason=reason,
        location=location,
    )


def _location(component: ResolvedComponent, recipe_name: Optional[str] = None) -> str:
    if recipe_name:
        return f"component '{component.name}' of recipe '{recipe_name}'"
    return f"component '{component.name}'"


def _leaf_totals(line, weight: Decimal) -> Totals:
    ingredient = line.ingredient
    return Totals(
        weights={ingredient.id: weight},
        flour_weight=weight if ingredient.is_flour else ZERO,
        water_weight=weight * ingredient.water_content,
    )


# ============================================================================
# Ratio totals
# ============================================================================


def component_total_ratio(
    component: ResolvedComponent, strict: Optional[bool] = None
) -> Decimal:
    """
    Total ratio points of a component.

    Leaf and extra lines contribute their ratio; a pre-dough line contributes
    flour_ratio times the total ratio of the pre-dough's root component. A
    pre-dough whose recipe is missing contributes nothing.
    """
    strict = _resolve_strict(strict)
    total = ZERO
    for line in component.lines:
        if line.scales_by_flour:
            sub_root = line.sub_recipe.root_component if line.sub_recipe else None
            if sub_root is None:
                continue
            total += as_decimal(line.flour_ratio) * component_total_ratio(sub_root, strict)
        else:
            total += as_decimal(line.ratio)
    return total


def version_total_ratio(version: ResolvedVersion, strict: Optional[bool] = None) -> Decimal:
    root = version.root_component
    if root is None:
        return ZERO
    return component_total_ratio(root, strict)


# ============================================================================
# Resolution
# ============================================================================


def resolve_component(
    component: ResolvedComponent,
    target_output: Decimal,
    apply_loss: bool = True,
    strict: Optional[bool] = None,
    recipe_name: Optional[str] = None,
) -> ComponentBreakdown:
    """
    Resolve a component against the weight that must leave it.

    Args:
        component: Resolved component to scale
        target_output: Grams leaving the component after processing loss
        apply_loss: Inflate inputs by loss ratios (this component and all
            sub-recipes); False gives the loss-free theoretical view
        strict: Raise on degenerate branches; None reads the configuration
        recipe_name: Owning recipe name, used in diagnostics

    Returns:
        ComponentBreakdown whose totals hold the flattened leaf weights

    Raises:
        DegenerateRecipeError: In strict mode, for a degenerate branch
    """
    strict = _resolve_strict(strict)
    target_output = as_decimal(target_output)
    location = _location(component, recipe_name)

    divisor = ONE - as_decimal(component.loss_ratio) if apply_loss else ONE
    if divisor <= 0:
        _degenerate(f"loss divisor {divisor} is not positive", location, strict)
        return ComponentBreakdown(
            component=component,
            target_output=target_output,
            input_weight=ZERO,
            total_ratio=ZERO,
            flour_weight_ref=ZERO,
            recipe_name=recipe_name,
        )

    input_weight = target_output / divisor
    total_ratio = component_total_ratio(component, strict)
    if total_ratio <= 0:
        _degenerate("total ratio is zero", location, strict)
        return ComponentBreakdown(
            component=component,
            target_output=target_output,
            input_weight=input_weight,
            total_ratio=total_ratio,
            flour_weight_ref=ZERO,
            recipe_name=recipe_name,
        )

    per_point = input_weight / total_ratio
    flour_ref = per_point * BAKERS_PERCENT_BASIS

    lines = []
    totals = EMPTY_TOTALS
    for line in component.lines:
        line_breakdown = _resolve_line(line, per_point, flour_ref, apply_loss, strict, location)
        lines.append(line_breakdown)
        if line_breakdown.sub is not None:
            totals = totals.merge(line_breakdown.sub.totals)
        elif line.ingredient is not None and line_breakdown.weight > 0:
            totals = totals.merge(_leaf_totals(line, line_breakdown.weight))

    return ComponentBreakdown(
        component=component,
        target_output=target_output,
        input_weight=input_weight,
        total_ratio=total_ratio,
        flour_weight_ref=flour_ref,
        lines=tuple(lines),
        totals=totals,
        recipe_name=recipe_name,
    )


def _resolve_line(
    line: ResolvedLine,
    per_point: Decimal,
    flour_ref: Decimal,
    apply_loss: bool,
    strict: bool,
    location: str,
) -> LineBreakdown:
    if line.is_leaf:
        if line.ingredient is None:
            _degenerate(f"missing ingredient for {line.label}", location, strict)
            return LineBreakdown(line=line, weight=ZERO)
        return LineBreakdown(line=line, weight=per_point * as_decimal(line.ratio))

    sub_recipe = line.sub_recipe
    sub_root = sub_recipe.root_component if sub_recipe else None
    if sub_root is None:
        _degenerate(f"missing sub-recipe '{line.label}'", location, strict)
        return LineBreakdown(line=line, weight=ZERO)

    if line.scales_by_flour:
        routed_flour = flour_ref * as_decimal(line.flour_ratio)
        return _resolve_from_flour(line, sub_recipe, sub_root, routed_flour, apply_loss, strict)

    sub_target = per_point * as_decimal(line.ratio)
    sub = resolve_component(sub_root, sub_target, apply_loss, strict, sub_recipe.family_name)
    return LineBreakdown(line=line, weight=sub_target, sub=sub)


def _resolve_from_flour(
    line: ResolvedLine,
    sub_recipe: ResolvedVersion,
    sub_root: ResolvedComponent,
    routed_flour: Decimal,
    apply_loss: bool,
    strict: bool,
) -> LineBreakdown:
    sub_total = component_total_ratio(sub_root, strict)
    sub_target = routed_flour * sub_total / BAKERS_PERCENT_BASIS
    sub = resolve_component(sub_root, sub_target, apply_loss, strict, sub_recipe.family_name)
    return LineBreakdown(line=line, weight=sub_target, sub=sub)


def flatten(
    component: ResolvedComponent,
    target_output: Decimal,
    apply_loss: bool = True,
    strict: Optional[bool] = None,
) -> Dict[int, Decimal]:
    """Flatten a component into ingredient id -> grams for a target output weight."""
    return dict(resolve_component(component, target_output, apply_loss, strict).weights)


def flatten_from_flour_reference(
    component: ResolvedComponent,
    flour_weight_ref: Decimal,
    apply_loss: bool = True,
    strict: Optional[bool] = None,
) -> Dict[int, Decimal]:
    """
    Flatten a component scaled so that 100 ratio points weigh flour_weight_ref.

    This is how pre-doughs are scaled: the routed parent flour is the
    flour-weight reference, and the output target follows from the total ratio.
    """
    strict = _resolve_strict(strict)
    total_ratio = component_total_ratio(component, strict)
    target = as_decimal(flour_weight_ref) * total_ratio / BAKERS_PERCENT_BASIS
    return flatten(component, target, apply_loss, strict)


def flour_weight_reference(
    component: ResolvedComponent,
    target_output: Decimal,
    apply_loss: bool = False,
    strict: Optional[bool] = None,
) -> Decimal:
    """
    Theoretical flour weight (100% baker's percentage) of a component.

    Inverts through the total ratio; zero for a degenerate component.
    """
    strict = _resolve_strict(strict)
    target_output = as_decimal(target_output)
    divisor = ONE - as_decimal(component.loss_ratio) if apply_loss else ONE
    if divisor <= 0:
        _degenerate(f"loss divisor {divisor} is not positive", _location(component), strict)
        return ZERO
    total_ratio = component_total_ratio(component, strict)
    if total_ratio <= 0:
        _degenerate("total ratio is zero", _location(component), strict)
        return ZERO
    return target_output / divisor / total_ratio * BAKERS_PERCENT_BASIS


# ============================================================================
# Products
# ============================================================================


def resolve_product(
    product: ResolvedProduct,
    quantity: Decimal = ONE,
    include_losses: bool = False,
    strict: Optional[bool] = None,
) -> ProductBreakdown:
    """
    Resolve a product for a number of units.

    Theoretical view (include_losses=False): the main component targets
    base_dough_weight * quantity and no loss ratio is applied anywhere.

    Total-input view (include_losses=True): the main component targets
    (base_dough_weight + division_loss) * quantity and every component's loss
    ratio inflates its input.

    Add-on lines are per unit: weight_in_grams is absolute, a ratio is a
    percentage of the main component's loss-free flour-weight reference.
    """
    strict = _resolve_strict(strict)
    quantity = as_decimal(quantity)
    version = product.version
    root = version.root_component if version else None

    main = None
    unit_flour_ref = ZERO
    if root is None:
        _degenerate(
            "recipe version has no components", f"product '{product.name}'", strict
        )
    else:
        per_unit_target = as_decimal(product.base_dough_weight)
        if include_losses:
            per_unit_target += as_decimal(root.division_loss)
        main = resolve_component(
            root, per_unit_target * quantity, include_losses, strict, version.family_name
        )
        unit_flour_ref = flour_weight_reference(root, product.base_dough_weight, False, strict)

    totals = main.totals if main is not None else EMPTY_TOTALS
    addons = []
    for line in product.lines:
        addon = _resolve_addon(product, line, unit_flour_ref, quantity, include_losses, strict)
        addons.append(addon)
        if addon.sub is not None:
            totals = totals.merge(addon.sub.totals)
        elif line.ingredient is not None and addon.weight > 0:
            totals = totals.merge(_leaf_totals(line, addon.weight))

    return ProductBreakdown(
        product=product,
        quantity=quantity,
        include_losses=include_losses,
        main=main,
        addons=tuple(addons),
        totals=totals,
    )


def _resolve_addon(
    product: ResolvedProduct,
    line: ResolvedProductLine,
    unit_flour_ref: Decimal,
    quantity: Decimal,
    include_losses: bool,
    strict: bool,
) -> AddonBreakdown:
    location = f"product '{product.name}'"
    if line.weight_in_grams is not None:
        unit_weight = as_decimal(line.weight_in_grams)
    elif line.ratio is not None:
        unit_weight = unit_flour_ref * as_decimal(line.ratio) / BAKERS_PERCENT_BASIS
    else:
        _degenerate(f"add-on '{line.label}' has neither ratio nor weight", location, strict)
        return AddonBreakdown(line=line, weight=ZERO)

    weight = unit_weight * quantity
    if line.ingredient is not None:
        return AddonBreakdown(line=line, weight=weight)

    extra_root = line.extra.root_component if line.extra else None
    if extra_root is None:
        _degenerate(f"missing extra recipe '{line.label}'", location, strict)
        return AddonBreakdown(line=line, weight=ZERO)

    sub = resolve_component(extra_root, weight, include_losses, strict, line.extra.family_name)
    return AddonBreakdown(line=line, weight=weight, sub=sub)


def flatten_product(
    product: ResolvedProduct,
    quantity: Decimal = ONE,
    include_losses: bool = False,
    strict: Optional[bool] = None,
) -> Dict[int, Decimal]:
    """Flatten a product into ingredient id -> grams for a quantity of units."""
    return dict(resolve_product(product, quantity, include_losses, strict).weights)
