"""
Snapshot assembler - batched fetch and stitch of recipe trees.

Assembly runs in two phases:

1. Batch collection (breadth-first). Starting from the root version ids, each
   round issues ONE bulk fetch for every id discovered in the previous round
   and turns the rows into ShallowVersion nodes. Nested version ids that have
   not been seen are queued for the next round. Round trips are bounded by
   tree depth, and a sub-recipe shared by many parents is fetched once.

2. Stitching (depth-first, memoized). stitch_version() turns the flat
   id -> ShallowVersion map into ResolvedVersion trees. Finished nodes are
   memoized by id and shared between parents; the shallow map is never
   modified. The path of versions being resolved is passed down explicitly,
   and meeting an id already on the path raises RecipeCycleError.

References that cannot be followed (a linked family without an active
version, or a record outside the tenant) stitch to None; the resolver then
applies its degenerate-branch policy.
"""

from typing import Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, joinedload, selectinload

from src.models import (
    ComponentIngredient,
    Ingredient,
    Product,
    ProductIngredient,
    RecipeComponent,
    RecipeFamily,
    RecipeVersion,
)
from src.services.exceptions import RecipeCycleError
from src.services.logging_utils import get_service_logger, log_operation
from src.services.recipe_graph import (
    IngredientRef,
    ResolvedComponent,
    ResolvedLine,
    ResolvedProduct,
    ResolvedProductLine,
    ResolvedVersion,
    ShallowComponent,
    ShallowLine,
    ShallowProduct,
    ShallowProductLine,
    ShallowVersion,
    as_decimal,
)

logger = get_service_logger(__name__)


# ============================================================================
# Stitching (pure)
# ============================================================================


def stitch_version(
    version_id: int,
    shallow_map: Mapping[int, ShallowVersion],
    memo: Optional[MutableMapping[int, ResolvedVersion]] = None,
    path: Tuple[int, ...] = (),
) -> Optional[ResolvedVersion]:
    """
    Resolve one version id from a shallow map into a self-contained tree.

    Args:
        version_id: Version to resolve
        shallow_map: Flat map of fetched shallow nodes (not modified)
        memo: Cache of finished nodes, shared across calls of one assembly
        path: Version ids currently being resolved, root first

    Returns:
        The resolved version, or None if version_id was never fetched

    Raises:
        RecipeCycleError: If version_id is already on the resolution path
    """
    if memo is None:
        memo = {}

    if version_id in path:
        names = [_version_label(shallow_map, vid) for vid in path + (version_id,)]
        raise RecipeCycleError(names[path.index(version_id):])

    cached = memo.get(version_id)
    if cached is not None:
        return cached

    shallow = shallow_map.get(version_id)
    if shallow is None:
        return None

    child_path = path + (version_id,)
    components = tuple(
        ResolvedComponent(
            id=component.id,
            name=component.name,
            loss_ratio=component.loss_ratio,
            division_loss=component.division_loss,
            lines=tuple(
                _stitch_line(line, shallow_map, memo, child_path) for line in component.lines
            ),
        )
        for component in shallow.components
    )
    resolved = ResolvedVersion(
        id=shallow.id,
        family_id=shallow.family_id,
        family_name=shallow.family_name,
        recipe_type=shallow.recipe_type,
        category=shallow.category,
        version_number=shallow.version_number,
        output_ingredient_id=shallow.output_ingredient_id,
        components=components,
    )
    memo[version_id] = resolved
    return resolved


def _stitch_line(
    line: ShallowLine,
    shallow_map: Mapping[int, ShallowVersion],
    memo: MutableMapping[int, ResolvedVersion],
    path: Tuple[int, ...],
) -> ResolvedLine:
    sub_recipe = None
    if line.linked_version_id is not None:
        sub_recipe = stitch_version(line.linked_version_id, shallow_map, memo, path)
    return ResolvedLine(
        id=line.id,
        ratio=line.ratio,
        flour_ratio=line.flour_ratio,
        ingredient=line.ingredient,
        sub_recipe=sub_recipe,
        linked_family_id=line.linked_family_id,
        linked_family_name=line.linked_family_name,
    )


def stitch_product(
    product: ShallowProduct,
    shallow_map: Mapping[int, ShallowVersion],
    memo: Optional[MutableMapping[int, ResolvedVersion]] = None,
) -> ResolvedProduct:
    """Resolve a shallow product: its own version plus every linked extra."""
    if memo is None:
        memo = {}
    lines = tuple(
        ResolvedProductLine(
            id=line.id,
            line_type=line.line_type,
            ratio=line.ratio,
            weight_in_grams=line.weight_in_grams,
            ingredient=line.ingredient,
            extra=(
                stitch_version(line.linked_version_id, shallow_map, memo)
                if line.linked_version_id is not None
                else None
            ),
            linked_family_id=line.linked_family_id,
            linked_family_name=line.linked_family_name,
        )
        for line in product.lines
    )
    return ResolvedProduct(
        id=product.id,
        name=product.name,
        base_dough_weight=product.base_dough_weight,
        version=stitch_version(product.version_id, shallow_map, memo),
        lines=lines,
    )


def _version_label(shallow_map: Mapping[int, ShallowVersion], version_id: int) -> str:
    shallow = shallow_map.get(version_id)
    if shallow is None:
        return f"version {version_id}"
    return f"{shallow.family_name} v{shallow.version_number}"


# ============================================================================
# Batched collection
# ============================================================================


class SnapshotAssembler:
    """
    Fetches and stitches recipe trees for one tenant.

    round_trips counts bulk fetches issued by this assembler; collecting a
    tree costs one fetch per tree level, not one per node.

    Example:
        >>> assembler = SnapshotAssembler(session, "tenant-1")
        >>> products = assembler.assemble_products([12, 15])
        >>> assembler.round_trips
        3
    """

    def __init__(self, session: Session, tenant_id: str):
        self.session = session
        self.tenant_id = tenant_id
        self.round_trips = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def collect_shallow_versions(self, root_ids: Iterable[int]) -> Dict[int, ShallowVersion]:
        """
        Breadth-first bulk collection of every version reachable from root_ids.

        Returns:
            Flat map version id -> ShallowVersion; ids that do not exist or
            belong to another tenant are absent
        """
        shallow_map: Dict[int, ShallowVersion] = {}
        discovered = set()
        batch: List[int] = []
        for version_id in root_ids:
            if version_id is not None and version_id not in discovered:
                discovered.add(version_id)
                batch.append(version_id)

        while batch:
            fetched = self._fetch_versions(batch)
            next_batch: List[int] = []
            for shallow in fetched:
                shallow_map[shallow.id] = shallow
                for nested_id in shallow.nested_version_ids():
                    if nested_id not in discovered:
                        discovered.add(nested_id)
                        next_batch.append(nested_id)
            batch = next_batch

        return shallow_map

    def assemble_versions(self, version_ids: Sequence[int]) -> Dict[int, ResolvedVersion]:
        """Resolve recipe versions by id; unknown ids are omitted."""
        shallow_map = self.collect_shallow_versions(version_ids)
        memo: Dict[int, ResolvedVersion] = {}
        resolved = {}
        for version_id in version_ids:
            version = stitch_version(version_id, shallow_map, memo)
            if version is not None:
                resolved[version_id] = version
        return resolved

    def assemble_products(self, product_ids: Sequence[int]) -> Dict[int, ResolvedProduct]:
        """
        Resolve products by id, with their recipe versions and linked extras.

        Returns:
            Map product id -> ResolvedProduct; unknown or foreign ids are omitted

        Raises:
            RecipeCycleError: If any reachable recipe refers back to itself
        """
        shallow_products = self._fetch_products(product_ids)

        root_ids: List[int] = []
        for product in shallow_products:
            root_ids.extend(product.root_version_ids())
        shallow_map = self.collect_shallow_versions(root_ids)

        memo: Dict[int, ResolvedVersion] = {}
        resolved = {
            product.id: stitch_product(product, shallow_map, memo)
            for product in shallow_products
        }

        log_operation(
            logger,
            operation="assemble_products",
            outcome="success",
            tenant_id=self.tenant_id,
            product_count=len(resolved),
            node_count=len(shallow_map),
            round_trips=self.round_trips,
        )
        return resolved

    def assemble_product(self, product_id: int) -> Optional[ResolvedProduct]:
        return self.assemble_products([product_id]).get(product_id)

    # ------------------------------------------------------------------
    # Bulk fetches
    # ------------------------------------------------------------------

    def _fetch_versions(self, version_ids: Sequence[int]) -> List[ShallowVersion]:
        self.round_trips += 1
        versions = (
            self.session.query(RecipeVersion)
            .join(RecipeFamily, RecipeVersion.family_id == RecipeFamily.id)
            .filter(RecipeVersion.id.in_(list(version_ids)))
            .filter(RecipeFamily.tenant_id == self.tenant_id)
            .options(
                joinedload(RecipeVersion.family),
                selectinload(RecipeVersion.components)
                .selectinload(RecipeComponent.ingredients)
                .joinedload(ComponentIngredient.ingredient),
                selectinload(RecipeVersion.components)
                .selectinload(RecipeComponent.ingredients)
                .joinedload(ComponentIngredient.linked_family)
                .selectinload(RecipeFamily.versions),
            )
            .all()
        )
        return [self._to_shallow_version(version) for version in versions]

    def _fetch_products(self, product_ids: Sequence[int]) -> List[ShallowProduct]:
        self.round_trips += 1
        products = (
            self.session.query(Product)
            .join(RecipeVersion, Product.version_id == RecipeVersion.id)
            .join(RecipeFamily, RecipeVersion.family_id == RecipeFamily.id)
            .filter(Product.id.in_(list(product_ids)))
            .filter(RecipeFamily.tenant_id == self.tenant_id)
            .options(
                selectinload(Product.ingredients).joinedload(ProductIngredient.ingredient),
                selectinload(Product.ingredients)
                .joinedload(ProductIngredient.linked_extra)
                .selectinload(RecipeFamily.versions),
            )
            .all()
        )
        return [self._to_shallow_product(product) for product in products]

    # ------------------------------------------------------------------
    # ORM -> shallow conversion
    # ------------------------------------------------------------------

    def _ingredient_ref(self, ingredient: Optional[Ingredient]) -> Optional[IngredientRef]:
        if ingredient is None or ingredient.tenant_id != self.tenant_id:
            return None
        return IngredientRef(
            id=ingredient.id,
            name=ingredient.name,
            is_flour=bool(ingredient.is_flour),
            water_content=as_decimal(ingredient.water_content),
            ingredient_type=ingredient.ingredient_type,
        )

    def _linked_version_id(self, family: Optional[RecipeFamily]) -> Optional[int]:
        if family is None or family.tenant_id != self.tenant_id:
            return None
        active = family.active_version
        return active.id if active is not None else None

    def _to_shallow_version(self, version: RecipeVersion) -> ShallowVersion:
        family = version.family
        components = tuple(
            ShallowComponent(
                id=component.id,
                name=component.name,
                loss_ratio=as_decimal(component.loss_ratio),
                division_loss=as_decimal(component.division_loss),
                lines=tuple(
                    ShallowLine(
                        id=line.id,
                        ratio=as_decimal(line.ratio, None),
                        flour_ratio=as_decimal(line.flour_ratio, None),
                        ingredient=self._ingredient_ref(line.ingredient),
                        linked_family_id=line.linked_family_id,
                        linked_family_name=(
                            line.linked_family.name if line.linked_family is not None else None
                        ),
                        linked_version_id=self._linked_version_id(line.linked_family),
                    )
                    for line in component.ingredients
                ),
            )
            for component in version.components
        )
        return ShallowVersion(
            id=version.id,
            family_id=family.id,
            family_name=family.name,
            recipe_type=family.recipe_type,
            category=family.category,
            version_number=version.version,
            output_ingredient_id=family.output_ingredient_id,
            components=components,
        )

    def _to_shallow_product(self, product: Product) -> ShallowProduct:
        lines = tuple(
            ShallowProductLine(
                id=line.id,
                line_type=line.line_type,
                ratio=as_decimal(line.ratio, None),
                weight_in_grams=as_decimal(line.weight_in_grams, None),
                ingredient=self._ingredient_ref(line.ingredient),
                linked_family_id=line.linked_extra_id,
                linked_family_name=(
                    line.linked_extra.name if line.linked_extra is not None else None
                ),
                linked_version_id=self._linked_version_id(line.linked_extra),
            )
            for line in product.ingredients
        )
        return ShallowProduct(
            id=product.id,
            name=product.name,
            base_dough_weight=as_decimal(product.base_dough_weight),
            version_id=product.version_id,
            lines=lines,
        )
