"""
Recipe graph node types.

A recipe tree exists in two shapes, kept as distinct types:

- Shallow nodes (ShallowVersion, ShallowProduct): exactly what one bulk
  fetch returns. A node carries its own components and ingredient lines, but
  nested recipes are referenced only by version id.
- Resolved nodes (ResolvedVersion, ResolvedProduct): fully stitched,
  self-contained subtrees. A resolved line holds its sub-recipe as another
  ResolvedVersion, never as an id.

snapshot_assembler converts shallow maps into resolved trees; everything that
computes weights or costs takes resolved nodes only. All node types are
frozen dataclasses, so a resolved tree can be shared between parents without
copying and cannot be edited after stitching. Resolved nodes serialize to
plain JSON-safe dicts for recipe snapshots.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from src.models.enums import IngredientType

ZERO = Decimal("0")


def as_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """Convert a numeric value (or its string form) to Decimal; None maps to default."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _dec_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


# ============================================================================
# Ingredient references
# ============================================================================


@dataclass(frozen=True)
class IngredientRef:
    """The recipe-relevant attributes of a base ingredient."""

    id: int
    name: str
    is_flour: bool = False
    water_content: Decimal = ZERO
    ingredient_type: str = IngredientType.STANDARD.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_flour": self.is_flour,
            "water_content": str(self.water_content),
            "ingredient_type": self.ingredient_type,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IngredientRef":
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            is_flour=bool(data.get("is_flour", False)),
            water_content=as_decimal(data.get("water_content")),
            ingredient_type=IngredientType(
                data.get("ingredient_type", IngredientType.STANDARD.value)
            ).value,
        )


# ============================================================================
# Shallow nodes
# ============================================================================


@dataclass(frozen=True)
class ShallowLine:
    """A component line as fetched; a linked recipe is known only by version id."""

    id: int
    ratio: Optional[Decimal] = None
    flour_ratio: Optional[Decimal] = None
    ingredient: Optional[IngredientRef] = None
    linked_family_id: Optional[int] = None
    linked_family_name: Optional[str] = None
    linked_version_id: Optional[int] = None


@dataclass(frozen=True)
class ShallowComponent:
    id: int
    name: str
    loss_ratio: Decimal = ZERO
    division_loss: Decimal = ZERO
    lines: Tuple[ShallowLine, ...] = ()


@dataclass(frozen=True)
class ShallowVersion:
    """One recipe version exactly as a bulk fetch returns it."""

    id: int
    family_id: int
    family_name: str
    recipe_type: str
    category: str
    version_number: int = 1
    output_ingredient_id: Optional[int] = None
    components: Tuple[ShallowComponent, ...] = ()

    def nested_version_ids(self) -> Tuple[int, ...]:
        """Ids of directly referenced sub-recipe versions, in line order."""
        return tuple(
            line.linked_version_id
            for component in self.components
            for line in component.lines
            if line.linked_version_id is not None
        )


@dataclass(frozen=True)
class ShallowProductLine:
    id: int
    line_type: str
    ratio: Optional[Decimal] = None
    weight_in_grams: Optional[Decimal] = None
    ingredient: Optional[IngredientRef] = None
    linked_family_id: Optional[int] = None
    linked_family_name: Optional[str] = None
    linked_version_id: Optional[int] = None


@dataclass(frozen=True)
class ShallowProduct:
    id: int
    name: str
    base_dough_weight: Decimal
    version_id: int
    lines: Tuple[ShallowProductLine, ...] = ()

    def root_version_ids(self) -> Tuple[int, ...]:
        """The product's own recipe version plus its one-hop linked extras."""
        extras = tuple(
            line.linked_version_id for line in self.lines if line.linked_version_id is not None
        )
        return (self.version_id,) + extras


# ============================================================================
# Resolved nodes
# ============================================================================


@dataclass(frozen=True)
class ResolvedLine:
    """
    A component line with its sub-recipe stitched in.

    Exactly one of the following holds:
    - ingredient is set: a leaf line scaled by ratio
    - linked_family_id is set: a sub-recipe line; flour_ratio set means
      pre-dough scaling, otherwise extra scaling by ratio. sub_recipe is None
      when the linked recipe could not be found (dangling reference).
    """

    id: int
    ratio: Optional[Decimal] = None
    flour_ratio: Optional[Decimal] = None
    ingredient: Optional[IngredientRef] = None
    sub_recipe: Optional["ResolvedVersion"] = None
    linked_family_id: Optional[int] = None
    linked_family_name: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return self.linked_family_id is None

    @property
    def scales_by_flour(self) -> bool:
        """Pre-dough lines route a fraction of the parent's flour."""
        return not self.is_leaf and self.flour_ratio is not None

    @property
    def label(self) -> str:
        if self.ingredient is not None:
            return self.ingredient.name
        if self.linked_family_name:
            return self.linked_family_name
        return f"line {self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ratio": _dec_str(self.ratio),
            "flour_ratio": _dec_str(self.flour_ratio),
            "ingredient": self.ingredient.to_dict() if self.ingredient else None,
            "sub_recipe": self.sub_recipe.to_dict() if self.sub_recipe else None,
            "linked_family_id": self.linked_family_id,
            "linked_family_name": self.linked_family_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolvedLine":
        ingredient = data.get("ingredient")
        sub_recipe = data.get("sub_recipe")
        return cls(
            id=int(data["id"]),
            ratio=as_decimal(data.get("ratio"), None),
            flour_ratio=as_decimal(data.get("flour_ratio"), None),
            ingredient=IngredientRef.from_dict(ingredient) if ingredient else None,
            sub_recipe=ResolvedVersion.from_dict(sub_recipe) if sub_recipe else None,
            linked_family_id=data.get("linked_family_id"),
            linked_family_name=data.get("linked_family_name"),
        )


@dataclass(frozen=True)
class ResolvedComponent:
    id: int
    name: str
    loss_ratio: Decimal = ZERO
    division_loss: Decimal = ZERO
    lines: Tuple[ResolvedLine, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "loss_ratio": str(self.loss_ratio),
            "division_loss": str(self.division_loss),
            "lines": [line.to_dict() for line in self.lines],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolvedComponent":
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            loss_ratio=as_decimal(data.get("loss_ratio")),
            division_loss=as_decimal(data.get("division_loss")),
            lines=tuple(ResolvedLine.from_dict(line) for line in data.get("lines", [])),
        )


@dataclass(frozen=True)
class ResolvedVersion:
    """A recipe version with every sub-recipe stitched in."""

    id: int
    family_id: int
    family_name: str
    recipe_type: str
    category: str
    version_number: int = 1
    output_ingredient_id: Optional[int] = None
    components: Tuple[ResolvedComponent, ...] = ()

    @property
    def root_component(self) -> Optional[ResolvedComponent]:
        """The first component; the stage that demand is placed on."""
        return self.components[0] if self.components else None

    def iter_lines(self) -> Iterator[ResolvedLine]:
        """All lines of this version and its sub-recipes, depth first."""
        for component in self.components:
            for line in component.lines:
                yield line
                if line.sub_recipe is not None:
                    yield from line.sub_recipe.iter_lines()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "family_id": self.family_id,
            "family_name": self.family_name,
            "recipe_type": self.recipe_type,
            "category": self.category,
            "version_number": self.version_number,
            "output_ingredient_id": self.output_ingredient_id,
            "components": [component.to_dict() for component in self.components],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolvedVersion":
        return cls(
            id=int(data["id"]),
            family_id=int(data["family_id"]),
            family_name=str(data["family_name"]),
            recipe_type=str(data["recipe_type"]),
            category=str(data["category"]),
            version_number=int(data.get("version_number", 1)),
            output_ingredient_id=data.get("output_ingredient_id"),
            components=tuple(
                ResolvedComponent.from_dict(component) for component in data.get("components", [])
            ),
        )


@dataclass(frozen=True)
class ResolvedProductLine:
    """A product add-on line; extra holds the stitched EXTRA recipe when linked."""

    id: int
    line_type: str
    ratio: Optional[Decimal] = None
    weight_in_grams: Optional[Decimal] = None
    ingredient: Optional[IngredientRef] = None
    extra: Optional[ResolvedVersion] = None
    linked_family_id: Optional[int] = None
    linked_family_name: Optional[str] = None

    @property
    def label(self) -> str:
        if self.ingredient is not None:
            return self.ingredient.name
        return self.linked_family_name or f"line {self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "line_type": self.line_type,
            "ratio": _dec_str(self.ratio),
            "weight_in_grams": _dec_str(self.weight_in_grams),
            "ingredient": self.ingredient.to_dict() if self.ingredient else None,
            "extra": self.extra.to_dict() if self.extra else None,
            "linked_family_id": self.linked_family_id,
            "linked_family_name": self.linked_family_name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolvedProductLine":
        ingredient = data.get("ingredient")
        extra = data.get("extra")
        return cls(
            id=int(data["id"]),
            line_type=str(data["line_type"]),
            ratio=as_decimal(data.get("ratio"), None),
            weight_in_grams=as_decimal(data.get("weight_in_grams"), None),
            ingredient=IngredientRef.from_dict(ingredient) if ingredient else None,
            extra=ResolvedVersion.from_dict(extra) if extra else None,
            linked_family_id=data.get("linked_family_id"),
            linked_family_name=data.get("linked_family_name"),
        )


@dataclass(frozen=True)
class ResolvedProduct:
    """A product with its recipe version and add-on extras fully stitched."""

    id: int
    name: str
    base_dough_weight: Decimal
    version: Optional[ResolvedVersion] = None
    lines: Tuple[ResolvedProductLine, ...] = field(default_factory=tuple)

    @property
    def category(self) -> Optional[str]:
        return self.version.category if self.version else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "base_dough_weight": str(self.base_dough_weight),
            "version": self.version.to_dict() if self.version else None,
            "lines": [line.to_dict() for line in self.lines],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolvedProduct":
        version = data.get("version")
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            base_dough_weight=as_decimal(data["base_dough_weight"]),
            version=ResolvedVersion.from_dict(version) if version else None,
            lines=tuple(ResolvedProductLine.from_dict(line) for line in data.get("lines", [])),
        )


def collect_ingredient_refs(product: ResolvedProduct) -> Dict[int, IngredientRef]:
    """Every base ingredient referenced anywhere in a product's tree, keyed by id."""
    refs: Dict[int, IngredientRef] = {}

    def _from_version(version: Optional[ResolvedVersion]) -> None:
        if version is None:
            return
        for line in version.iter_lines():
            if line.ingredient is not None:
                refs.setdefault(line.ingredient.id, line.ingredient)

    _from_version(product.version)
    for line in product.lines:
        if line.ingredient is not None:
            refs.setdefault(line.ingredient.id, line.ingredient)
        _from_version(line.extra)
    return refs
