"""
Recipe models for hierarchical bakery recipes.

This module contains:
- RecipeFamily: Named, versioned recipe definition (main recipe, pre-dough or extra)
- RecipeVersion: One revision of a family; exactly one is active at a time
- RecipeComponent: A processing stage (e.g. a dough) with loss settings
- ComponentIngredient: A line in a component - a base ingredient or a linked
  sub-recipe family
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import RecipeCategory, RecipeType


class RecipeFamily(BaseModel):
    """
    RecipeFamily model representing a named recipe and its versions.

    Attributes:
        tenant_id: Owning tenant
        name: Recipe name (unique per tenant among live families)
        recipe_type: MAIN, PRE_DOUGH or EXTRA
        category: BREAD, PASTRY, ... (tasks may not mix categories)
        output_ingredient_id: Optional SELF_MADE ingredient this recipe produces
        deleted_at: Soft-delete marker; a deleted family is "discontinued"
    """

    __tablename__ = "recipe_families"

    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    recipe_type = Column(String(20), nullable=False, default=RecipeType.MAIN.value)
    category = Column(String(20), nullable=False, default=RecipeCategory.BREAD.value)

    output_ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="SET NULL"), nullable=True
    )

    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    versions = relationship(
        "RecipeVersion",
        back_populates="family",
        cascade="all, delete-orphan",
        order_by="RecipeVersion.version",
    )
    output_ingredient = relationship("Ingredient", foreign_keys=[output_ingredient_id])

    __table_args__ = (
        Index("idx_recipe_family_tenant_name", "tenant_id", "name"),
    )

    @property
    def is_discontinued(self) -> bool:
        """True once the family has been soft-deleted."""
        return self.deleted_at is not None

    @property
    def active_version(self):
        """The active RecipeVersion, or None if the family has none."""
        for version in self.versions:
            if version.is_active:
                return version
        return None

    def __repr__(self) -> str:
        """String representation of recipe family."""
        return (
            f"RecipeFamily(id={self.id}, name='{self.name}', "
            f"type='{self.recipe_type}', category='{self.category}')"
        )


class RecipeVersion(BaseModel):
    """
    One revision of a recipe family.

    Attributes:
        family_id: Foreign key to RecipeFamily
        version: Sequential version number within the family
        is_active: Whether this is the family's live version
        notes: Free-form change notes
    """

    __tablename__ = "recipe_versions"

    family_id = Column(
        Integer, ForeignKey("recipe_families.id", ondelete="CASCADE"), nullable=False
    )
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    notes = Column(Text, nullable=True)

    # Relationships
    family = relationship("RecipeFamily", back_populates="versions")
    components = relationship(
        "RecipeComponent",
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="RecipeComponent.sort_order",
    )
    products = relationship("Product", back_populates="version")

    __table_args__ = (
        UniqueConstraint("family_id", "version", name="uq_recipe_version_family_version"),
        Index("idx_recipe_version_family", "family_id"),
    )

    def __repr__(self) -> str:
        """String representation of recipe version."""
        return (
            f"RecipeVersion(id={self.id}, family_id={self.family_id}, "
            f"version={self.version}, is_active={self.is_active})"
        )


class RecipeComponent(BaseModel):
    """
    A processing stage within a recipe version.

    The first component by sort_order is the version's root: the stage that
    a product's base dough weight (or a parent recipe's demand) targets.

    Attributes:
        version_id: Foreign key to RecipeVersion
        name: Stage name (e.g. "Main dough")
        loss_ratio: Fraction of input lost in processing, 0 <= r < 1
        division_loss: Grams lost per unit when portioning
        sort_order: Order within the version
    """

    __tablename__ = "recipe_components"

    version_id = Column(
        Integer, ForeignKey("recipe_versions.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(200), nullable=False)
    loss_ratio = Column(Numeric(8, 6), nullable=False, default=0)
    division_loss = Column(Numeric(12, 4), nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)

    # Relationships
    version = relationship("RecipeVersion", back_populates="components")
    ingredients = relationship(
        "ComponentIngredient",
        back_populates="component",
        cascade="all, delete-orphan",
        order_by="ComponentIngredient.sort_order",
    )

    __table_args__ = (
        CheckConstraint("division_loss >= 0", name="ck_recipe_component_division_loss"),
        Index("idx_recipe_component_version", "version_id", "sort_order"),
    )

    def __repr__(self) -> str:
        """String representation of recipe component."""
        return (
            f"RecipeComponent(id={self.id}, name='{self.name}', "
            f"loss_ratio={self.loss_ratio})"
        )


class ComponentIngredient(BaseModel):
    """
    A line within a component.

    Exactly one of ingredient_id / linked_family_id is set:
    - ingredient_id: leaf reference to a base Ingredient, scaled by ratio
    - linked_family_id: a PRE_DOUGH family (scaled by flour_ratio) or an
      EXTRA family (scaled by ratio)

    Attributes:
        component_id: Foreign key to RecipeComponent
        ingredient_id: Base ingredient (leaf lines)
        linked_family_id: Linked sub-recipe family
        ratio: Baker's percentage relative to the component's flour weight
        flour_ratio: Fraction of the parent's flour routed into a pre-dough
        sort_order: Display order within the component
    """

    __tablename__ = "component_ingredients"

    component_id = Column(
        Integer, ForeignKey("recipe_components.id", ondelete="CASCADE"), nullable=False
    )
    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=True
    )
    linked_family_id = Column(
        Integer, ForeignKey("recipe_families.id", ondelete="RESTRICT"), nullable=True
    )
    ratio = Column(Numeric(12, 6), nullable=True)
    flour_ratio = Column(Numeric(8, 6), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    # Relationships
    component = relationship("RecipeComponent", back_populates="ingredients")
    ingredient = relationship("Ingredient")
    linked_family = relationship("RecipeFamily", foreign_keys=[linked_family_id])

    __table_args__ = (
        CheckConstraint(
            "(ingredient_id IS NULL) != (linked_family_id IS NULL)",
            name="ck_component_ingredient_single_target",
        ),
        Index("idx_component_ingredient_component", "component_id"),
        Index("idx_component_ingredient_linked_family", "linked_family_id"),
    )

    def __repr__(self) -> str:
        """String representation of component ingredient."""
        return (
            f"ComponentIngredient(component_id={self.component_id}, "
            f"ingredient_id={self.ingredient_id}, linked_family_id={self.linked_family_id}, "
            f"ratio={self.ratio}, flour_ratio={self.flour_ratio})"
        )
