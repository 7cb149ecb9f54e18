"""
Product models for sellable bakery items.

This module contains:
- Product: A sellable item bound to one recipe version and a base dough weight
- ProductIngredient: Product-level add-on lines (mix-ins, fillings, toppings)
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import ProductIngredientType


class Product(BaseModel):
    """
    Product model representing a sellable item.

    Tenant scope comes from the recipe version's family.

    Attributes:
        version_id: Foreign key to the RecipeVersion the product is made from
        name: Product name
        base_dough_weight: Grams of the main component per unit
        deleted_at: Soft-delete marker
    """

    __tablename__ = "products"

    version_id = Column(
        Integer, ForeignKey("recipe_versions.id", ondelete="RESTRICT"), nullable=False
    )
    name = Column(String(200), nullable=False)
    base_dough_weight = Column(Numeric(12, 4), nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    version = relationship("RecipeVersion", back_populates="products")
    ingredients = relationship(
        "ProductIngredient",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductIngredient.id",
    )

    __table_args__ = (
        CheckConstraint("base_dough_weight > 0", name="ck_product_base_dough_weight_positive"),
        Index("idx_product_version", "version_id"),
    )

    def __repr__(self) -> str:
        """String representation of product."""
        return (
            f"Product(id={self.id}, name='{self.name}', "
            f"base_dough_weight={self.base_dough_weight})"
        )


class ProductIngredient(BaseModel):
    """
    Product-level add-on line.

    Exactly one of ingredient_id / linked_extra_id is set. MIX_IN lines are
    usually given as a ratio (percentage of the main dough's flour weight);
    fillings and toppings as an absolute weight per unit.

    Attributes:
        product_id: Foreign key to Product
        line_type: MIX_IN, FILLING or TOPPING
        ingredient_id: Base ingredient
        linked_extra_id: EXTRA recipe family
        ratio: Percentage of the main component's flour weight
        weight_in_grams: Absolute grams per unit
    """

    __tablename__ = "product_ingredients"

    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    line_type = Column(String(20), nullable=False, default=ProductIngredientType.MIX_IN.value)
    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=True
    )
    linked_extra_id = Column(
        Integer, ForeignKey("recipe_families.id", ondelete="RESTRICT"), nullable=True
    )
    ratio = Column(Numeric(12, 6), nullable=True)
    weight_in_grams = Column(Numeric(12, 4), nullable=True)

    # Relationships
    product = relationship("Product", back_populates="ingredients")
    ingredient = relationship("Ingredient")
    linked_extra = relationship("RecipeFamily", foreign_keys=[linked_extra_id])

    __table_args__ = (
        CheckConstraint(
            "(ingredient_id IS NULL) != (linked_extra_id IS NULL)",
            name="ck_product_ingredient_single_target",
        ),
        Index("idx_product_ingredient_product", "product_id"),
    )

    def __repr__(self) -> str:
        """String representation of product ingredient."""
        return (
            f"ProductIngredient(product_id={self.product_id}, type='{self.line_type}', "
            f"ingredient_id={self.ingredient_id}, linked_extra_id={self.linked_extra_id})"
        )
