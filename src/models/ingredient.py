"""
Ingredient ledger models.

This module contains:
- Ingredient: Base ingredient master record with moving-average stock valuation
- ProcurementRecord: Purchase history (price, package weight, date)
- IngredientStockAdjustment: Append-only stock movements with audit reasons
"""

from decimal import Decimal

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
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import IngredientType
from src.utils.datetime_utils import utc_now


class Ingredient(BaseModel):
    """
    Ingredient model representing a base ingredient in the ledger.

    Stock is valued with a moving weighted average: the unit cost per gram is
    current_stock_value / current_stock_in_grams.

    Attributes:
        tenant_id: Owning tenant
        name: Ingredient name
        ingredient_type: STANDARD, NON_INVENTORIED or SELF_MADE
        is_flour: Counts toward flour weight (hydration, labeling)
        water_content: Fraction of the ingredient that is water (0-1)
        current_stock_in_grams: Stock on hand
        current_stock_value: Money value of the stock on hand
        deleted_at: Soft-delete marker
    """

    __tablename__ = "ingredients"

    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    ingredient_type = Column(String(20), nullable=False, default=IngredientType.STANDARD.value)
    is_flour = Column(Boolean, nullable=False, default=False)
    water_content = Column(Numeric(6, 4), nullable=False, default=0)

    current_stock_in_grams = Column(Numeric(14, 4), nullable=False, default=0)
    current_stock_value = Column(Numeric(14, 4), nullable=False, default=0)

    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    procurements = relationship(
        "ProcurementRecord",
        back_populates="ingredient",
        cascade="all, delete-orphan",
        order_by="ProcurementRecord.purchase_date",
    )
    stock_adjustments = relationship(
        "IngredientStockAdjustment",
        back_populates="ingredient",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "water_content >= 0 AND water_content <= 1", name="ck_ingredient_water_content"
        ),
        Index("idx_ingredient_tenant_name", "tenant_id", "name"),
    )

    @property
    def type_enum(self) -> IngredientType:
        """Inventory-tracking class as an enum member."""
        return IngredientType(self.ingredient_type)

    @property
    def is_tracked(self) -> bool:
        """Whether stock is maintained for this ingredient."""
        return self.type_enum.is_tracked

    @property
    def unit_cost_per_gram(self) -> Decimal:
        """
        Moving weighted-average cost per gram.

        Returns:
            Stock value / stock grams, or 0 when there is no stock to divide by
        """
        grams = Decimal(str(self.current_stock_in_grams or 0))
        if grams <= 0:
            return Decimal("0")
        return Decimal(str(self.current_stock_value or 0)) / grams

    def __repr__(self) -> str:
        """String representation of ingredient."""
        return (
            f"Ingredient(id={self.id}, name='{self.name}', type='{self.ingredient_type}', "
            f"stock={self.current_stock_in_grams})"
        )


class ProcurementRecord(BaseModel):
    """
    A purchase of an ingredient.

    Attributes:
        ingredient_id: Foreign key to Ingredient
        packages_purchased: Number of packages bought
        price_per_package: Money paid per package
        package_weight_in_grams: Grams per package
        purchase_date: When the purchase happened
    """

    __tablename__ = "procurement_records"

    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="CASCADE"), nullable=False
    )
    packages_purchased = Column(Integer, nullable=False)
    price_per_package = Column(Numeric(12, 4), nullable=False)
    package_weight_in_grams = Column(Numeric(12, 4), nullable=False)
    purchase_date = Column(DateTime, nullable=False, default=utc_now)

    # Relationships
    ingredient = relationship("Ingredient", back_populates="procurements")

    __table_args__ = (
        CheckConstraint("packages_purchased > 0", name="ck_procurement_packages_positive"),
        CheckConstraint("package_weight_in_grams > 0", name="ck_procurement_weight_positive"),
        CheckConstraint("price_per_package >= 0", name="ck_procurement_price_non_negative"),
        Index("idx_procurement_ingredient_date", "ingredient_id", "purchase_date"),
    )

    @property
    def price_per_gram(self) -> Decimal:
        """Purchase price per gram for this record."""
        return Decimal(str(self.price_per_package)) / Decimal(str(self.package_weight_in_grams))

    def __repr__(self) -> str:
        """String representation of procurement record."""
        return (
            f"ProcurementRecord(id={self.id}, ingredient_id={self.ingredient_id}, "
            f"packages={self.packages_purchased}, price={self.price_per_package})"
        )


class IngredientStockAdjustment(BaseModel):
    """
    Append-only stock movement.

    Used for manual corrections, spoilage and process-loss postings. The
    reason string references the originating production task where relevant.

    Attributes:
        ingredient_id: Foreign key to Ingredient
        production_log_id: Production log that caused the movement, if any
        change_in_grams: Signed stock change (negative = deduction)
        reason: Audit reason
    """

    __tablename__ = "ingredient_stock_adjustments"

    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="CASCADE"), nullable=False
    )
    production_log_id = Column(
        Integer, ForeignKey("production_logs.id", ondelete="SET NULL"), nullable=True
    )
    change_in_grams = Column(Numeric(14, 4), nullable=False)
    reason = Column(Text, nullable=True)

    # Relationships
    ingredient = relationship("Ingredient", back_populates="stock_adjustments")
    production_log = relationship("ProductionLog", back_populates="stock_adjustments")

    __table_args__ = (
        Index("idx_stock_adjustment_ingredient", "ingredient_id"),
    )

    def __repr__(self) -> str:
        """String representation of stock adjustment."""
        return (
            f"IngredientStockAdjustment(ingredient_id={self.ingredient_id}, "
            f"change={self.change_in_grams}, reason='{self.reason}')"
        )
