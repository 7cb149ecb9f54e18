"""
Production log models, created once when a production task completes.

This module contains:
- ProductionLog: One row per completed task
- IngredientConsumptionLog: Ingredient consumed by successfully produced units
- ProductionSpoilageLog: Units reported as spoiled, per stage
- ProductionOverproductionLog: Units completed beyond the planned quantity

All rows are append-only; they are never edited after creation.
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
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from src.utils.datetime_utils import utc_now


class ProductionLog(BaseModel):
    """
    Completion record of a production task.

    Attributes:
        task_id: FK to the production task (UNIQUE - completed once)
        completed_at: When the task was completed
        notes: Completion notes
    """

    __tablename__ = "production_logs"

    task_id = Column(
        Integer,
        ForeignKey("production_tasks.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    completed_at = Column(DateTime, nullable=False, default=utc_now)
    notes = Column(Text, nullable=True)

    # Relationships
    task = relationship("ProductionTask", back_populates="log")
    consumption_logs = relationship(
        "IngredientConsumptionLog", back_populates="production_log", cascade="all, delete-orphan"
    )
    spoilage_logs = relationship(
        "ProductionSpoilageLog", back_populates="production_log", cascade="all, delete-orphan"
    )
    overproduction_logs = relationship(
        "ProductionOverproductionLog",
        back_populates="production_log",
        cascade="all, delete-orphan",
    )
    stock_adjustments = relationship("IngredientStockAdjustment", back_populates="production_log")

    def __repr__(self) -> str:
        """String representation of production log."""
        return f"ProductionLog(id={self.id}, task_id={self.task_id})"


class IngredientConsumptionLog(BaseModel):
    """
    Ingredient consumed by the successfully produced units of a task.

    Attributes:
        production_log_id: FK to ProductionLog
        ingredient_id: FK to Ingredient
        quantity_in_grams: Grams consumed
        total_cost: Value at the moving-average cost when posted
    """

    __tablename__ = "ingredient_consumption_logs"

    production_log_id = Column(
        Integer, ForeignKey("production_logs.id", ondelete="CASCADE"), nullable=False
    )
    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_in_grams = Column(Numeric(14, 4), nullable=False)
    total_cost = Column(Numeric(14, 4), nullable=False, default=0)

    # Relationships
    production_log = relationship("ProductionLog", back_populates="consumption_logs")
    ingredient = relationship("Ingredient")

    __table_args__ = (
        CheckConstraint("quantity_in_grams > 0", name="ck_consumption_log_quantity_positive"),
        Index("idx_consumption_log_production_log", "production_log_id"),
        Index("idx_consumption_log_ingredient", "ingredient_id"),
    )

    def __repr__(self) -> str:
        """String representation of consumption log."""
        return (
            f"IngredientConsumptionLog(ingredient_id={self.ingredient_id}, "
            f"quantity_in_grams={self.quantity_in_grams})"
        )


class ProductionSpoilageLog(BaseModel):
    """
    Units of a product spoiled at a given stage.

    product_name is denormalized so the record survives product renames.
    """

    __tablename__ = "production_spoilage_logs"

    production_log_id = Column(
        Integer, ForeignKey("production_logs.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String(200), nullable=False)
    stage = Column(String(100), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    notes = Column(Text, nullable=True)

    # Relationships
    production_log = relationship("ProductionLog", back_populates="spoilage_logs")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_spoilage_log_quantity_positive"),
    )


class ProductionOverproductionLog(BaseModel):
    """Units of a product completed beyond the planned quantity."""

    __tablename__ = "production_overproduction_logs"

    production_log_id = Column(
        Integer, ForeignKey("production_logs.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)

    # Relationships
    production_log = relationship("ProductionLog", back_populates="overproduction_logs")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_overproduction_log_quantity_positive"),
    )
