"""
Production task models.

This module contains:
- ProductionTask: An order to produce products on or between dates
- ProductionTaskItem: A (product, quantity) line of a task
"""

from datetime import date

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
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
from .enums import ProductionTaskStatus


class ProductionTask(BaseModel):
    """
    ProductionTask model.

    Attributes:
        tenant_id: Owning tenant
        status: PENDING, IN_PROGRESS, COMPLETED or CANCELLED
        start_date: First day the task is active
        end_date: Last day the task is active (None = start_date only)
        notes: Free-form notes
        deleted_at: Soft-delete marker
    """

    __tablename__ = "production_tasks"

    tenant_id = Column(String(36), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ProductionTaskStatus.PENDING.value)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    items = relationship(
        "ProductionTaskItem",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="ProductionTaskItem.id",
    )
    snapshot = relationship(
        "RecipeSnapshot",
        back_populates="task",
        uselist=False,
        cascade="all, delete-orphan",
    )
    log = relationship("ProductionLog", back_populates="task", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date", name="ck_production_task_date_window"
        ),
        Index("idx_production_task_tenant_dates", "tenant_id", "start_date", "end_date"),
    )

    @property
    def status_enum(self) -> ProductionTaskStatus:
        """Status as an enum member."""
        return ProductionTaskStatus(self.status)

    def is_active_on(self, target_date: date) -> bool:
        """Whether target_date falls inside the task's date window."""
        last_day = self.end_date or self.start_date
        return self.start_date <= target_date <= last_day

    def __repr__(self) -> str:
        """String representation of production task."""
        return (
            f"ProductionTask(id={self.id}, status='{self.status}', "
            f"start_date={self.start_date}, end_date={self.end_date})"
        )


class ProductionTaskItem(BaseModel):
    """
    A product line of a production task.

    Attributes:
        task_id: Foreign key to ProductionTask
        product_id: Foreign key to Product
        quantity: Planned number of units
    """

    __tablename__ = "production_task_items"

    task_id = Column(
        Integer, ForeignKey("production_tasks.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Numeric(12, 3), nullable=False)

    # Relationships
    task = relationship("ProductionTask", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_production_task_item_quantity_positive"),
        Index("idx_production_task_item_task", "task_id"),
    )

    def __repr__(self) -> str:
        """String representation of production task item."""
        return (
            f"ProductionTaskItem(task_id={self.task_id}, product_id={self.product_id}, "
            f"quantity={self.quantity})"
        )
