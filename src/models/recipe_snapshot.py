"""
RecipeSnapshot model for capturing the resolved recipe tree of a production task.

A snapshot stores the fully resolved recipe tree of every product in a task
at the moment the task is created, so later edits to the live recipes cannot
change the task's economics. Snapshots are never updated: the ORM refuses
any UPDATE of an existing row.
"""

import json

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from src.utils.datetime_utils import utc_now


class RecipeSnapshot(BaseModel):
    """
    Immutable snapshot of the resolved recipe trees of a production task.

    Attributes:
        task_id: FK to the production task (UNIQUE - one snapshot per task)
        schema_version: Version of the serialized snapshot_data shape
        snapshot_date: When the snapshot was captured
        snapshot_data: JSON document produced by recipe_snapshot_service

    Note:
        - JSON is stored as Text for SQLite compatibility
        - Decoding goes through recipe_snapshot_service.decode_snapshot(),
          which validates the shape and migrates older schema versions
    """

    __tablename__ = "recipe_snapshots"

    task_id = Column(
        Integer,
        ForeignKey("production_tasks.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    schema_version = Column(Integer, nullable=False)
    snapshot_date = Column(DateTime, nullable=False, default=utc_now)
    snapshot_data = Column(Text, nullable=False)

    # Relationships
    task = relationship("ProductionTask", back_populates="snapshot")

    __table_args__ = (
        Index("idx_recipe_snapshot_task", "task_id"),
    )

    def get_raw_data(self) -> dict:
        """
        Parse the stored JSON without validating its shape.

        Raises:
            json.JSONDecodeError: If the stored text is not JSON
        """
        return json.loads(self.snapshot_data)

    def __repr__(self) -> str:
        """String representation of recipe snapshot."""
        return (
            f"RecipeSnapshot(id={self.id}, task_id={self.task_id}, "
            f"schema_version={self.schema_version})"
        )


@event.listens_for(RecipeSnapshot, "before_update")
def _refuse_snapshot_update(mapper, connection, target):
    """Snapshots are write-once; any changed column is refused."""
    state = inspect(target)
    changed = [
        attr.key for attr in mapper.column_attrs if state.attrs[attr.key].history.has_changes()
    ]
    if not changed:
        return

    # Import here to avoid circular import
    from src.services.exceptions import SnapshotImmutableError

    raise SnapshotImmutableError(target.task_id)
