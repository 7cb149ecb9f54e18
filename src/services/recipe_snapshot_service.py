"""
Recipe Snapshot Service - immutable resolved recipe trees for production tasks.

A production task's snapshot is captured when the task is created (or, for a
task that predates snapshots, on first read) and never changes afterwards.
NO UPDATE METHODS: a PENDING task whose items are edited gets its snapshot
deleted and captured again; every other status keeps its snapshot.

Stored format (schema version 2):

    {
      "schema_version": 2,
      "captured_at": "2026-03-01T05:30:00+00:00",
      "task_id": 17,
      "products": [<ResolvedProduct.to_dict()>, ...]
    }

Schema version 1 (the legacy shape) is an untagged object keyed by product
id. decode_snapshot() validates the stored JSON and migrates older versions
step by step; any failure is reported as SnapshotDecodeError.

Session Management Pattern:
- All public functions accept session=None parameter
- If session provided, use it directly
- If session is None, create a new session via session_scope()
"""

import json
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from decimal import InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Union

from sqlalchemy.orm import Session

from src.models import ProductionTask, ProductionTaskStatus, RecipeSnapshot
from src.services.database import session_scope
from src.services.exceptions import InvalidTaskStateError, SnapshotDecodeError
from src.services.logging_utils import get_service_logger, log_operation
from src.services.product_service import require_task
from src.services.recipe_graph import ResolvedProduct
from src.services.snapshot_assembler import SnapshotAssembler
from src.utils.constants import SNAPSHOT_SCHEMA_VERSION
from src.utils.datetime_utils import utc_now

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class TaskSnapshot:
    """Decoded snapshot: the resolved products of a task keyed by product id."""

    task_id: int
    captured_at: Optional[datetime]
    products: Mapping[int, ResolvedProduct] = field(default_factory=dict)
    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    def product(self, product_id: int) -> Optional[ResolvedProduct]:
        return self.products.get(product_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
            "task_id": self.task_id,
            "products": [self.products[pid].to_dict() for pid in sorted(self.products)],
        }


# =============================================================================
# Encoding / decoding
# =============================================================================


def encode_snapshot(snapshot: TaskSnapshot) -> str:
    """Serialize a snapshot to its stored JSON text (current schema version)."""
    data = snapshot.to_dict()
    data["schema_version"] = SNAPSHOT_SCHEMA_VERSION
    return json.dumps(data, sort_keys=True)


def _migrate_v1(data: Dict[str, Any], task_id: Any) -> Dict[str, Any]:
    """Legacy shape: {"<product id>": <product dict>, ...} without a version tag."""
    products = []
    for key, product in data.items():
        if not isinstance(product, dict):
            raise SnapshotDecodeError(task_id, f"legacy entry {key!r} is not an object")
        products.append(product)
    return {
        "schema_version": 2,
        "captured_at": None,
        "task_id": task_id,
        "products": products,
    }


# Maps a schema version to the step that upgrades it to the next version
_MIGRATIONS: Dict[int, Callable[[Dict[str, Any], Any], Dict[str, Any]]] = {
    1: _migrate_v1,
}


def decode_snapshot(raw: Union[str, Mapping[str, Any]], task_id: Any = None) -> TaskSnapshot:
    """
    Parse, validate and migrate stored snapshot data.

    Args:
        raw: Stored JSON text or an already parsed object
        task_id: Owning task, used for diagnostics and for legacy data

    Returns:
        TaskSnapshot in the current schema

    Raises:
        SnapshotDecodeError: If the data is not JSON, has an unknown schema
            version, or does not have the expected shape
    """
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SnapshotDecodeError(task_id, f"invalid JSON ({e.msg})")
    else:
        data = raw

    if not isinstance(data, dict):
        raise SnapshotDecodeError(task_id, "top-level value is not an object")

    version = data.get("schema_version", 1)
    if not isinstance(version, int):
        raise SnapshotDecodeError(task_id, f"schema version {version!r} is not an integer")

    original_version = version
    while version < SNAPSHOT_SCHEMA_VERSION:
        migrate = _MIGRATIONS.get(version)
        if migrate is None:
            raise SnapshotDecodeError(task_id, f"unsupported schema version {version}")
        data = migrate(data, task_id)
        version = data["schema_version"]

    if version != SNAPSHOT_SCHEMA_VERSION:
        raise SnapshotDecodeError(task_id, f"unsupported schema version {version}")

    if original_version != version:
        log_operation(
            logger,
            operation="decode_snapshot",
            outcome="migrated",
            level=logging.DEBUG,
            task_id=task_id,
            from_version=original_version,
            to_version=version,
        )

    try:
        products = [ResolvedProduct.from_dict(product) for product in data["products"]]
        captured_at = data.get("captured_at")
        return TaskSnapshot(
            task_id=data.get("task_id", task_id),
            captured_at=datetime.fromisoformat(captured_at) if captured_at else None,
            products={product.id: product for product in products},
        )
    except (AttributeError, KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise SnapshotDecodeError(task_id, f"malformed snapshot data ({e!r})")


# =============================================================================
# Creation
# =============================================================================


def capture_snapshot(session: Session, task: ProductionTask) -> RecipeSnapshot:
    """
    Assemble and persist the snapshot of a task that has none.

    Resolves every product of the task with one batched assembly and adds the
    RecipeSnapshot row to the session (flushed, not committed).

    Raises:
        RecipeCycleError: If any product's recipe tree contains a cycle
    """
    product_ids = sorted({item.product_id for item in task.items})
    assembler = SnapshotAssembler(session, task.tenant_id)
    products = assembler.assemble_products(product_ids)

    captured_at = utc_now()
    snapshot = TaskSnapshot(task_id=task.id, captured_at=captured_at, products=products)
    record = RecipeSnapshot(
        task=task,
        schema_version=SNAPSHOT_SCHEMA_VERSION,
        snapshot_date=captured_at,
        snapshot_data=encode_snapshot(snapshot),
    )
    session.add(record)
    session.flush()

    log_operation(
        logger,
        operation="capture_snapshot",
        outcome="success",
        task_id=task.id,
        product_count=len(products),
        round_trips=assembler.round_trips,
    )
    return record


def replace_pending_snapshot(session: Session, task: ProductionTask) -> RecipeSnapshot:
    """
    Re-capture the snapshot of a PENDING task after its items changed.

    The old row is deleted rather than updated; snapshots are write-once.

    Raises:
        InvalidTaskStateError: If the task is not PENDING
    """
    if task.status != ProductionTaskStatus.PENDING.value:
        raise InvalidTaskStateError(task.id, task.status, "replace the snapshot of")

    old = task.snapshot
    if old is not None:
        task.snapshot = None
        session.delete(old)
        session.flush()
    return capture_snapshot(session, task)


def _snapshot_summary(record: RecipeSnapshot, created: bool) -> Dict[str, Any]:
    return {
        "id": record.id,
        "task_id": record.task_id,
        "schema_version": record.schema_version,
        "snapshot_date": record.snapshot_date.isoformat() if record.snapshot_date else None,
        "created": created,
    }


def build_snapshot(tenant_id: str, task_id: int, *, session=None) -> Dict[str, Any]:
    """
    Ensure a production task has a recipe snapshot.

    Idempotent: a task that already has a snapshot keeps it unchanged.

    Args:
        tenant_id: Calling tenant
        task_id: Production task
        session: Optional database session (uses session_scope if not provided)

    Returns:
        Dict with id, task_id, schema_version, snapshot_date and "created"
        (False when the snapshot already existed)

    Raises:
        ProductionTaskNotFound: If the task doesn't exist for this tenant
        RecipeCycleError: If a product's recipe tree contains a cycle
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id, include_deleted=True)
        if task.snapshot is not None:
            return _snapshot_summary(task.snapshot, created=False)
        record = capture_snapshot(session, task)
        return _snapshot_summary(record, created=True)


def load_task_snapshot(session: Session, task: ProductionTask) -> TaskSnapshot:
    """
    Decoded snapshot of a task, generated on first access if it is missing.

    Tasks created before snapshots existed get one captured from live data
    exactly once; afterwards the stored one is always used.
    """
    record = task.snapshot
    if record is None:
        log_operation(
            logger,
            operation="load_task_snapshot",
            outcome="generated_missing_snapshot",
            level=logging.WARNING,
            task_id=task.id,
        )
        record = capture_snapshot(session, task)
    return decode_snapshot(record.snapshot_data, task.id)


def get_task_snapshot(tenant_id: str, task_id: int, *, session=None) -> TaskSnapshot:
    """
    Decoded recipe snapshot of a production task.

    Raises:
        ProductionTaskNotFound: If the task doesn't exist for this tenant
        SnapshotDecodeError: If the stored snapshot cannot be decoded
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        task = require_task(session, tenant_id, task_id, include_deleted=True)
        return load_task_snapshot(session, task)
