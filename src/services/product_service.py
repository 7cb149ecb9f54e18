"""Product Service - tenant-scoped lookups of products and tasks.

Products and recipe families are authored elsewhere; the costing and
production services only read them. Tenant scope of a product comes from
its recipe version's family. A record owned by another tenant is reported
exactly like a missing one.

Example Usage:
  >>> from src.services.product_service import require_product
  >>> with session_scope() as session:
  ...     product = require_product(session, "tenant-1", 12)
  >>> product.name
  'Country Loaf'
"""

from sqlalchemy.orm import Session, joinedload

from ..models import Product, ProductionTask, RecipeFamily, RecipeVersion
from .exceptions import ProductNotFound, ProductionTaskNotFound


def _product_query(session: Session, tenant_id: str):
    return (
        session.query(Product)
        .join(RecipeVersion, Product.version_id == RecipeVersion.id)
        .join(RecipeFamily, RecipeVersion.family_id == RecipeFamily.id)
        .filter(RecipeFamily.tenant_id == tenant_id)
        .options(joinedload(Product.version).joinedload(RecipeVersion.family))
    )


def require_product(
    session: Session, tenant_id: str, product_id: int, include_deleted: bool = False
) -> Product:
    """
    Load a product inside an open session.

    Raises:
        ProductNotFound: If absent, soft-deleted (unless include_deleted) or
            owned by another tenant
    """
    query = _product_query(session, tenant_id).filter(Product.id == product_id)
    if not include_deleted:
        query = query.filter(Product.deleted_at.is_(None))
    product = query.first()
    if product is None:
        raise ProductNotFound(product_id)
    return product


def require_task(
    session: Session, tenant_id: str, task_id: int, include_deleted: bool = False
) -> ProductionTask:
    """
    Load a production task inside an open session.

    Raises:
        ProductionTaskNotFound: If absent, soft-deleted (unless include_deleted)
            or owned by another tenant
    """
    query = session.query(ProductionTask).filter(
        ProductionTask.id == task_id, ProductionTask.tenant_id == tenant_id
    )
    if not include_deleted:
        query = query.filter(ProductionTask.deleted_at.is_(None))
    task = query.first()
    if task is None:
        raise ProductionTaskNotFound(task_id)
    return task
