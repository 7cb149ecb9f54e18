"""
Unit tests for the RecipeSnapshot model.

Tests cover:
- Raw JSON access
- Write-once enforcement on update
- One snapshot per task
"""

import json

import pytest
from sqlalchemy.exc import IntegrityError

from src.models import RecipeSnapshot
from src.services.exceptions import SnapshotImmutableError
from src.services.production_task_service import create_production_task


@pytest.fixture
def loaf_task(test_db, country_loaf):
    """A PENDING task for two country loaves, with its snapshot."""
    return create_production_task(
        "bakery-1",
        [{"product_id": country_loaf.product.id, "quantity": 2}],
        start_date="2026-03-02",
    )


def _snapshot(session, task):
    return session.query(RecipeSnapshot).filter(RecipeSnapshot.task_id == task["id"]).one()


class TestRecipeSnapshotModel:
    """Tests for RecipeSnapshot rows."""

    def test_snapshot_row_holds_json(self, test_db, loaf_task):
        snapshot = _snapshot(test_db(), loaf_task)

        data = snapshot.get_raw_data()

        assert data["schema_version"] == 2
        assert data["task_id"] == loaf_task["id"]
        assert [product["name"] for product in data["products"]] == ["Country Loaf"]
        assert snapshot.schema_version == 2

    def test_snapshot_data_cannot_be_updated(self, test_db, loaf_task):
        session = test_db()
        snapshot = _snapshot(session, loaf_task)
        data = snapshot.get_raw_data()
        data["products"] = []

        snapshot.snapshot_data = json.dumps(data)
        with pytest.raises(SnapshotImmutableError):
            session.flush()
        session.rollback()

        assert _snapshot(session, loaf_task).get_raw_data()["products"] != []

    def test_schema_version_cannot_be_updated(self, test_db, loaf_task):
        session = test_db()
        snapshot = _snapshot(session, loaf_task)

        snapshot.schema_version = 1
        with pytest.raises(SnapshotImmutableError):
            session.flush()
        session.rollback()

    def test_unchanged_snapshot_flushes_cleanly(self, test_db, loaf_task):
        session = test_db()
        snapshot = _snapshot(session, loaf_task)

        # Assigning the same value is not a change
        snapshot.snapshot_data = str(snapshot.snapshot_data)
        session.flush()

    def test_one_snapshot_per_task(self, test_db, loaf_task):
        session = test_db()
        existing = _snapshot(session, loaf_task)

        session.add(
            RecipeSnapshot(
                task_id=existing.task_id,
                schema_version=2,
                snapshot_data=existing.snapshot_data,
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()
        session.rollback()

    def test_repr(self, test_db, loaf_task):
        snapshot = _snapshot(test_db(), loaf_task)
        assert f"task_id={loaf_task['id']}" in repr(snapshot)
