"""
Tests for recipe snapshot encoding, capture and lazy generation.

Tests cover:
- decode_snapshot() validation and legacy (v1) migration
- build_snapshot() idempotence
- Lazy generation for tasks stored without a snapshot
- Snapshots isolate tasks from later recipe edits
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.models import ComponentIngredient, RecipeSnapshot
from src.services.consumption_service import (
    calculate_product_consumptions,
    calculate_task_consumptions,
)
from src.services.exceptions import ProductionTaskNotFound, SnapshotDecodeError
from src.services.production_task_service import create_production_task
from src.services.recipe_graph import IngredientRef, ResolvedProduct
from src.services.recipe_snapshot_service import (
    TaskSnapshot,
    build_snapshot,
    decode_snapshot,
    encode_snapshot,
    get_task_snapshot,
)

D = Decimal


def sample_product(product_id=5):
    return ResolvedProduct(id=product_id, name="Roll", base_dough_weight=D("80"))


def _weights(rows):
    return {row["ingredient_name"]: row["total_weight"] for row in rows}


class TestEncoding:
    """Tests for encode_snapshot() / decode_snapshot()."""

    def test_encoded_snapshot_decodes_to_same_products(self):
        captured = datetime(2026, 3, 1, 5, 30, tzinfo=timezone.utc)
        snapshot = TaskSnapshot(task_id=3, captured_at=captured, products={5: sample_product()})

        decoded = decode_snapshot(encode_snapshot(snapshot), 3)

        assert decoded == snapshot

    def test_encoded_text_is_tagged_with_schema_version(self):
        data = json.loads(encode_snapshot(TaskSnapshot(task_id=3, captured_at=None)))
        assert data["schema_version"] == 2

    def test_legacy_shape_is_migrated(self):
        """Untagged objects keyed by product id are the first stored shape."""
        legacy = {"5": sample_product(5).to_dict(), "6": sample_product(6).to_dict()}

        decoded = decode_snapshot(json.dumps(legacy), task_id=9)

        assert decoded.schema_version == 2
        assert decoded.task_id == 9
        assert decoded.captured_at is None
        assert sorted(decoded.products) == [5, 6]

    def test_legacy_entry_must_be_an_object(self):
        with pytest.raises(SnapshotDecodeError, match="legacy entry"):
            decode_snapshot({"5": "not a product"}, task_id=9)

    @pytest.mark.parametrize("version", [0, 3, 99])
    def test_unknown_schema_version_rejected(self, version):
        with pytest.raises(SnapshotDecodeError, match="unsupported schema version"):
            decode_snapshot({"schema_version": version, "products": []}, task_id=1)

    def test_non_integer_schema_version_rejected(self):
        with pytest.raises(SnapshotDecodeError):
            decode_snapshot({"schema_version": "2", "products": []}, task_id=1)

    def test_invalid_json_rejected(self):
        with pytest.raises(SnapshotDecodeError, match="invalid JSON"):
            decode_snapshot("{not json", task_id=1)

    def test_top_level_array_rejected(self):
        with pytest.raises(SnapshotDecodeError, match="not an object"):
            decode_snapshot("[]", task_id=1)

    def test_malformed_product_rejected(self):
        data = {"schema_version": 2, "products": [{"name": "missing id"}]}
        with pytest.raises(SnapshotDecodeError, match="malformed"):
            decode_snapshot(data, task_id=1)

    def test_decoded_ingredient_refs_keep_decimals(self):
        product = sample_product()
        data = product.to_dict()
        data["lines"] = [
            {
                "id": 1,
                "line_type": "TOPPING",
                "weight_in_grams": "12.5",
                "ingredient": IngredientRef(7, "Seeds", water_content=D("0.05")).to_dict(),
            }
        ]

        decoded = decode_snapshot({"schema_version": 2, "products": [data]}, task_id=1)

        line = decoded.product(5).lines[0]
        assert line.weight_in_grams == D("12.5")
        assert line.ingredient.water_content == D("0.05")


class TestBuildSnapshot:
    """Tests for build_snapshot()."""

    def test_task_creation_captures_snapshot(self, test_db, country_loaf):
        task = create_production_task(
            "bakery-1", [{"product_id": country_loaf.product.id, "quantity": 2}], "2026-03-02"
        )

        assert task["has_snapshot"] is True
        assert task["snapshot_id"] is not None

    def test_build_snapshot_is_idempotent(self, test_db, bakery, country_loaf):
        task = bakery.legacy_task([(country_loaf.product, 2)])

        first = build_snapshot("bakery-1", task.id)
        second = build_snapshot("bakery-1", task.id)

        assert first["created"] is True
        assert second["created"] is False
        assert second["id"] == first["id"]
        assert test_db().query(RecipeSnapshot).count() == 1

    def test_build_snapshot_for_other_tenant_not_found(self, test_db, bakery, country_loaf):
        task = bakery.legacy_task([(country_loaf.product, 2)])

        with pytest.raises(ProductionTaskNotFound):
            build_snapshot("bakery-2", task.id)


class TestLazyGeneration:
    """Tasks stored without a snapshot get one on first read."""

    def test_missing_snapshot_generated_once(self, test_db, bakery, country_loaf, caplog):
        task = bakery.legacy_task([(country_loaf.product, 2)])

        with caplog.at_level(logging.WARNING, logger="bakehouse.services"):
            first = get_task_snapshot("bakery-1", task.id)
            second = get_task_snapshot("bakery-1", task.id)

        generated = [
            record for record in caplog.records
            if record.getMessage() == "load_task_snapshot: generated_missing_snapshot"
        ]
        assert len(generated) == 1
        assert generated[0].task_id == task.id
        assert first == second
        assert test_db().query(RecipeSnapshot).count() == 1

    def test_generated_snapshot_feeds_consumption(self, test_db, bakery, country_loaf):
        task = bakery.legacy_task([(country_loaf.product, 2)])

        rows = calculate_task_consumptions("bakery-1", task.id)

        assert _weights(rows) == {
            "Bread flour": D("1300"),
            "Water": D("980"),
            "Salt": D("20"),
        }


class TestSnapshotIsolation:
    """A task's economics do not follow later recipe edits."""

    def test_recipe_edit_after_capture_does_not_change_task(self, test_db, country_loaf):
        task = create_production_task(
            "bakery-1", [{"product_id": country_loaf.product.id, "quantity": 2}], "2026-03-02"
        )
        before = _weights(calculate_task_consumptions("bakery-1", task["id"]))

        session = test_db()
        salt_line = (
            session.query(ComponentIngredient)
            .filter(ComponentIngredient.ingredient_id == country_loaf.salt.id)
            .one()
        )
        salt_line.ratio = D("4")
        session.commit()

        after = _weights(calculate_task_consumptions("bakery-1", task["id"]))
        live = _weights(calculate_product_consumptions("bakery-1", country_loaf.product.id, 2))

        assert after == before
        assert after["Salt"] == D("20")
        assert live["Salt"] > D("39")

    def test_stored_snapshot_text_is_unchanged_by_reads(self, test_db, country_loaf):
        task = create_production_task(
            "bakery-1", [{"product_id": country_loaf.product.id, "quantity": 1}], "2026-03-02"
        )
        session = test_db()
        stored = session.query(RecipeSnapshot).one().snapshot_data

        calculate_task_consumptions("bakery-1", task["id"])
        get_task_snapshot("bakery-1", task["id"])

        session = test_db()
        session.expire_all()
        assert session.query(RecipeSnapshot).one().snapshot_data == stored
