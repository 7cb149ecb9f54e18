"""
Tests for the batched recipe tree assembler.

Tests cover:
- Round trips bounded by tree depth, not node count
- Shared sub-recipes fetched once and stitched to one object
- Cycle detection with the offending path
- Tenant scoping of linked records
- Pure stitching over hand-built shallow maps
"""

from decimal import Decimal

import pytest

from src.services.exceptions import RecipeCycleError
from src.services.recipe_graph import (
    IngredientRef,
    ShallowComponent,
    ShallowLine,
    ShallowProduct,
    ShallowVersion,
)
from src.services.snapshot_assembler import SnapshotAssembler, stitch_product, stitch_version

FLOUR = IngredientRef(id=1, name="Flour", is_flour=True)


def shallow(version_id, name, *linked_ids):
    """A one-component shallow version with a flour line and pre-dough links."""
    lines = [ShallowLine(id=version_id * 100, ratio=Decimal("100"), ingredient=FLOUR)]
    for index, linked_id in enumerate(linked_ids, start=1):
        lines.append(
            ShallowLine(
                id=version_id * 100 + index,
                flour_ratio=Decimal("0.2"),
                linked_family_id=linked_id,
                linked_family_name=f"family {linked_id}",
                linked_version_id=linked_id,
            )
        )
    return ShallowVersion(
        id=version_id,
        family_id=version_id,
        family_name=name,
        recipe_type="MAIN",
        category="BREAD",
        components=(ShallowComponent(id=version_id, name="Main dough", lines=tuple(lines)),),
    )


class TestStitching:
    """Pure stitching of shallow maps."""

    def test_nested_lines_hold_resolved_versions(self):
        shallow_map = {1: shallow(1, "Loaf", 2), 2: shallow(2, "Poolish")}

        resolved = stitch_version(1, shallow_map)

        sub = resolved.root_component.lines[1].sub_recipe
        assert sub.family_name == "Poolish"
        assert sub.root_component.lines[0].ingredient == FLOUR

    def test_shallow_map_is_not_modified(self):
        shallow_map = {1: shallow(1, "Loaf", 2), 2: shallow(2, "Poolish")}
        before = dict(shallow_map)

        stitch_version(1, shallow_map)

        assert shallow_map == before

    def test_unknown_version_is_none(self):
        assert stitch_version(99, {}) is None

    def test_dangling_link_stitches_to_none(self):
        shallow_map = {1: shallow(1, "Loaf", 2)}

        resolved = stitch_version(1, shallow_map)

        line = resolved.root_component.lines[1]
        assert line.sub_recipe is None
        assert line.linked_family_name == "family 2"

    def test_diamond_shares_one_node(self):
        """Two parents of the same pre-dough get the identical resolved object."""
        shallow_map = {
            1: shallow(1, "Loaf", 2, 3),
            2: shallow(2, "Levain", 4),
            3: shallow(3, "Soaker", 4),
            4: shallow(4, "Starter"),
        }

        resolved = stitch_version(1, shallow_map)

        via_levain = resolved.root_component.lines[1].sub_recipe.root_component.lines[1]
        via_soaker = resolved.root_component.lines[2].sub_recipe.root_component.lines[1]
        assert via_levain.sub_recipe is via_soaker.sub_recipe

    def test_cycle_reports_path(self):
        shallow_map = {1: shallow(1, "Loaf", 2), 2: shallow(2, "Levain", 1)}

        with pytest.raises(RecipeCycleError) as exc_info:
            stitch_version(1, shallow_map)

        assert exc_info.value.path == ["Loaf v1", "Levain v1", "Loaf v1"]

    def test_self_reference_is_a_cycle(self):
        with pytest.raises(RecipeCycleError):
            stitch_version(1, {1: shallow(1, "Loaf", 1)})

    def test_stitch_product_resolves_its_version(self):
        product = ShallowProduct(
            id=7, name="Loaf", base_dough_weight=Decimal("900"), version_id=1
        )

        resolved = stitch_product(product, {1: shallow(1, "Loaf")})

        assert resolved.version.family_name == "Loaf"
        assert resolved.category == "BREAD"


class TestAssembler:
    """Tests for SnapshotAssembler against the database."""

    def test_round_trips_follow_tree_depth(self, test_db, country_loaf):
        assembler = SnapshotAssembler(test_db(), "bakery-1")

        product = assembler.assemble_product(country_loaf.product.id)

        # products, then one fetch per level: loaf, poolish
        assert assembler.round_trips == 3
        poolish_line = product.version.root_component.lines[3]
        assert poolish_line.sub_recipe.family_name == "Poolish"

    def test_many_products_share_fetches(self, test_db, bakery, country_loaf):
        """A second product on a sibling recipe adds no extra round trip."""
        baguette = bakery.recipe(
            "Baguette",
            [
                {"ingredient": country_loaf.flour, "ratio": 100},
                {"ingredient": country_loaf.water, "ratio": 70},
                {"family": country_loaf.poolish, "flour_ratio": "0.5"},
            ],
        )
        product = bakery.product("Baguette", baguette, 350)
        assembler = SnapshotAssembler(test_db(), "bakery-1")

        products = assembler.assemble_products([country_loaf.product.id, product.id])

        assert assembler.round_trips == 3
        loaf_poolish = products[country_loaf.product.id].version.root_component.lines[3]
        baguette_poolish = products[product.id].version.root_component.lines[2]
        assert loaf_poolish.sub_recipe is baguette_poolish.sub_recipe

    def test_collect_shallow_versions_is_flat(self, test_db, country_loaf):
        assembler = SnapshotAssembler(test_db(), "bakery-1")
        loaf_version_id = country_loaf.family.versions[0].id

        shallow_map = assembler.collect_shallow_versions([loaf_version_id])

        assert {v.family_name for v in shallow_map.values()} == {"Country Loaf", "Poolish"}
        assert assembler.round_trips == 2

    def test_cycle_in_database_raises(self, test_db, bakery, country_loaf):
        levain = bakery.recipe(
            "Levain", [{"ingredient": country_loaf.flour, "ratio": 100}],
            recipe_type="PRE_DOUGH",
        )
        loaf = bakery.recipe(
            "Sourdough",
            [
                {"ingredient": country_loaf.flour, "ratio": 100},
                {"family": levain, "flour_ratio": "0.2"},
            ],
        )
        bakery.add_line(levain, {"family": loaf, "flour_ratio": "0.1"})
        product = bakery.product("Sourdough", loaf, 900)

        with pytest.raises(RecipeCycleError) as exc_info:
            SnapshotAssembler(test_db(), "bakery-1").assemble_product(product.id)

        assert exc_info.value.path == ["Sourdough v1", "Levain v1", "Sourdough v1"]

    def test_foreign_recipe_is_not_followed(self, test_db, bakery, other_bakery, country_loaf):
        foreign = other_bakery.recipe(
            "Their Poolish", [{"ingredient": country_loaf.flour, "ratio": 100}],
            recipe_type="PRE_DOUGH",
        )
        family = bakery.recipe(
            "Borrowed",
            [
                {"ingredient": country_loaf.flour, "ratio": 100},
                {"family": foreign, "flour_ratio": "0.2"},
            ],
        )
        product = bakery.product("Borrowed", family, 500)

        resolved = SnapshotAssembler(test_db(), "bakery-1").assemble_product(product.id)

        assert resolved.version.root_component.lines[1].sub_recipe is None

    def test_foreign_product_is_omitted(self, test_db, country_loaf):
        assembler = SnapshotAssembler(test_db(), "bakery-2")
        assert assembler.assemble_products([country_loaf.product.id]) == {}

    def test_linked_extra_is_stitched(self, test_db, bakery, country_loaf):
        butter = bakery.ingredient("Butter", stock=1000, value=8)
        crumble = bakery.recipe(
            "Crumble", [{"ingredient": butter, "ratio": 100}], recipe_type="EXTRA"
        )
        product = bakery.product(
            "Crumble Loaf",
            country_loaf.family,
            1150,
            addons=[{"extra": crumble, "weight_in_grams": 40, "line_type": "TOPPING"}],
        )

        resolved = SnapshotAssembler(test_db(), "bakery-1").assemble_product(product.id)

        assert resolved.lines[0].extra.family_name == "Crumble"
        assert resolved.lines[0].weight_in_grams == Decimal("40")
