"""
Tests for the pure pricing functions of costing_service.

Tests cover:
- Weighted-average unit cost, including empty stock
- Top-N cost breakdown with the "Other" bucket
- Cost history replay over purchase dates
"""

from datetime import date
from decimal import Decimal

import pytest

from src.services.costing_service import (
    cost_breakdown,
    cost_history_points,
    price_at,
    total_cost,
    unit_cost_per_gram,
)
from src.utils.config import reset_config

D = Decimal


class TestUnitCost:
    def test_empty_stock_costs_nothing(self):
        """No stock to divide by is a zero cost, not an error."""
        assert unit_cost_per_gram(0, D("5.00")) == 0

    def test_negative_stock_costs_nothing(self):
        assert unit_cost_per_gram(D("-10"), D("5.00")) == 0

    def test_weighted_average(self):
        assert unit_cost_per_gram(D("25000"), D("37.50")) == D("0.0015")

    def test_total_cost_ignores_unpriced_ingredients(self):
        weights = {1: D("650"), 2: D("490"), 3: D("10")}
        unit_costs = {1: D("0.0012"), 3: D("0.002")}

        assert total_cost(weights, unit_costs) == D("0.80")


class TestCostBreakdown:
    """Top-N rows plus an "Other" bucket."""

    weights = {i: D("100") for i in range(1, 8)}
    unit_costs = {
        1: D("0.05"),
        2: D("0.04"),
        3: D("0.03"),
        4: D("0.02"),
        5: D("0.01"),
        6: D("0.005"),
        7: D("0"),
    }
    names = {i: f"Ingredient {i}" for i in range(1, 8)}

    def test_tail_is_collapsed_into_other(self):
        rows = cost_breakdown(self.weights, self.unit_costs, self.names, top_n=4)

        assert [row["name"] for row in rows] == [
            "Ingredient 1",
            "Ingredient 2",
            "Ingredient 3",
            "Ingredient 4",
            "Other",
        ]
        assert rows[-1]["value"] == D("1.5")

    def test_rows_sum_to_total_cost(self):
        rows = cost_breakdown(self.weights, self.unit_costs, self.names, top_n=4)
        assert sum(row["value"] for row in rows) == total_cost(self.weights, self.unit_costs)

    def test_rows_are_largest_first(self):
        rows = cost_breakdown(self.weights, self.unit_costs, self.names, top_n=10)
        values = [row["value"] for row in rows]
        assert values == sorted(values, reverse=True)

    def test_zero_cost_rows_are_dropped(self):
        rows = cost_breakdown(self.weights, self.unit_costs, self.names, top_n=10)

        assert len(rows) == 6
        assert "Ingredient 7" not in [row["name"] for row in rows]

    def test_short_list_has_no_other_bucket(self):
        rows = cost_breakdown({1: D("10"), 2: D("10")}, {1: D("1"), 2: D("2")}, {}, top_n=4)

        assert [row["value"] for row in rows] == [D("20"), D("10")]
        assert rows[0]["name"] == "2"

    def test_default_size_comes_from_configuration(self, monkeypatch):
        monkeypatch.setenv("BAKEHOUSE_COST_BREAKDOWN_TOP_N", "2")
        reset_config()

        rows = cost_breakdown(self.weights, self.unit_costs, self.names)

        assert len(rows) == 3
        assert rows[-1]["name"] == "Other"


class TestCostHistory:
    """Replay of purchase prices over the last N purchase dates."""

    weights = {1: D("100"), 2: D("50")}
    history = {
        1: [(date(2026, 1, 5), D("0.01")), (date(2026, 2, 20), D("0.02"))],
        2: [(date(2026, 2, 1), D("0.1"))],
    }
    live = {1: D("0.015"), 2: D("0.1")}

    def test_price_at_uses_latest_purchase_on_or_before_date(self):
        purchases = self.history[1]

        assert price_at(purchases, date(2026, 1, 4)) is None
        assert price_at(purchases, date(2026, 1, 5)) == D("0.01")
        assert price_at(purchases, date(2026, 3, 1)) == D("0.02")

    def test_series_ends_with_live_cost(self):
        series = cost_history_points(self.weights, self.history, self.live, date(2026, 3, 1))

        assert series == [
            # Ingredient 2 had no purchase yet: live cost stands in
            {"date": date(2026, 1, 5), "cost": D("6.00")},
            {"date": date(2026, 2, 1), "cost": D("6.00")},
            {"date": date(2026, 2, 20), "cost": D("7.00")},
            {"date": date(2026, 3, 1), "cost": D("6.500")},
        ]

    def test_only_last_points_dates_are_replayed(self):
        series = cost_history_points(
            self.weights, self.history, self.live, date(2026, 3, 1), points=2
        )
        assert [point["date"] for point in series] == [
            date(2026, 2, 1),
            date(2026, 2, 20),
            date(2026, 3, 1),
        ]

    def test_today_point_with_same_cost_is_not_repeated(self):
        live = {1: D("0.02"), 2: D("0.1")}
        series = cost_history_points(self.weights, self.history, live, date(2026, 2, 20))

        assert series[-1] == {"date": date(2026, 2, 20), "cost": D("7.00")}
        assert len(series) == 3

    def test_today_point_with_new_cost_keeps_replayed_one(self):
        series = cost_history_points(self.weights, self.history, self.live, date(2026, 2, 20))

        assert series[-2:] == [
            {"date": date(2026, 2, 20), "cost": D("7.00")},
            {"date": date(2026, 2, 20), "cost": D("6.500")},
        ]
        assert len(series) == 4

    def test_purchase_today_then_repriced(self):
        series = cost_history_points(
            {1: D("100")}, {1: [(date(2026, 3, 1), D("0.01"))]}, {1: D("0.02")}, date(2026, 3, 1)
        )

        assert [point["cost"] for point in series] == [D("1.00"), D("2.00")]

    def test_no_purchases_gives_live_point_only(self):
        series = cost_history_points(self.weights, {}, self.live, date(2026, 3, 1))
        assert series == [{"date": date(2026, 3, 1), "cost": D("6.500")}]

    @pytest.mark.parametrize("points", [0, -1])
    def test_non_positive_points_skip_replay(self, points):
        series = cost_history_points(
            self.weights, self.history, self.live, date(2026, 3, 1), points=points
        )
        assert len(series) == 1
