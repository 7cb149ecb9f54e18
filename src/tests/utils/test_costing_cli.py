"""Tests for the costing command-line interface."""

import json

import pytest

from src.services.production_task_service import create_production_task
from src.utils import costing_cli


@pytest.fixture
def cli(test_db, monkeypatch):
    """Run CLI commands against the test database."""
    monkeypatch.setattr(costing_cli, "initialize_app_database", lambda: None)

    def run(*argv):
        return costing_cli.main(list(argv))

    return run


class TestParser:
    """Tests for build_parser()."""

    def test_product_commands_need_tenant(self):
        parser = costing_cli.build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["cost", "12"])

    def test_bom_collects_repeated_tasks(self):
        args = costing_cli.build_parser().parse_args(
            ["bom", "--tenant", "t1", "--task", "7", "--task", "8"]
        )
        assert args.task_ids == [7, 8]

    def test_quantity_must_be_a_number(self):
        with pytest.raises(SystemExit):
            costing_cli.build_parser().parse_args(
                ["consumptions", "--tenant", "t1", "--product", "1", "--quantity", "lots"]
            )

    def test_no_command_prints_help(self, capsys):
        assert costing_cli.main([]) == 1
        assert "usage" in capsys.readouterr().out


class TestCommands:
    """Tests for the command handlers."""

    def test_cost(self, cli, country_loaf, capsys):
        assert cli("cost", "--tenant", "bakery-1", str(country_loaf.product.id)) == 0
        assert "0.80" in capsys.readouterr().out

    def test_breakdown(self, cli, country_loaf, capsys):
        cli("breakdown", "--tenant", "bakery-1", str(country_loaf.product.id))

        out = capsys.readouterr().out
        assert "Bread flour" in out
        assert "Water" not in out

    def test_details_is_json(self, cli, country_loaf, capsys):
        cli("details", "--tenant", "bakery-1", str(country_loaf.product.id))

        details = json.loads(capsys.readouterr().out)
        assert details["name"] == "Country Loaf"
        assert details["total_cost"] == "0.8000"

    def test_snapshot_then_consumptions(self, cli, country_loaf, capsys):
        task = create_production_task(
            "bakery-1", [{"product_id": country_loaf.product.id, "quantity": 2}], "2026-03-02"
        )

        cli("snapshot", "--tenant", "bakery-1", str(task["id"]))
        cli("consumptions", "--tenant", "bakery-1", "--task", str(task["id"]))

        out = capsys.readouterr().out
        assert "already present" in out
        assert "Bread flour" in out
        assert "1300" in out

    def test_consumptions_needs_target(self, cli, capsys):
        assert cli("consumptions", "--tenant", "bakery-1") == 1
        assert "Pass --task or --product" in capsys.readouterr().out

    def test_bom_for_date(self, cli, country_loaf, capsys):
        create_production_task(
            "bakery-1", [{"product_id": country_loaf.product.id, "quantity": 1}], "2026-03-02"
        )

        cli("bom", "--tenant", "bakery-1", "--date", "2026-03-02")

        out = capsys.readouterr().out
        assert "Standard items:" in out
        assert "Salt" in out
        assert out.index("Non-inventoried items:") < out.index("Water")

    def test_service_errors_are_reported(self, cli, capsys):
        assert cli("cost", "--tenant", "bakery-1", "999") == 1
        assert "ERROR: Product with ID 999 not found" in capsys.readouterr().out
