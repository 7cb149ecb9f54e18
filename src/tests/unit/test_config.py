"""Unit tests for Config costing and posting properties.

Each property is tested for:
- Default values when no environment variables set
- Environment variable overrides
- Invalid value handling (fallback to defaults with warning)
"""

import logging
from decimal import Decimal

import pytest

from src.utils.config import Config, get_config, reset_config


class TestCostingConfigProperties:
    """Tests for costing configuration properties."""

    def test_defaults(self):
        config = Config()
        assert config.consumption_epsilon_grams == Decimal("0.01")
        assert config.cost_breakdown_top_n == 4
        assert config.cost_history_points == 10
        assert config.strict_resolution is False

    def test_epsilon_env_override(self, monkeypatch):
        monkeypatch.setenv("BAKEHOUSE_CONSUMPTION_EPSILON_GRAMS", "0.5")
        assert Config().consumption_epsilon_grams == Decimal("0.5")

    def test_epsilon_invalid_uses_default(self, monkeypatch, caplog):
        """Invalid epsilon falls back to default with warning."""
        monkeypatch.setenv("BAKEHOUSE_CONSUMPTION_EPSILON_GRAMS", "a little")
        with caplog.at_level(logging.WARNING):
            config = Config()
            assert config.consumption_epsilon_grams == Decimal("0.01")
        assert "Invalid BAKEHOUSE_CONSUMPTION_EPSILON_GRAMS" in caplog.text

    def test_breakdown_top_n_env_override(self, monkeypatch):
        monkeypatch.setenv("BAKEHOUSE_COST_BREAKDOWN_TOP_N", "6")
        assert Config().cost_breakdown_top_n == 6

    def test_history_points_invalid_uses_default(self, monkeypatch, caplog):
        monkeypatch.setenv("BAKEHOUSE_COST_HISTORY_POINTS", "many")
        with caplog.at_level(logging.WARNING):
            assert Config().cost_history_points == 10
        assert "Invalid BAKEHOUSE_COST_HISTORY_POINTS" in caplog.text

    @pytest.mark.parametrize(
        "value,expected",
        [("1", True), ("true", True), ("YES", True), ("on", True), ("0", False), ("no", False)],
    )
    def test_strict_resolution_flag(self, monkeypatch, value, expected):
        monkeypatch.setenv("BAKEHOUSE_STRICT_RESOLUTION", value)
        assert Config().strict_resolution is expected


class TestDatabaseConfigProperties:
    """Tests for database location settings."""

    def test_database_url_env_override(self, monkeypatch):
        monkeypatch.setenv("BAKEHOUSE_DATABASE_URL", "postgresql://bakery@db/costing")
        assert Config().database_url == "postgresql://bakery@db/costing"

    def test_development_database_in_project_data_dir(self):
        config = Config("development")

        assert config.is_development
        assert config.database_url.startswith("sqlite:///")
        assert config.database_url.endswith("data/bakehouse.db")

    def test_production_database_in_home_dir(self):
        config = Config("production")

        assert config.is_production
        assert ".bakehouse" in config.database_url


class TestConfigSingleton:
    """Tests for get_config() / reset_config()."""

    def test_singleton_is_reused(self):
        assert get_config() is get_config()

    def test_environment_from_env_variable(self, monkeypatch):
        monkeypatch.setenv("BAKEHOUSE_ENV", "development")
        reset_config()
        assert get_config().environment == "development"

    def test_different_environment_returns_existing(self, caplog):
        config = get_config("production")
        with caplog.at_level(logging.WARNING):
            assert get_config("development") is config
        assert "Returning existing singleton" in caplog.text

    def test_reset_rereads_environment(self, monkeypatch):
        before = get_config().cost_breakdown_top_n
        monkeypatch.setenv("BAKEHOUSE_COST_BREAKDOWN_TOP_N", str(before + 1))

        assert get_config().cost_breakdown_top_n == before
        reset_config()
        assert get_config().cost_breakdown_top_n == before + 1
