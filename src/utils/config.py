"""
Configuration management for the Bakehouse costing engine.

This module handles:
- Database URL configuration
- Environment-specific configuration (development vs. production)
- Costing and production posting settings
"""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_CONSUMPTION_EPSILON_GRAMS,
    DEFAULT_COST_BREAKDOWN_TOP_N,
    DEFAULT_COST_HISTORY_POINTS,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


class Config:
    """
    Application configuration manager.

    Settings are read once, at construction time, from BAKEHOUSE_* environment
    variables with built-in defaults.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
        """
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME
        self._database_url = os.environ.get("BAKEHOUSE_DATABASE_URL")

        self._consumption_epsilon = self._env_value(
            "BAKEHOUSE_CONSUMPTION_EPSILON_GRAMS", Decimal, DEFAULT_CONSUMPTION_EPSILON_GRAMS
        )
        self._cost_breakdown_top_n = self._env_value(
            "BAKEHOUSE_COST_BREAKDOWN_TOP_N", int, DEFAULT_COST_BREAKDOWN_TOP_N
        )
        self._cost_history_points = self._env_value(
            "BAKEHOUSE_COST_HISTORY_POINTS", int, DEFAULT_COST_HISTORY_POINTS
        )
        self._strict_resolution = (
            os.environ.get("BAKEHOUSE_STRICT_RESOLUTION", "false").lower() in _TRUE_VALUES
        )

    @staticmethod
    def _env_value(name: str, parse, default):
        """Parse an environment variable, falling back to default with a warning."""
        raw = os.environ.get(name)
        if raw is None:
            return default
        try:
            return parse(raw)
        except (ValueError, ArithmeticError):
            logger.warning(f"Invalid {name} value '{raw}', using default {default}")
            return default

    def _get_project_data_dir(self) -> Path:
        """Project data/ directory used in development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """Per-user application directory used in production."""
        return Path.home() / ".bakehouse"

    def ensure_directories(self) -> None:
        """Create the database directory if it doesn't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return self._database_version

    @property
    def database_path(self) -> Path:
        """Full path to the SQLite database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        BAKEHOUSE_DATABASE_URL wins; otherwise a SQLite file in the
        environment's data directory.
        """
        if self._database_url:
            return self._database_url
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def consumption_epsilon_grams(self) -> Decimal:
        """Consumption amounts below this are not posted."""
        return self._consumption_epsilon

    @property
    def cost_breakdown_top_n(self) -> int:
        """Number of named rows in a cost breakdown before the 'other' bucket."""
        return self._cost_breakdown_top_n

    @property
    def cost_history_points(self) -> int:
        """Number of distinct purchase dates replayed by cost history."""
        return self._cost_history_points

    @property
    def strict_resolution(self) -> bool:
        """Raise on degenerate recipe branches instead of contributing zero."""
        return self._strict_resolution

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    BAKEHOUSE_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get("BAKEHOUSE_ENV", "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None
