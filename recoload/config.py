"""
Load generator configuration.

Defines environment-specific configuration classes for the load generator.
Each class captures the base URLs of the two target services (event
ingestion and recommendation API), the fixed request parameters, and the
per-action think times.  The ``get_config`` factory selects the right class
based on the ``RECOLOAD_ENV`` environment variable (or an explicit key).

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides so CI can point the run at any stack
- Separate testing configuration with zero think time and fake URLs
"""

from __future__ import annotations

import os


def _env_float(name: str, default: str) -> float:
    """Read a numeric environment variable, failing loudly on bad input."""
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be numeric, got {raw!r}") from exc


def _env_int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from exc


class Config:
    """
    Base (shared) configuration for the load generator.

    Values are resolved when this module is imported.  Tests that need
    different values should subclass or use ``TestingConfig`` instead of
    mutating the environment after import.
    """

    # Event ingestion service.  POST /events is sent here.
    BASE_URL: str = os.environ.get("BASE_URL", "http://localhost:8080")

    # Recommendation API serving /recommendations and /popular.
    API_URL: str = os.environ.get("API_URL", "http://localhost:8081")

    REQUEST_TIMEOUT: float = _env_float("REQUEST_TIMEOUT", "10")

    RECOMMEND_COUNT: int = _env_int("RECOMMEND_COUNT", "10")
    POPULAR_COUNT: int = _env_int("POPULAR_COUNT", "20")
    POPULAR_CATEGORY: str | None = os.environ.get("POPULAR_CATEGORY") or None

    # Think time in seconds after each action's check.
    THINK_TIME_INGEST: float = _env_float("THINK_TIME_INGEST", "1")
    THINK_TIME_RECOMMEND: float = _env_float("THINK_TIME_RECOMMEND", "1")
    THINK_TIME_POPULAR: float = _env_float("THINK_TIME_POPULAR", "2")

    # Optional YAML file with stages and thresholds.
    PROFILE_PATH: str | None = os.environ.get("LOADTEST_PROFILE") or None

    PREFLIGHT_TIMEOUT: float = _env_float("PREFLIGHT_TIMEOUT", "30")

    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    @classmethod
    def think_times(cls) -> tuple[float, float, float]:
        """Return the (ingest, recommend, popular) think times."""
        return (cls.THINK_TIME_INGEST, cls.THINK_TIME_RECOMMEND, cls.THINK_TIME_POPULAR)


class DevelopmentConfig(Config):
    """Local runs against services on localhost."""

    DEBUG: bool = True


class TestingConfig(Config):
    """
    Test-suite overrides.

    Points both services at non-routable test hosts so that unit tests
    never accidentally generate real traffic, and removes think time so
    iterations complete instantly.
    """

    # Keeps pytest from collecting this class when tests import it.
    __test__ = False

    DEBUG: bool = True
    BASE_URL: str = os.environ.get("TEST_BASE_URL", "http://ingest.test")
    API_URL: str = os.environ.get("TEST_API_URL", "http://api.test")
    REQUEST_TIMEOUT: float = 1.0
    THINK_TIME_INGEST: float = 0.0
    THINK_TIME_RECOMMEND: float = 0.0
    THINK_TIME_POPULAR: float = 0.0
    PREFLIGHT_TIMEOUT: float = 0.0


class ProductionConfig(Config):
    """
    Runs against a deployed stack.

    All URLs are expected to come from environment variables set by the
    CI job or the operator.
    """

    DEBUG: bool = False


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"``, or
            ``"production"``.  When *None*, the ``RECOLOAD_ENV``
            environment variable is consulted, falling back to
            ``"development"`` if unset.

    Returns:
        The ``Config`` subclass matching the requested environment,
        or ``DevelopmentConfig`` if the key is unrecognised.
    """
    if env is None:
        env = os.environ.get("RECOLOAD_ENV", "development")
    return config.get(env, config["default"])
