"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``PORTFOLIO_CALC_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The calculation engine itself never reads configuration files. Callers
(the CLI, a web layer, tests) build an ``AppConfig`` once and hand the
relevant section to each component.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

from portfolio_calc.models.currency import SUPPORTED_CURRENCIES
from portfolio_calc.utils.decimal_utils import DECIMAL_PRECISION, OUTPUT_PLACES, try_parse_decimal

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/portfolio_calc.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class DecimalConfig(BaseModel):
    """Arithmetic settings. Informational: the context itself is fixed at import."""

    model_config = ConfigDict(frozen=True)

    precision: int = DECIMAL_PRECISION
    output_places: int = OUTPUT_PLACES

    @field_validator("precision")
    @classmethod
    def validate_precision(cls, v: int) -> int:
        if v != DECIMAL_PRECISION:
            raise ValueError(
                f"precision is fixed at {DECIMAL_PRECISION} significant digits, got {v}."
            )
        return v

    @field_validator("output_places")
    @classmethod
    def validate_output_places(cls, v: int) -> int:
        if v != OUTPUT_PLACES:
            raise ValueError(
                f"output_places is fixed at {OUTPUT_PLACES} fractional digits, got {v}."
            )
        return v


class CurrencyConfig(BaseModel):
    """Currency conversion settings."""

    model_config = ConfigDict(frozen=True)

    supported: list[str] = list(SUPPORTED_CURRENCIES)
    base_currency: str = "USD"
    stale_threshold_hours: float = 24.0
    emit_events: bool = True
    system_user_id: str = "system"

    @field_validator("supported")
    @classmethod
    def normalize_supported(cls, v: list[str]) -> list[str]:
        return [code.strip().upper() for code in v]

    @field_validator("base_currency")
    @classmethod
    def normalize_base(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("stale_threshold_hours")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"stale_threshold_hours must be > 0, got {v}.")
        return v


class ScoringConfig(BaseModel):
    """Scoring run defaults."""

    model_config = ConfigDict(frozen=True)

    default_market: str = ""


class RecommendationsConfig(BaseModel):
    """Recommendation allocator settings."""

    model_config = ConfigDict(frozen=True)

    default_score: str = "50.0000"
    total_tolerance: str = "0.0001"

    @field_validator("default_score", "total_tolerance")
    @classmethod
    def validate_decimal(cls, v: str) -> str:
        if try_parse_decimal(v) is None:
            raise ValueError(f"Expected a decimal string, got '{v}'.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/portfolio_calc.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    decimal: DecimalConfig = DecimalConfig()
    currency: CurrencyConfig = CurrencyConfig()
    scoring: ScoringConfig = ScoringConfig()
    recommendations: RecommendationsConfig = RecommendationsConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply PORTFOLIO_CALC_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply PORTFOLIO_CALC_* env vars to the raw config dict.

    Supported overrides:
      PORTFOLIO_CALC_DB_PATH        → raw["database"]["db_path"]
      PORTFOLIO_CALC_LOG_LEVEL      → raw["logging"]["level"]
      PORTFOLIO_CALC_BASE_CURRENCY  → raw["currency"]["base_currency"]
      PORTFOLIO_CALC_EMIT_EVENTS    → raw["currency"]["emit_events"]
      PORTFOLIO_CALC_DEBUG          → raw["debug"]
    """
    if db_path := os.environ.get("PORTFOLIO_CALC_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("PORTFOLIO_CALC_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if base_currency := os.environ.get("PORTFOLIO_CALC_BASE_CURRENCY"):
        raw.setdefault("currency", {})["base_currency"] = base_currency

    if emit_events := os.environ.get("PORTFOLIO_CALC_EMIT_EVENTS"):
        raw.setdefault("currency", {})["emit_events"] = _is_truthy(emit_events)

    if debug := os.environ.get("PORTFOLIO_CALC_DEBUG"):
        raw["debug"] = _is_truthy(debug)

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        decimal=DecimalConfig(**raw.get("decimal", {})),
        currency=CurrencyConfig(**raw.get("currency", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        recommendations=RecommendationsConfig(**raw.get("recommendations", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
