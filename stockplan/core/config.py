"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the engine for
environment variables and provides helper functions to load the YAML file
holding the forecasting coefficients and planning thresholds.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

LOGGER = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directory holding settings.yaml
    config_dir: str = os.getenv("CONFIG_DIR", "configs")

    # Directory holding items/inventory/demand tables for file-backed sources
    data_dir: str = os.getenv("DATA_DIR", "data")

    # Upper bound on concurrent per-item planning workers (1 = sequential)
    stockplan_max_workers: int = int(os.getenv("STOCKPLAN_MAX_WORKERS", "1"))


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    A ``.env`` file at the repository root is loaded first when present.
    """
    load_dotenv(BASE_DIR / ".env")
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _coefficient(raw: Dict[str, Any], key: str, default: float) -> float:
    value = float(raw.get(key, default))
    if not 0.0 < value <= 1.0:
        LOGGER.warning(
            "Configured %s=%s is outside (0, 1]; using default %.2f", key, value, default
        )
        return default
    return value


@dataclass(frozen=True)
class ForecastConfig:
    """Holt-Winters coefficients and horizon read from ``settings.yaml``."""

    alpha: float = 0.2
    beta: float = 0.1
    gamma: float = 0.3
    seasonal_period: int = 12
    horizon_periods: int = 6
    z_value: float = 1.96
    history_months: int = 36

    @classmethod
    def from_mapping(cls, raw: Dict[str, Any]) -> "ForecastConfig":
        defaults = cls()
        seasonal_period = int(raw.get("seasonal_period", defaults.seasonal_period))
        if seasonal_period < 2:
            LOGGER.warning(
                "Configured seasonal_period=%s is too small; using default %s",
                seasonal_period,
                defaults.seasonal_period,
            )
            seasonal_period = defaults.seasonal_period
        horizon = max(int(raw.get("horizon_periods", defaults.horizon_periods)), 1)
        return cls(
            alpha=_coefficient(raw, "alpha", defaults.alpha),
            beta=_coefficient(raw, "beta", defaults.beta),
            gamma=_coefficient(raw, "gamma", defaults.gamma),
            seasonal_period=seasonal_period,
            horizon_periods=horizon,
            z_value=max(float(raw.get("z_value", defaults.z_value)), 0.0),
            history_months=max(int(raw.get("history_months", defaults.history_months)), 1),
        )


@dataclass(frozen=True)
class PlanningConfig:
    """Planning horizon and worker pool size read from ``settings.yaml``."""

    planning_horizon_days: int = 90
    max_workers: int = 1

    @classmethod
    def from_mapping(cls, raw: Dict[str, Any], max_workers: int | None = None) -> "PlanningConfig":
        defaults = cls()
        horizon = int(raw.get("planning_horizon_days", defaults.planning_horizon_days))
        if horizon <= 0:
            LOGGER.warning(
                "Configured planning_horizon_days=%s is not positive; using default %s",
                horizon,
                defaults.planning_horizon_days,
            )
            horizon = defaults.planning_horizon_days
        workers = max_workers if max_workers is not None else raw.get("max_workers", defaults.max_workers)
        return cls(planning_horizon_days=horizon, max_workers=max(int(workers), 1))


def load_forecast_config(config_root: str | None = None) -> ForecastConfig:
    root = config_root or get_settings().config_dir
    settings = load_yaml(os.path.join(root, "settings.yaml"))
    return ForecastConfig.from_mapping(settings.get("forecasting") or {})


def load_planning_config(config_root: str | None = None) -> PlanningConfig:
    env = get_settings()
    root = config_root or env.config_dir
    settings = load_yaml(os.path.join(root, "settings.yaml"))
    raw = settings.get("planning") or {}
    workers = raw.get("max_workers", env.stockplan_max_workers)
    return PlanningConfig.from_mapping(raw, max_workers=int(workers))
