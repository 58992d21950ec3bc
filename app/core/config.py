from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field


class EngineSettings(BaseModel):
    """Tunable parameters of the forecasting / optimization engine.

    Thresholds and EOQ cost constants are global defaults; per-product
    overrides are not supported yet.
    """

    # Demand history
    history_window_days: int = Field(180, ge=1, le=3650)
    anomaly_window_days: int = Field(90, ge=1, le=3650)

    # Model selection
    min_history_days: int = Field(30, ge=1)
    min_training_windows: int = Field(10, ge=1)

    # Neural training
    epochs: int = Field(50, ge=1)
    batch_size: int = Field(8, ge=1)
    validation_split: float = Field(0.2, ge=0.0, lt=1.0)
    learning_rate: float = Field(0.001, gt=0.0)
    training_timeout_seconds: float = Field(120.0, gt=0.0)
    hidden_units: tuple[int, int] = (64, 32)
    dropout_rate: float = Field(0.2, ge=0.0, lt=1.0)

    # Anomaly detection
    anomaly_min_observations: int = Field(14, ge=8)
    anomaly_z_threshold: float = Field(2.0, gt=0.0)
    anomaly_z_medium: float = Field(2.5, gt=0.0)
    anomaly_z_high: float = Field(3.0, gt=0.0)

    # Stock optimization (EOQ + safety stock)
    ordering_cost: float = Field(50.0, ge=0.0)
    holding_cost_rate: float = Field(0.25, gt=0.0)
    default_holding_cost: float = Field(10.0, gt=0.0)
    lead_time_days: float = Field(7.0, ge=0.0)
    service_level_z: float = Field(1.645, ge=0.0)
    risk_horizon_days: float = Field(7.0, gt=0.0)

    # Forecast horizon and caching
    default_horizon_days: int = Field(30, ge=1, le=365)
    max_horizon_days: int = Field(365, ge=1, le=365)
    cache_ttl_seconds: int = Field(3600, ge=1)

    # Collaborators
    models_dir: Path = Path("./models")
    redis_url: str | None = None


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value


def load_settings() -> EngineSettings:
    """Build settings from AI_* environment variables, falling back to defaults."""

    mapping = {
        "history_window_days": "AI_HISTORY_WINDOW_DAYS",
        "anomaly_window_days": "AI_ANOMALY_WINDOW_DAYS",
        "min_history_days": "AI_MIN_HISTORY_DAYS",
        "min_training_windows": "AI_MIN_TRAINING_WINDOWS",
        "epochs": "AI_TRAINING_EPOCHS",
        "batch_size": "AI_TRAINING_BATCH_SIZE",
        "validation_split": "AI_TRAINING_VALIDATION_SPLIT",
        "learning_rate": "AI_TRAINING_LEARNING_RATE",
        "training_timeout_seconds": "AI_TRAINING_TIMEOUT_SECONDS",
        "anomaly_z_threshold": "AI_ANOMALY_Z_THRESHOLD",
        "anomaly_z_medium": "AI_ANOMALY_Z_MEDIUM",
        "anomaly_z_high": "AI_ANOMALY_Z_HIGH",
        "ordering_cost": "AI_ORDERING_COST",
        "holding_cost_rate": "AI_HOLDING_COST_RATE",
        "default_holding_cost": "AI_DEFAULT_HOLDING_COST",
        "lead_time_days": "AI_LEAD_TIME_DAYS",
        "service_level_z": "AI_SERVICE_LEVEL_Z",
        "cache_ttl_seconds": "AI_CACHE_TTL_SECONDS",
        "models_dir": "AI_MODELS_DIR",
        "redis_url": "REDIS_URL",
    }

    values: dict[str, str] = {}
    for field_name, env_name in mapping.items():
        raw = _env(env_name)
        if raw is not None:
            values[field_name] = raw

    # pydantic coerces the raw strings and enforces the ranges above
    return EngineSettings(**values)
