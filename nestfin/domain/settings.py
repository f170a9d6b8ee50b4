"""Application settings with Pydantic validation.

Settings are stored as JSON and validated using Pydantic models.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    model_config = {"validate_assignment": True}


class StorageSettings(BaseModel):
    """Document store backend configuration."""

    backend: str = Field(default="memory", pattern="^(memory|sqlite)$")
    database_path: Optional[Path] = None  # Required for sqlite

    model_config = {"validate_assignment": True}


class SyncSettings(BaseModel):
    """Realtime subscription and write behaviour.

    Controls staleness detection for subscriptions, how often health is
    checked, and how hard the store tries to recover a failed subscription.
    """

    stale_after_seconds: int = Field(default=300, ge=10, le=86400)
    health_check_interval_seconds: int = Field(default=30, ge=5, le=300)
    max_resubscribe_attempts: int = Field(default=5, ge=0, le=20)
    increment_max_retries: int = Field(default=10, ge=1, le=100)

    model_config = {"validate_assignment": True}


class AnalyticsSettings(BaseModel):
    """Defaults for the derived dashboard views."""

    default_expense_category: str = "General"
    default_income_category: str = "Income"
    breakdown_limit: int = Field(default=5, ge=1, le=50)
    trend_top_n: int = Field(default=5, ge=1, le=50)
    waterfall_top_n: int = Field(default=4, ge=1, le=20)
    projection_years: int = Field(default=5, ge=1, le=50)
    projection_rate: float = Field(default=0.05, ge=0.0, le=1.0)

    model_config = {"validate_assignment": True}


class PlanSettings(BaseModel):
    """Limits that apply to free-plan users."""

    max_free_budgets: int = Field(default=5, ge=1, le=100)

    model_config = {"validate_assignment": True}


class AppSettings(BaseModel):
    """Application settings with validation.

    All settings are validated using Pydantic. Invalid values will raise
    validation errors when loading from JSON.

    Example:
        >>> settings = AppSettings()
        >>> settings.storage.backend = "sqlite"
        >>> settings.analytics.waterfall_top_n = 3
    """

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    plans: PlanSettings = Field(default_factory=PlanSettings)

    model_config = {
        "validate_assignment": True,  # Validate on attribute assignment
        "extra": "forbid",  # Forbid extra fields
    }
