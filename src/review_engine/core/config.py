"""Configuration schemas and loading for the review engine."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from review_engine.core.errors import ConfigurationError

EXECUTION_API_KEY_ENV = "REVIEW_ENGINE_EXECUTION_API_KEY"
MIN_EXPECTED_REVIEWS = 2


class ExecutionConfig(BaseModel):
    """Settings for the external code execution service."""

    base_url: str = "http://localhost:8080"
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    default_language: str = "cpp"
    api_key: str | None = None

    def get_api_key(self) -> str | None:
        """Get the API key from config or environment (may be absent)."""
        return self.api_key or os.environ.get(EXECUTION_API_KEY_ENV)


class FinalizationConfig(BaseModel):
    """Coding phase finalization timing.

    Attributes:
        grace_period_seconds: Time after the coding phase ends during which
            late automatic submissions are still absorbed.
        phase_end_buffer_seconds: Extra time added to a phase computed from
            start + duration.
    """

    grace_period_seconds: float = Field(default=20.0, ge=0)
    phase_end_buffer_seconds: float = Field(default=5.0, ge=0)


class AssignmentConfig(BaseModel):
    """Peer review assignment defaults."""

    default_expected_reviews: int = MIN_EXPECTED_REVIEWS
    seed: int | None = None

    @field_validator("default_expected_reviews")
    @classmethod
    def validate_expected_reviews(cls, v: int) -> int:
        if v < MIN_EXPECTED_REVIEWS:
            msg = f"default_expected_reviews must be at least {MIN_EXPECTED_REVIEWS}"
            raise ValueError(msg)
        return v


class EngineConfig(BaseModel):
    """Complete review engine configuration."""

    database_url: str = "sqlite:///./review_engine.db"
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    finalization: FinalizationConfig = Field(default_factory=FinalizationConfig)
    assignment: AssignmentConfig = Field(default_factory=AssignmentConfig)
    dry_run: bool = False

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if "://" not in v:
            msg = "database_url must be an SQLAlchemy URL (e.g. sqlite:///./review.db)"
            raise ValueError(msg)
        return v


def load_config(path: str | Path) -> EngineConfig:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to YAML configuration file.

    Returns:
        Validated EngineConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigurationError: If the file is not a YAML mapping.
        pydantic.ValidationError: If config values are invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open() as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a mapping at the top of {config_path}",
            "Write the configuration as YAML key/value pairs.",
        )

    return EngineConfig.model_validate(data)
