# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings. The batch
defaults are turned into an immutable GlobalBatchConfig snapshot; a hot
reload is a fresh load_settings() whose snapshot is applied to new jobs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from audiobatch.core.models import GlobalBatchConfig, JobFailurePolicy, RetryConfig
from audiobatch.logging.handlers import parse_size


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Global batch defaults ===
    batch_max_concurrent_files: int = 5
    batch_retry_enabled: bool = True
    batch_max_retries: int = 3
    batch_retry_delay_seconds: float = 60.0
    batch_exponential_backoff: bool = True
    batch_auto_start: bool = True
    batch_immediate_processing: bool = True
    batch_background_processing: bool = True
    batch_job_failure_policy: Literal["any_failure", "all_failed"] = "any_failure"

    # === Downloads ===
    download_dir: Path = Path("./uploads")
    download_timeout_seconds: float = 300.0

    # === Analysis collaborator ===
    analysis_endpoint: str = ""
    analysis_timeout_seconds: float = 600.0

    # === Configuration store ===
    store_backend: Literal["memory", "json"] = "memory"
    store_path: Path = Path("~/.audiobatch/store.json")
    reconcile_on_startup: bool = True

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("batch_max_concurrent_files")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:  # noqa: N805
        if not 1 <= v <= 20:
            raise ValueError("batch_max_concurrent_files must be between 1 and 20")
        return v

    @field_validator("batch_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:  # noqa: N805
        if not 0 <= v <= 10:
            raise ValueError("batch_max_retries must be between 0 and 10")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if not 0 <= self.batch_retry_delay_seconds <= 300:
            errors.append("BATCH_RETRY_DELAY_SECONDS must be between 0 and 300")

        if self.download_timeout_seconds <= 0:
            errors.append("DOWNLOAD_TIMEOUT_SECONDS must be > 0")

        if self.analysis_timeout_seconds <= 0:
            errors.append("ANALYSIS_TIMEOUT_SECONDS must be > 0")

        if self.batch_background_processing is False and self.batch_auto_start:
            errors.append("BATCH_AUTO_START requires BATCH_BACKGROUND_PROCESSING")

        try:
            parse_size(self.log_rotation)
        except ValueError:
            errors.append(f"LOG_ROTATION must look like '10MB', got {self.log_rotation!r}")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    def global_batch_config(self) -> GlobalBatchConfig:
        """Build the immutable global batch snapshot from these settings."""
        return GlobalBatchConfig(
            max_concurrent_files=self.batch_max_concurrent_files,
            retry_config=RetryConfig(
                enabled=self.batch_retry_enabled,
                max_retries=self.batch_max_retries,
                delay_seconds=self.batch_retry_delay_seconds,
                exponential_backoff=self.batch_exponential_backoff,
            ),
            auto_start=self.batch_auto_start,
            immediate_processing=self.batch_immediate_processing,
            background_processing=self.batch_background_processing,
            job_failure_policy=JobFailurePolicy(self.batch_job_failure_policy),
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or hot reload).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
