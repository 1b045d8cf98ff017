# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for content-tree context, pipeline tuning knobs,
storage backends and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Content tree context ===
    content_org: str = ""
    content_repo: str = ""
    content_token: str = ""
    content_api_base_url: str = "https://admin.da.live"

    # === Remote store ===
    store_backend: Literal["http", "local"] = "http"
    store_local_root: Path = Path("./content")
    store_max_retries: int = 3
    store_retry_base_delay_s: float = 1.0
    store_rate_limit_delay_s: float = 0.1
    store_timeout_s: float = 30.0

    # === Local cache ===
    cache_backend: Literal["sqlite", "json"] = "sqlite"
    cache_root: Path = Path("~/.mediaindex/cache")

    # === Discovery ===
    discovery_excludes: str = ""

    # === Scanning ===
    scan_batch_size: int = 10
    worker_pool_size: int = 1
    worker_init_timeout_s: float = 10.0
    internal_domains: str = ""

    # === Uploads ===
    upload_batch_size: int = 50
    upload_delay_s: float = 1.0
    upload_max_retries: int = 3
    upload_retry_base_delay_s: float = 1.0

    # === Sessions ===
    session_stale_threshold_s: int = 300
    session_heartbeat_interval_s: float = 30.0
    session_max_age_s: int = 86400
    session_user_id: str = "cli"

    # === Audit ===
    audit_log_max_entries: int = 1000

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator(
        "scan_batch_size", "upload_batch_size", "worker_pool_size",
        "audit_log_max_entries",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("store_max_retries", "upload_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        """At least one attempt is always made."""
        if v < 1:
            raise ValueError("retry count must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.upload_delay_s < 0 or self.store_rate_limit_delay_s < 0:
            errors.append("delays must be >= 0")

        if self.worker_init_timeout_s <= 0:
            errors.append("WORKER_INIT_TIMEOUT_S must be > 0")

        if self.session_heartbeat_interval_s >= self.session_stale_threshold_s:
            errors.append(
                "SESSION_HEARTBEAT_INTERVAL_S must be < SESSION_STALE_THRESHOLD_S"
            )

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def internal_domains_list(self) -> list[str]:
        """Parse comma-separated internal media hosts."""
        return [d.strip().lower() for d in self.internal_domains.split(",") if d.strip()]

    @property
    def discovery_excludes_list(self) -> list[str]:
        """Parse comma-separated discovery exclusion patterns."""
        return [p.strip() for p in self.discovery_excludes.split(",") if p.strip()]

    @property
    def stale_threshold_ms(self) -> int:
        return self.session_stale_threshold_s * 1000

    @property
    def session_max_age_ms(self) -> int:
        return self.session_max_age_s * 1000


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Key-value pairs that override .env values.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If validation fails.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
