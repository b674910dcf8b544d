"""Process configuration loaded from environment variables."""

from __future__ import annotations

import logging
from functools import lru_cache

import httpx
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings

from aues_sync.exceptions import ConfigurationError

# Required values, checked before any scheduler starts.
REQUIRED_FIELDS = ("cron_secret", "dashboard_url", "member_sync_url")

_MODEL_CONFIG = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


class RequiredValues(BaseSettings):
    """The required values only, read without validation.

    Loaded separately so that missing values are still reported when some
    other value fails validation.
    """

    # --- Required ---
    cron_secret: str = ""  # shared bearer token for every endpoint
    dashboard_url: str = ""  # orders sync endpoint (fixed interval)
    member_sync_url: str = ""  # member sync endpoint (adaptive interval)

    model_config = _MODEL_CONFIG

    def missing_values(self) -> list[str]:
        """Return the env var names of required values that are unset or blank."""
        return [name.upper() for name in REQUIRED_FIELDS if not getattr(self, name).strip()]


class Settings(RequiredValues):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- Logging ---
    log_level: str = "INFO"

    # --- Scheduling ---
    orders_sync_interval_seconds: float = 10 * 60
    member_sync_default_seconds: float = 5 * 60

    # --- Retry policy ---
    sync_max_retries: int = 3
    sync_request_timeout_seconds: float = 30.0
    failure_warning_threshold: int = 5

    model_config = _MODEL_CONFIG

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level '{value}'")
        return value

    @field_validator("dashboard_url", "member_sync_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return value
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"malformed URL '{value}': {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"expected an http(s) URL with a host, got '{value}'")
        return value

    @field_validator(
        "orders_sync_interval_seconds",
        "member_sync_default_seconds",
        "sync_request_timeout_seconds",
    )
    @classmethod
    def _check_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("sync_max_retries", "failure_warning_threshold")
    @classmethod
    def _check_at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


def load_settings(**overrides) -> Settings:
    """Build and validate Settings.

    Every missing required value and every invalid value is collected into a
    single error.

    Raises:
        ConfigurationError: If a required value is missing or any value is invalid.
    """
    required_overrides = {
        key: value
        for key, value in overrides.items()
        if key.startswith("_") or key in REQUIRED_FIELDS
    }
    missing = RequiredValues(**required_overrides).missing_values()

    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        invalid = [
            f"{'.'.join(str(p) for p in err['loc']).upper()}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError(missing=missing, invalid=invalid) from exc

    if missing:
        raise ConfigurationError(missing=missing)
    return settings


@lru_cache
def get_settings() -> Settings:
    return load_settings()
