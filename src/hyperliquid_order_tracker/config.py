"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Hyperliquid Order Tracker, loading and validating environment variables
once at startup. The resulting Settings object is frozen and passed
explicitly into the pipeline.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_CHECK_INTERVAL = "*/30 * * * * *"
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

_EVERY_PATTERN = re.compile(
    r"^every\s+(\d+)\s+(second|seconds|sec|secs|s|minute|minutes|min|mins|m)$"
)
_STEP_PATTERN = re.compile(r"^\*/(\d+)$")


def parse_schedule_seconds(schedule: str) -> int:
    """Convert a polling schedule string into a fixed interval in seconds.

    Accepted forms:
    - plain integer seconds: ``"30"``
    - ``"every 30 seconds"`` / ``"every 5 minutes"``
    - 6-field cron with a seconds step: ``"*/30 * * * * *"``
    - 5-field cron with a minutes step: ``"*/5 * * * *"``

    Raises:
        ValueError: If the schedule cannot be expressed as a fixed interval.
    """
    text = schedule.strip().lower()
    if not text:
        raise ValueError("Schedule must not be empty")

    if text.isdigit():
        seconds = int(text)
    elif match := _EVERY_PATTERN.match(text):
        amount = int(match.group(1))
        seconds = amount * 60 if match.group(2).startswith("m") else amount
    else:
        fields = text.split()
        if len(fields) not in (5, 6) or any(f != "*" for f in fields[1:]):
            raise ValueError(f"Unsupported schedule {schedule!r}")
        step = _STEP_PATTERN.match(fields[0])
        if fields[0] == "*":
            step_value = 1
        elif step:
            step_value = int(step.group(1))
        else:
            raise ValueError(f"Unsupported schedule {schedule!r}")
        seconds = step_value if len(fields) == 6 else step_value * 60

    if seconds <= 0:
        raise ValueError("Schedule interval must be positive")
    return seconds


class HyperliquidSettings(BaseSettings):
    """Hyperliquid info API settings."""

    model_config = SettingsConfigDict(env_prefix="HYPERLIQUID_", extra="ignore", frozen=True)

    info_url: str = Field(
        default="https://api.hyperliquid.xyz/info",
        alias="HYPERLIQUID_INFO_URL",
        description="Hyperliquid info endpoint (openOrders / allMids / meta)",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="HYPERLIQUID_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Total timeout for a single info request",
    )
    max_retries: int = Field(
        default=2,
        alias="HYPERLIQUID_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries for transient (429/5xx/network) failures per request",
    )

    @field_validator("info_url")
    @classmethod
    def validate_info_url(cls, v: str) -> str:
        """Validate info URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("HYPERLIQUID_INFO_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class TrackerSettings(BaseSettings):
    """Large-order detection and scheduling settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", frozen=True)

    target_address: str | None = Field(
        default=None,
        alias="TARGET_ADDRESS",
        description="Account address whose open orders are monitored",
    )
    large_order_threshold: int = Field(
        default=50_000,
        alias="LARGE_ORDER_THRESHOLD",
        gt=0,
        description="Minimum order value (USD) that triggers an alert",
    )
    check_interval: str = Field(
        default=DEFAULT_CHECK_INTERVAL,
        alias="CHECK_INTERVAL",
        description="Polling schedule (seconds, 'every N seconds' or cron step)",
    )
    cleanup_interval_seconds: int = Field(
        default=24 * 3600,
        alias="CLEANUP_INTERVAL_SECONDS",
        ge=60,
        le=7 * 24 * 3600,
        description="How often expired seen-order records are swept",
    )

    @field_validator("target_address")
    @classmethod
    def validate_target_address(cls, v: str | None) -> str | None:
        """Validate and normalize the monitored address."""
        if v is None:
            return v
        v = v.strip()
        if not ADDRESS_PATTERN.match(v):
            raise ValueError("TARGET_ADDRESS must be a 0x-prefixed 40 hex character address")
        return v.lower()

    @field_validator("check_interval")
    @classmethod
    def validate_check_interval(cls, v: str) -> str:
        parse_schedule_seconds(v)
        return v

    @property
    def check_interval_seconds(self) -> int:
        """Polling interval in seconds."""
        return parse_schedule_seconds(self.check_interval)


class LedgerSettings(BaseSettings):
    """Seen-order ledger storage settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", frozen=True)

    backend: Literal["file", "redis"] = Field(
        default="file",
        alias="LEDGER_BACKEND",
        description="Where seen orders are persisted",
    )
    path: Path = Field(
        default=Path("seenOrders.json"),
        alias="SEEN_ORDERS_PATH",
        description="JSON file used by the file ledger",
    )
    redis_url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string for the redis ledger",
    )
    redis_key: str = Field(
        default="hyperliquid:seen_orders",
        alias="LEDGER_REDIS_KEY",
        description="Redis hash holding seen-order records",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore", frozen=True)

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_id: str | None = Field(
        default=None,
        alias="TELEGRAM_CHAT_ID",
        description="Telegram chat ID for alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled. Blank values count as unset."""
        if self.bot_token is None or not self.bot_token.get_secret_value().strip():
            return False
        return bool(self.chat_id and self.chat_id.strip())


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from hyperliquid_order_tracker.config import get_settings

        settings = get_settings()
        print(settings.tracker.target_address)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
        frozen=True,
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    hyperliquid: HyperliquidSettings = Field(
        default_factory=lambda: HyperliquidSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    tracker: TrackerSettings = Field(
        default_factory=lambda: TrackerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ledger: LedgerSettings = Field(
        default_factory=lambda: LedgerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )
    send_startup_message: bool = Field(
        default=False,
        alias="SEND_STARTUP_MESSAGE",
        description="Send a notification when the tracker starts",
    )
    debug_mode: bool = Field(
        default=False,
        alias="DEBUG_MODE",
        description="Probe the info API and log response shapes at startup",
    )
    test_telegram: bool = Field(
        default=False,
        alias="TEST_TELEGRAM",
        description="Send a Telegram test message at startup",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "hyperliquid": {
                "info_url": self.hyperliquid.info_url,
                "request_timeout_seconds": str(self.hyperliquid.request_timeout_seconds),
                "max_retries": str(self.hyperliquid.max_retries),
            },
            "tracker": {
                "target_address": self.tracker.target_address or "(not set)",
                "large_order_threshold": str(self.tracker.large_order_threshold),
                "check_interval": self.tracker.check_interval,
                "cleanup_interval_seconds": str(self.tracker.cleanup_interval_seconds),
            },
            "ledger": {
                "backend": self.ledger.backend,
                "path": str(self.ledger.path),
                "redis_url": self._redact_url(self.ledger.redis_url),
            },
            "telegram_enabled": str(self.telegram.enabled),
            "telegram_bot_token": "(set)" if self.telegram.bot_token else "(not set)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
            "send_startup_message": str(self.send_startup_message),
            "debug_mode": str(self.debug_mode),
            "test_telegram": str(self.test_telegram),
        }

    def validate_requirements(
        self,
        *,
        command: Literal["run", "check-once", "sweep", "test-telegram", "debug-api"],
    ) -> None:
        """Validate command-specific requirements.

        Commands that poll the order book refuse to run without an address
        to monitor. A missing Telegram configuration is never fatal: alerts
        degrade to log lines.
        """
        if command in ("run", "check-once") and not self.tracker.target_address:
            raise ValueError("TARGET_ADDRESS is required to monitor open orders")
        if command == "test-telegram" and not self.telegram.enabled:
            raise ValueError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are required for test-telegram")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
