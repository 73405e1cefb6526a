"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the EMP
monitor, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _parse_address_list(v: object, *, env_name: str) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        parts = tuple(p.strip() for p in v.split(",") if p.strip())
    elif isinstance(v, (list, tuple, set, frozenset)):
        parts = tuple(str(x).strip() for x in v)
    else:
        raise TypeError(f"Invalid {env_name} type")
    for part in parts:
        if not _ADDRESS_RE.match(part):
            raise ValueError(f"{env_name} contains an invalid address: {part}")
    return parts


class LedgerSettings(BaseSettings):
    """Ethereum RPC and monitored contract settings."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_", extra="ignore")

    rpc_url: str = Field(
        default="http://localhost:8545",
        alias="LEDGER_RPC_URL",
        description="Primary Ethereum RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="LEDGER_FALLBACK_RPC_URL",
        description="Fallback Ethereum RPC endpoint",
    )
    emp_address: str = Field(
        alias="LEDGER_EMP_ADDRESS",
        description="Address of the monitored ExpiringMultiParty contract",
    )
    max_requests_per_second: float = Field(
        default=10.0,
        alias="LEDGER_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Rate limit for RPC calls",
    )
    max_retries: int = Field(
        default=3,
        alias="LEDGER_MAX_RETRIES",
        ge=1,
        le=20,
        description="Maximum attempts per RPC endpoint",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("emp_address")
    @classmethod
    def validate_emp_address(cls, v: str) -> str:
        if not _ADDRESS_RE.match(v):
            raise ValueError("LEDGER_EMP_ADDRESS must be a 0x-prefixed 20-byte hex address")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional block timestamp cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is not None and not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class EventClientSettings(BaseSettings):
    """Event ingestion settings."""

    model_config = SettingsConfigDict(env_prefix="EVENT_CLIENT_", extra="ignore")

    update_threshold_seconds: int = Field(
        default=60,
        alias="EVENT_CLIENT_UPDATE_THRESHOLD_SECONDS",
        ge=0,
        le=86_400,
        description="Minimum seconds between non-forced ledger refreshes",
    )
    poll_interval_seconds: int = Field(
        default=10,
        alias="EVENT_CLIENT_POLL_INTERVAL_SECONDS",
        ge=1,
        le=3600,
        description="Sleep between polling iterations",
    )


class MonitorSettings(BaseSettings):
    """Contract monitor settings."""

    model_config = SettingsConfigDict(env_prefix="MONITOR_", extra="ignore")

    liquidator_bot_addresses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="MONITOR_LIQUIDATOR_BOT_ADDRESSES",
        description="Monitored liquidator bot addresses (comma-separated)",
    )
    dispute_bot_addresses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="MONITOR_DISPUTE_BOT_ADDRESSES",
        description="Monitored dispute bot addresses (comma-separated)",
    )
    dedupe: bool = Field(
        default=True,
        alias="MONITOR_DEDUPE",
        description="Alert on each record once; disable to re-alert the full history every check",
    )
    interval_seconds: int = Field(
        default=60,
        alias="MONITOR_INTERVAL_SECONDS",
        ge=1,
        le=3600,
        description="How often to check for new events to alert on",
    )
    collateral_symbol: str = Field(
        default="DAI",
        alias="MONITOR_COLLATERAL_SYMBOL",
        description="Collateral currency symbol shown in alerts",
    )
    synthetic_symbol: str = Field(
        default="UMATEST",
        alias="MONITOR_SYNTHETIC_SYMBOL",
        description="Synthetic token symbol shown in alerts",
    )
    explorer_url: str = Field(
        default="https://etherscan.io",
        alias="MONITOR_EXPLORER_URL",
        description="Block explorer base URL for alert links",
    )
    price: Decimal | None = Field(
        default=None,
        alias="MONITOR_PRICE",
        description="Constant synthetic price used when no price resolver is supplied",
    )

    @field_validator("liquidator_bot_addresses", mode="before")
    @classmethod
    def _parse_liquidator_bots(cls, v: object) -> tuple[str, ...]:
        return _parse_address_list(v, env_name="MONITOR_LIQUIDATOR_BOT_ADDRESSES")

    @field_validator("dispute_bot_addresses", mode="before")
    @classmethod
    def _parse_dispute_bots(cls, v: object) -> tuple[str, ...]:
        return _parse_address_list(v, env_name="MONITOR_DISPUTE_BOT_ADDRESSES")

    @field_validator("explorer_url")
    @classmethod
    def validate_explorer_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("MONITOR_EXPLORER_URL must be an HTTP(S) URL")
        return v.rstrip("/")

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v <= 0:
            raise ValueError("MONITOR_PRICE must be > 0")
        return v


class SlackSettings(BaseSettings):
    """Slack notification settings."""

    model_config = SettingsConfigDict(env_prefix="SLACK_", extra="ignore")

    webhook_url: SecretStr | None = Field(
        default=None,
        alias="SLACK_WEBHOOK_URL",
        description="Slack incoming webhook URL for alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Slack notifications are enabled."""
        return self.webhook_url is not None


class DiscordSettings(BaseSettings):
    """Discord notification settings."""

    model_config = SettingsConfigDict(env_prefix="DISCORD_", extra="ignore")

    webhook_url: SecretStr | None = Field(
        default=None,
        alias="DISCORD_WEBHOOK_URL",
        description="Discord webhook URL for alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Discord notifications are enabled."""
        return self.webhook_url is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files.

    Example:
        ```python
        from emp_monitor.config import get_settings

        settings = get_settings()
        print(settings.ledger.emp_address)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    ledger: LedgerSettings = Field(
        default_factory=lambda: LedgerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    event_client: EventClientSettings = Field(
        default_factory=lambda: EventClientSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    monitor: MonitorSettings = Field(
        default_factory=lambda: MonitorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    slack: SlackSettings = Field(
        default_factory=lambda: SlackSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    discord: DiscordSettings = Field(
        default_factory=lambda: DiscordSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

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

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted."""
        return {
            "ledger": {
                "rpc_url": self._redact_url(self.ledger.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.ledger.fallback_rpc_url)
                    if self.ledger.fallback_rpc_url
                    else "(not set)"
                ),
                "emp_address": self.ledger.emp_address,
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "event_client": {
                "update_threshold_seconds": str(self.event_client.update_threshold_seconds),
                "poll_interval_seconds": str(self.event_client.poll_interval_seconds),
            },
            "monitor": {
                "liquidator_bots": str(len(self.monitor.liquidator_bot_addresses)),
                "dispute_bots": str(len(self.monitor.dispute_bot_addresses)),
                "dedupe": str(self.monitor.dedupe),
                "interval_seconds": str(self.monitor.interval_seconds),
                "price": str(self.monitor.price) if self.monitor.price is not None else "(not set)",
            },
            "slack_enabled": str(self.slack.enabled),
            "discord_enabled": str(self.discord.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

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

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
