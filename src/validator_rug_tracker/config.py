"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Validator Rug Tracker application, loading and validating
environment variables at startup.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from decimal import Decimal
from functools import lru_cache
from typing import Literal, TypeVar

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_S = TypeVar("_S", bound=BaseSettings)


def _from_env_file(cls: type[_S]) -> Callable[[], _S]:
    """Default factory for a nested group that also reads `.env`."""
    return lambda: cls(_env_file=_ENV_FILE, _env_file_encoding=_ENV_FILE_ENCODING)


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class RpcSettings(BaseSettings):
    """Solana RPC and Jito API settings."""

    model_config = SettingsConfigDict(env_prefix="RPC_", extra="ignore")

    url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        alias="RPC_URL",
        description="Solana JSON-RPC endpoint",
    )
    timeout_seconds: float = Field(
        default=30.0,
        alias="RPC_TIMEOUT_SECONDS",
        ge=1.0,
        le=300.0,
        description="Per-request timeout for chain reads",
    )
    max_retries: int = Field(
        default=3,
        alias="RPC_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries (exponential backoff) before a chain read is reported unavailable",
    )
    jito_api_url: str = Field(
        default="https://kobe.mainnet.jito.network/api/v1/validators",
        alias="JITO_API_URL",
        description="Jito validators endpoint providing MEV commission",
    )

    @field_validator("url", "jito_api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate endpoint URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC/Jito URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class ClassifierSettings(BaseSettings):
    """Commission change severity thresholds (percentage points)."""

    model_config = SettingsConfigDict(env_prefix="CLASSIFIER_", extra="ignore")

    rug_threshold: Decimal = Field(
        default=Decimal("50"),
        alias="CLASSIFIER_RUG_THRESHOLD",
        description="Increase (pp) at or above which a change is a RUG",
    )
    caution_threshold: Decimal = Field(
        default=Decimal("5"),
        alias="CLASSIFIER_CAUTION_THRESHOLD",
        description="Increase (pp) at or above which a change is a CAUTION",
    )
    max_commission: Decimal = Field(
        default=Decimal("100"),
        alias="CLASSIFIER_MAX_COMMISSION",
        description="Commission value that is always a RUG when newly reached",
    )
    mev_max_commission_is_rug: bool = Field(
        default=True,
        alias="CLASSIFIER_MEV_MAX_COMMISSION_IS_RUG",
        description="Apply the max-commission RUG rule to MEV commission as well",
    )

    @model_validator(mode="after")
    def validate_thresholds(self) -> ClassifierSettings:
        if not (Decimal("0") < self.caution_threshold < self.rug_threshold <= self.max_commission):
            raise ValueError(
                "Thresholds must satisfy 0 < CLASSIFIER_CAUTION_THRESHOLD < "
                "CLASSIFIER_RUG_THRESHOLD <= CLASSIFIER_MAX_COMMISSION"
            )
        return self


class UptimeSettings(BaseSettings):
    """Uptime accumulation settings."""

    model_config = SettingsConfigDict(env_prefix="UPTIME_", extra="ignore")

    check_interval_seconds: int = Field(
        default=60,
        alias="UPTIME_CHECK_INTERVAL_SECONDS",
        ge=10,
        le=3600,
        description="Seconds between delinquency checks; also the tick bucket size",
    )
    summary_days: int = Field(
        default=30,
        alias="UPTIME_SUMMARY_DAYS",
        ge=1,
        le=365,
        description="Default lookback for uptime summaries",
    )


class PipelineSettings(BaseSettings):
    """Periodic job settings."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_", extra="ignore")

    snapshot_interval_seconds: int = Field(
        default=900,
        alias="PIPELINE_SNAPSHOT_INTERVAL_SECONDS",
        ge=30,
        le=86_400,
        description="Seconds between commission snapshot ticks",
    )
    worker_concurrency: int = Field(
        default=8,
        alias="PIPELINE_WORKER_CONCURRENCY",
        ge=1,
        le=256,
        description="Maximum validators processed concurrently in one tick",
    )
    epoch_window: int = Field(
        default=10,
        alias="PIPELINE_EPOCH_WINDOW",
        ge=1,
        le=1000,
        description="Default number of epochs in per-epoch statistics",
    )
    job_run_retention_days: int = Field(
        default=30,
        alias="PIPELINE_JOB_RUN_RETENTION_DAYS",
        ge=1,
        le=3650,
        description="Days of tick run history kept for health checks",
    )


class EmailSettings(BaseSettings):
    """Resend email delivery settings."""

    model_config = SettingsConfigDict(env_prefix="EMAIL_", extra="ignore")

    resend_api_key: SecretStr | None = Field(
        default=None,
        alias="EMAIL_RESEND_API_KEY",
        description="Resend API key",
    )
    from_address: str | None = Field(
        default=None,
        alias="EMAIL_FROM",
        description="Sender address for alert emails",
    )
    api_url: str = Field(
        default="https://api.resend.com/emails",
        alias="EMAIL_API_URL",
        description="Resend send-email endpoint",
    )
    base_url: str = Field(
        default="https://rugalert.pumpkinspool.com",
        alias="EMAIL_BASE_URL",
        description="Public site URL used in links and unsubscribe footers",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="EMAIL_TIMEOUT_SECONDS",
        ge=1.0,
        le=120.0,
        description="Per-message delivery timeout",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("EMAIL_BASE_URL must be an HTTP(S) URL")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        """Check if email notifications are enabled."""
        return self.resend_api_key is not None and bool(self.from_address)


class DiscordSettings(BaseSettings):
    """Discord notification settings."""

    model_config = SettingsConfigDict(env_prefix="DISCORD_", extra="ignore")

    webhook_url: SecretStr | None = Field(
        default=None,
        alias="DISCORD_WEBHOOK_URL",
        description="Discord webhook URL for RUG alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Discord notifications are enabled."""
        return self.webhook_url is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from validator_rug_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.classifier.rug_threshold)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=_from_env_file(DatabaseSettings))
    redis: RedisSettings = Field(default_factory=_from_env_file(RedisSettings))
    rpc: RpcSettings = Field(default_factory=_from_env_file(RpcSettings))
    classifier: ClassifierSettings = Field(default_factory=_from_env_file(ClassifierSettings))
    uptime: UptimeSettings = Field(default_factory=_from_env_file(UptimeSettings))
    pipeline: PipelineSettings = Field(default_factory=_from_env_file(PipelineSettings))
    email: EmailSettings = Field(default_factory=_from_env_file(EmailSettings))
    discord: DiscordSettings = Field(default_factory=_from_env_file(DiscordSettings))

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
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "rpc": {
                "url": self._redact_url(self.rpc.url),
                "jito_api_url": self.rpc.jito_api_url,
                "timeout_seconds": str(self.rpc.timeout_seconds),
                "max_retries": str(self.rpc.max_retries),
            },
            "classifier": {
                "rug_threshold": str(self.classifier.rug_threshold),
                "caution_threshold": str(self.classifier.caution_threshold),
                "max_commission": str(self.classifier.max_commission),
                "mev_max_commission_is_rug": str(self.classifier.mev_max_commission_is_rug),
            },
            "uptime": {
                "check_interval_seconds": str(self.uptime.check_interval_seconds),
            },
            "pipeline": {
                "snapshot_interval_seconds": str(self.pipeline.snapshot_interval_seconds),
                "worker_concurrency": str(self.pipeline.worker_concurrency),
                "job_run_retention_days": str(self.pipeline.job_run_retention_days),
            },
            "email": {
                "resend_api_key": "(set)" if self.email.resend_api_key else "(not set)",
                "from_address": self.email.from_address or "(not set)",
                "base_url": self.email.base_url,
            },
            "discord_enabled": str(self.discord.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "snapshot", "uptime-check"]) -> None:
        """Validate command-specific requirements.

        Alert-producing commands refuse to run without a delivery channel
        unless DRY_RUN is set.
        """
        if command in ("run", "snapshot", "uptime-check") and not self.dry_run:
            if not self.email.enabled and not self.discord.enabled:
                raise ValueError(
                    "EMAIL_RESEND_API_KEY/EMAIL_FROM or DISCORD_WEBHOOK_URL is required "
                    "unless DRY_RUN=true"
                )

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

    Returns:
        The Settings instance.

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
