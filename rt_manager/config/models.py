"""Pydantic models describing application settings and system config keys."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..errors import ConfigurationError
from ..infra.pools import DEFAULT_CLIENT_ID, validate_proxy_url

DEFAULT_INTERVAL_DAYS = 2

_TABLE_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_]*$")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class SystemConfigKey(str, Enum):
    """Keys stored in the system configuration table."""

    PROXY_LIST = "proxy_list"
    CLIENT_ID_LIST = "client_id_list"
    AUTO_REFRESH_ENABLED = "auto_refresh_enabled"
    AUTO_REFRESH_INTERVAL = "auto_refresh_interval"


SYSTEM_CONFIG_DEFAULTS: dict[str, str] = {
    SystemConfigKey.PROXY_LIST.value: "[]",
    SystemConfigKey.CLIENT_ID_LIST.value: "[]",
    SystemConfigKey.AUTO_REFRESH_ENABLED.value: "false",
    SystemConfigKey.AUTO_REFRESH_INTERVAL.value: str(DEFAULT_INTERVAL_DAYS),
}


class DatabaseSettings(BaseModel):
    """Location of the SQLite store and optional table prefix."""

    path: Path = Field(default=Path("data/tokens.db"))
    table_prefix: str = ""

    @field_validator("path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("table_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        if not _TABLE_PREFIX_PATTERN.match(value):
            raise ValueError("table_prefix may only contain letters, digits and underscores")
        return value

    def resolved_path(self, base_dir: Path) -> Path:
        if not self.path.is_absolute():
            return (base_dir / self.path).resolve()
        return self.path


class ProviderSettings(BaseModel):
    """Identity provider defaults and scheduling fallbacks."""

    client_id: str = DEFAULT_CLIENT_ID
    proxy: str = ""
    refresh_interval: int = DEFAULT_INTERVAL_DAYS
    schedule_enabled: bool = False
    exchange_timeout: float = 10.0
    enrichment_timeout: float = 30.0
    config_poll_seconds: float = 30.0

    @field_validator("client_id")
    @classmethod
    def _non_empty_client(cls, value: str) -> str:
        value = value.strip()
        return value or DEFAULT_CLIENT_ID

    @field_validator("proxy")
    @classmethod
    def _check_proxy(cls, value: str) -> str:
        value = value.strip()
        if value:
            try:
                validate_proxy_url(value)
            except ConfigurationError as exc:
                raise ValueError(str(exc)) from exc
        return value

    @field_validator("refresh_interval")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value < 1:
            raise ValueError("refresh_interval must be >= 1 day")
        return value

    @field_validator("exchange_timeout", "enrichment_timeout", "config_poll_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value


class LogSettings(BaseModel):
    level: str = "INFO"

    @field_validator("level", mode="before")
    @classmethod
    def _normalise_level(cls, value: Any) -> str:
        level = str(value or "INFO").upper()
        if level == "WARN":
            level = "WARNING"
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unsupported log level: {value}")
        return level


class AppSettings(BaseModel):
    """Root settings object loaded from ``config/settings.yaml``."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    log: LogSettings = Field(default_factory=LogSettings)


__all__ = [
    "AppSettings",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_INTERVAL_DAYS",
    "DatabaseSettings",
    "LogSettings",
    "ProviderSettings",
    "SYSTEM_CONFIG_DEFAULTS",
    "SystemConfigKey",
]
