"""Configuration package exports."""

from .loader import ConfigLocator, SettingsRepository
from .models import (
    DEFAULT_CLIENT_ID,
    DEFAULT_INTERVAL_DAYS,
    SYSTEM_CONFIG_DEFAULTS,
    AppSettings,
    DatabaseSettings,
    LogSettings,
    ProviderSettings,
    SystemConfigKey,
)

__all__ = [
    "AppSettings",
    "ConfigLocator",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_INTERVAL_DAYS",
    "DatabaseSettings",
    "LogSettings",
    "ProviderSettings",
    "SYSTEM_CONFIG_DEFAULTS",
    "SettingsRepository",
    "SystemConfigKey",
]
