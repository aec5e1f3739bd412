"""Settings file loading helpers for rt-manager."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from .models import AppSettings

SETTINGS_FILENAME = "settings.yaml"


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot parse settings file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    config_dir: Path | None = None
    data_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get("RT_MANAGER_HOME")
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.config_dir = (root / "config").resolve()
        self.data_dir = (root / "data").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.config_dir, self.data_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def settings_path(self) -> Path:
        return self.config_dir / SETTINGS_FILENAME


class SettingsRepository:
    """Load, cache and persist ``AppSettings``."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cache: AppSettings | None = None

    def load_settings(self) -> AppSettings:
        if self._cache is not None:
            return self._cache
        path = self.locator.settings_path()
        if path.exists():
            payload = _read_file(path)
            try:
                settings = AppSettings.model_validate(payload)
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc
        else:
            settings = AppSettings()
            self.save_settings(settings)
        self._cache = settings
        return settings

    def save_settings(self, settings: AppSettings) -> None:
        path = self.locator.settings_path()
        _write_file(path, settings.model_dump(mode="json"))
        self._cache = settings

    def database_path(self) -> Path:
        settings = self.load_settings()
        return settings.database.resolved_path(self.locator.project_root)


__all__ = ["ConfigLocator", "SETTINGS_FILENAME", "SettingsRepository"]
