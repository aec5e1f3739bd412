"""System configuration: validated saves, pool reconciliation and schedule sync."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping

import structlog

from ..config.models import SYSTEM_CONFIG_DEFAULTS, AppSettings, SystemConfigKey
from ..engine.pool_assignment import PoolReconciler, ReconcileReport
from ..errors import ConfigurationError, RTManagerError
from ..infra.pools import DEFAULT_CLIENT_ID, ClientIdPool, ProxyPool, parse_pool
from ..infra.repository import SystemConfigRepository
from ..scheduler.manager import SchedulerManager

_POOL_KEYS = (SystemConfigKey.PROXY_LIST.value, SystemConfigKey.CLIENT_ID_LIST.value)
_SCHEDULE_KEYS = (
    SystemConfigKey.AUTO_REFRESH_ENABLED.value,
    SystemConfigKey.AUTO_REFRESH_INTERVAL.value,
)


@dataclass(slots=True)
class ConfigSaveResult:
    saved: dict[str, str]
    pools_changed: bool = False
    schedule_changed: bool = False
    reconcile: ReconcileReport | None = None
    schedule_action: str | None = None


class SystemConfigService:
    def __init__(
        self,
        configs: SystemConfigRepository,
        reconciler: PoolReconciler,
        scheduler: SchedulerManager,
        fallback_client_id: str = DEFAULT_CLIENT_ID,
        logger: structlog.BoundLogger | None = None,
        sync_schedule: bool = True,
    ) -> None:
        self.configs = configs
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.fallback_client_id = fallback_client_id
        # Processes that do not own the refresh timer only persist schedule keys.
        self.sync_schedule = sync_schedule
        self._applied_schedule: tuple[str, str] | None = None
        self.logger = logger or structlog.get_logger("rt_manager.config_service")

    # ------------------------------------------------------------------
    def get_system_configs(self) -> dict[str, str]:
        merged = dict(SYSTEM_CONFIG_DEFAULTS)
        merged.update(self.configs.get_all())
        return merged

    def get_config(self, key: str) -> str:
        entry = self.configs.get_by_key(key)
        if entry is not None:
            return entry.value
        return SYSTEM_CONFIG_DEFAULTS.get(key, "")

    def set_config(self, key: str, value: str) -> ConfigSaveResult:
        return self.save_system_configs({key: value})

    def get_proxy_list(self) -> list[str]:
        return parse_pool(self.get_config(SystemConfigKey.PROXY_LIST.value), name="proxy_list")

    def get_client_id_list(self) -> list[str]:
        """Configured client ids, never empty."""

        return ClientIdPool(self._client_ids(), fallback=self.fallback_client_id).members

    def _client_ids(self) -> list[str]:
        return parse_pool(self.get_config(SystemConfigKey.CLIENT_ID_LIST.value), name="client_id_list")

    def effective_pools(self) -> tuple[ProxyPool, ClientIdPool]:
        return (
            ProxyPool(self.get_proxy_list()),
            ClientIdPool(self._client_ids(), fallback=self.fallback_client_id),
        )

    # ------------------------------------------------------------------
    def _normalise(self, updates: Mapping[str, str]) -> dict[str, str]:
        normalised: dict[str, str] = {}
        for key, value in updates.items():
            if key not in SYSTEM_CONFIG_DEFAULTS:
                raise ConfigurationError(f"Unknown system config key: {key}")
            value = "" if value is None else str(value).strip()
            if key == SystemConfigKey.PROXY_LIST.value:
                proxies = ProxyPool(parse_pool(value or "[]", name=key))
                proxies.validate()
                value = json.dumps(proxies.members)
            elif key == SystemConfigKey.CLIENT_ID_LIST.value:
                client_ids = parse_pool(value or "[]", name=key) or [self.fallback_client_id]
                value = json.dumps(client_ids)
            elif key == SystemConfigKey.AUTO_REFRESH_ENABLED.value:
                if value.lower() not in ("true", "false"):
                    raise ConfigurationError(f"{key} must be 'true' or 'false'")
                value = value.lower()
            elif key == SystemConfigKey.AUTO_REFRESH_INTERVAL.value:
                try:
                    days = int(value)
                except ValueError as exc:
                    raise ConfigurationError(f"{key} must be an integer number of days") from exc
                if days < 1:
                    raise ConfigurationError(f"{key} must be >= 1")
                value = str(days)
            normalised[key] = value
        return normalised

    def save_system_configs(self, updates: Mapping[str, str]) -> ConfigSaveResult:
        """Validate and persist ``updates``, then reconcile pools and the schedule.

        Validation failures raise ``ConfigurationError`` before anything is
        written. Reconciliation and scheduler failures are logged only.
        """

        normalised = self._normalise(updates)
        before = self.get_system_configs()
        self.configs.batch_set(normalised)
        after = self.get_system_configs()
        self.logger.info("system_config_saved", keys=sorted(normalised))

        result = ConfigSaveResult(saved=normalised)
        result.pools_changed = any(before[key] != after[key] for key in _POOL_KEYS if key in normalised)
        result.schedule_changed = any(
            before[key] != after[key] for key in _SCHEDULE_KEYS if key in normalised
        )

        if result.pools_changed:
            try:
                proxies, client_ids = self.effective_pools()
                result.reconcile = self.reconciler.reconcile(proxies, client_ids)
            except RTManagerError as exc:
                self.logger.error("pool_reconcile_failed", error=str(exc))

        if result.schedule_changed and not self.sync_schedule:
            self.logger.info(
                "schedule_change_deferred", keys=[key for key in _SCHEDULE_KEYS if key in normalised]
            )
        elif result.schedule_changed:
            try:
                result.schedule_action = self._apply_schedule(after)
            except Exception as exc:  # noqa: BLE001
                self.logger.error("scheduler_update_failed", error=str(exc))
        return result

    # ------------------------------------------------------------------
    @staticmethod
    def _schedule_values(configs: Mapping[str, str]) -> tuple[str, str]:
        return (
            configs[SystemConfigKey.AUTO_REFRESH_ENABLED.value],
            configs[SystemConfigKey.AUTO_REFRESH_INTERVAL.value],
        )

    def _apply_schedule(self, configs: Mapping[str, str]) -> str:
        enabled, interval = self._schedule_values(configs)
        action = self.scheduler.update_from_config(enabled, interval)
        self._applied_schedule = (enabled, interval)
        return action

    def apply_stored_schedule(self) -> str:
        """Apply ``auto_refresh_*`` rows written since the last applied snapshot.

        Called periodically by the serving process so that saves made from
        other processes reach its timer. Returns ``"unchanged"`` when the
        stored values match what was last applied.
        """

        stored = self.get_system_configs()
        if self._schedule_values(stored) == self._applied_schedule:
            return "unchanged"
        action = self._apply_schedule(stored)
        self.logger.info("stored_schedule_applied", action=action)
        return action

    def apply_startup_schedule(self, settings: AppSettings) -> str:
        """Start the scheduler at boot: stored config first, then the settings file."""

        try:
            stored = self.get_system_configs()
        except RTManagerError as exc:
            self.logger.warning("startup_schedule_config_unreadable", error=str(exc))
            stored = None

        if stored is not None:
            self._applied_schedule = self._schedule_values(stored)
        if stored and stored[SystemConfigKey.AUTO_REFRESH_ENABLED.value] == "true":
            action = self._apply_schedule(stored)
            self.logger.info("startup_schedule_from_system_config", action=action)
            return action
        if settings.provider.schedule_enabled:
            started = self.scheduler.start(settings.provider.refresh_interval)
            self.logger.info(
                "startup_schedule_from_settings", interval_days=settings.provider.refresh_interval
            )
            return "started" if started else "unchanged"
        self.logger.info("startup_schedule_disabled")
        return "unchanged"


__all__ = ["ConfigSaveResult", "SystemConfigService"]
