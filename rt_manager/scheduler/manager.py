"""APScheduler-backed periodic refresh with a start/stop/restart state machine."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.models import DEFAULT_INTERVAL_DAYS

JOB_ID = "auto-refresh-all"
WATCH_JOB_ID = "system-config-watch"


def parse_interval(value: Any) -> int:
    """Interval in days; anything unparsable or non-positive becomes the default."""

    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        return DEFAULT_INTERVAL_DAYS
    return days if days > 0 else DEFAULT_INTERVAL_DAYS


def parse_enabled(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


class RefreshTimer:
    """One background scheduler running ``task`` every ``interval_days`` days.

    The first run is queued for "now" so ``start`` returns before it executes.
    """

    def __init__(
        self,
        task: Callable[[], Any],
        interval_days: int,
        logger: structlog.BoundLogger | None = None,
        scheduler_factory: Callable[[], BackgroundScheduler] = BackgroundScheduler,
    ) -> None:
        self.task = task
        self.interval_days = interval_days
        self.logger = logger or structlog.get_logger("rt_manager.scheduler")
        self.scheduler = scheduler_factory()

    def _run(self) -> None:
        self.logger.info("auto_refresh_tick", interval_days=self.interval_days)
        try:
            self.task()
        except Exception:  # noqa: BLE001
            self.logger.exception("auto_refresh_tick_failed")

    def start(self) -> None:
        self.scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(days=self.interval_days),
            id=JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()

    def stop(self) -> None:
        # Pending ticks are dropped; a tick already executing runs to completion.
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def next_run_time(self) -> datetime | None:
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None


class ConfigWatcher:
    """Poll ``sync`` on a fixed interval so stored config reaches a live timer."""

    def __init__(
        self,
        sync: Callable[[], Any],
        poll_seconds: float = 30,
        logger: structlog.BoundLogger | None = None,
        scheduler_factory: Callable[[], BackgroundScheduler] = BackgroundScheduler,
    ) -> None:
        self.sync = sync
        self.poll_seconds = poll_seconds
        self.logger = logger or structlog.get_logger("rt_manager.scheduler")
        self.scheduler = scheduler_factory()

    def _run(self) -> None:
        try:
            action = self.sync()
        except Exception:  # noqa: BLE001
            self.logger.exception("config_watch_failed")
            return
        if action != "unchanged":
            self.logger.info("config_watch_applied", action=action)

    def start(self) -> None:
        self.scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(seconds=self.poll_seconds),
            id=WATCH_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)


class SchedulerManager:
    """Own at most one ``RefreshTimer``; all transitions happen under one lock."""

    def __init__(
        self,
        task: Callable[[], Any],
        timer_factory: Callable[..., RefreshTimer] = RefreshTimer,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.task = task
        self.timer_factory = timer_factory
        self.logger = logger or structlog.get_logger("rt_manager.scheduler")
        self._lock = Lock()
        self._timer: RefreshTimer | None = None
        self._interval_days = DEFAULT_INTERVAL_DAYS

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def interval_days(self) -> int:
        with self._lock:
            return self._interval_days

    def next_run_time(self) -> datetime | None:
        with self._lock:
            return self._timer.next_run_time() if self._timer else None

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "running": self._timer is not None,
                "interval_days": self._interval_days,
                "next_run_time": self._timer.next_run_time() if self._timer else None,
            }

    # ------------------------------------------------------------------
    def _start_locked(self, interval_days: int) -> None:
        if interval_days <= 0:
            interval_days = DEFAULT_INTERVAL_DAYS
        timer = self.timer_factory(self.task, interval_days, logger=self.logger)
        timer.start()
        self._timer = timer
        self._interval_days = interval_days
        self.logger.info("scheduler_started", interval_days=interval_days)

    def _stop_locked(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.stop()
            self.logger.info("scheduler_stopped")

    def start(self, interval_days: int) -> bool:
        """Start the timer; returns ``False`` when it was already running."""

        with self._lock:
            if self._timer is not None:
                self.logger.info("scheduler_already_running", interval_days=self._interval_days)
                return False
            self._start_locked(interval_days)
            return True

    def stop(self) -> bool:
        with self._lock:
            if self._timer is None:
                return False
            self._stop_locked()
            return True

    def restart(self, interval_days: int) -> bool:
        """Replace the running timer with one at the new interval; no-op when stopped."""

        with self._lock:
            if self._timer is None:
                return False
            self._stop_locked()
            self._start_locked(interval_days)
            self.logger.info("scheduler_restarted", interval_days=self._interval_days)
            return True

    def update_from_config(self, enabled: Any, interval: Any) -> str:
        """Apply stored ``auto_refresh_*`` values; returns the transition taken."""

        want_running = parse_enabled(enabled)
        interval_days = parse_interval(interval)
        with self._lock:
            running = self._timer is not None
            if want_running and not running:
                self._start_locked(interval_days)
                return "started"
            if not want_running and running:
                self._stop_locked()
                return "stopped"
            if want_running and interval_days != self._interval_days:
                self._stop_locked()
                self._start_locked(interval_days)
                self.logger.info("scheduler_restarted", interval_days=interval_days)
                return "restarted"
        return "unchanged"


__all__ = [
    "JOB_ID",
    "WATCH_JOB_ID",
    "ConfigWatcher",
    "RefreshTimer",
    "SchedulerManager",
    "parse_enabled",
    "parse_interval",
]
