from __future__ import annotations

import threading
import time

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from rt_manager.scheduler import ConfigWatcher, RefreshTimer, SchedulerManager, parse_interval
from rt_manager.scheduler.manager import JOB_ID, WATCH_JOB_ID


class StubTimer:
    instances: list["StubTimer"] = []

    def __init__(self, task, interval_days, logger=None) -> None:  # noqa: ANN001
        self.task = task
        self.interval_days = interval_days
        self.started = False
        self.stopped = False
        StubTimer.instances.append(self)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def next_run_time(self):
        return None


@pytest.fixture
def manager() -> SchedulerManager:
    StubTimer.instances = []
    return SchedulerManager(lambda: None, timer_factory=StubTimer)


def test_start_is_idempotent(manager: SchedulerManager) -> None:
    assert manager.start(3) is True
    assert manager.start(5) is False
    assert len(StubTimer.instances) == 1
    assert manager.is_running
    assert manager.interval_days == 3


def test_stop_is_idempotent(manager: SchedulerManager) -> None:
    assert manager.stop() is False
    manager.start(2)
    assert manager.stop() is True
    assert manager.stop() is False
    assert StubTimer.instances[0].stopped
    assert not manager.is_running


def test_restart_tears_down_previous_timer(manager: SchedulerManager) -> None:
    assert manager.restart(4) is False
    assert StubTimer.instances == []

    manager.start(2)
    assert manager.restart(4) is True
    first, second = StubTimer.instances
    assert first.stopped and not second.stopped
    assert second.interval_days == 4
    assert manager.interval_days == 4


@pytest.mark.parametrize(
    ("running", "enabled", "interval", "expected", "timers"),
    [
        (False, "false", "2", "unchanged", 0),
        (False, "true", "3", "started", 1),
        (True, "false", "2", "stopped", 1),
        (True, "true", "2", "unchanged", 1),
        (True, "true", "7", "restarted", 2),
    ],
)
def test_update_from_config_transitions(manager, running, enabled, interval, expected, timers) -> None:
    if running:
        manager.start(2)
    assert manager.update_from_config(enabled, interval) == expected
    assert len(StubTimer.instances) == timers
    assert manager.is_running is (enabled == "true")


def test_update_from_config_invalid_interval_uses_default(manager: SchedulerManager) -> None:
    manager.update_from_config("true", "soon")
    assert manager.interval_days == 2
    manager.update_from_config(True, "-4")
    assert manager.interval_days == 2
    assert len(StubTimer.instances) == 1


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("5", 5), (" 3 ", 3), ("0", 2), ("-1", 2), ("abc", 2), (None, 2), (7, 7)],
)
def test_parse_interval(raw, expected) -> None:
    assert parse_interval(raw) == expected


def test_status_reports_state(manager: SchedulerManager) -> None:
    assert manager.status() == {"running": False, "interval_days": 2, "next_run_time": None}
    manager.start(6)
    assert manager.status()["running"] is True
    assert manager.status()["interval_days"] == 6


def test_refresh_timer_schedules_interval_job() -> None:
    calls: list[dict] = []

    class StubScheduler:
        running = False

        def add_job(self, func, trigger, **kwargs):  # noqa: ANN001
            calls.append({"func": func, "trigger": trigger, **kwargs})

        def start(self) -> None:
            self.running = True

        def shutdown(self, wait: bool = True) -> None:
            calls.append({"shutdown_wait": wait})
            self.running = False

        def get_job(self, job_id):  # noqa: ANN001
            return None

    timer = RefreshTimer(lambda: None, 3, scheduler_factory=StubScheduler)
    timer.start()
    timer.stop()
    timer.stop()

    job = calls[0]
    assert job["id"] == JOB_ID
    assert isinstance(job["trigger"], IntervalTrigger)
    assert job["trigger"].interval.total_seconds() == 3 * 24 * 3600
    assert job["next_run_time"] is not None
    assert job["max_instances"] == 1
    assert calls[1:] == [{"shutdown_wait": False}]


def test_refresh_timer_runs_first_pass_without_blocking() -> None:
    started = threading.Event()
    release = threading.Event()

    def slow_task() -> None:
        started.set()
        release.wait(5)

    timer = RefreshTimer(slow_task, 1)
    begin = time.monotonic()
    timer.start()
    assert time.monotonic() - begin < 1
    try:
        assert started.wait(5)
        assert timer.next_run_time() is not None
    finally:
        release.set()
        timer.stop()


def test_refresh_timer_survives_task_errors() -> None:
    done = threading.Event()

    def failing_task() -> None:
        done.set()
        raise RuntimeError("boom")

    timer = RefreshTimer(failing_task, 1)
    timer._run()
    assert done.is_set()


def test_config_watcher_polls_on_interval() -> None:
    calls: list[dict] = []

    class StubScheduler:
        running = False

        def add_job(self, func, trigger, **kwargs):  # noqa: ANN001
            calls.append({"func": func, "trigger": trigger, **kwargs})

        def start(self) -> None:
            self.running = True

        def shutdown(self, wait: bool = True) -> None:
            calls.append({"shutdown_wait": wait})
            self.running = False

    synced: list[str] = []
    watcher = ConfigWatcher(
        lambda: synced.append("sync") or "started", poll_seconds=15, scheduler_factory=StubScheduler
    )
    watcher.start()
    job = calls[0]
    assert job["id"] == WATCH_JOB_ID
    assert job["trigger"].interval.total_seconds() == 15
    assert "next_run_time" not in job

    job["func"]()
    assert synced == ["sync"]
    watcher.stop()
    assert calls[1:] == [{"shutdown_wait": False}]


def test_config_watcher_applies_stored_schedule_to_manager(manager: SchedulerManager) -> None:
    stored = {"enabled": "true", "interval": "4"}
    watcher = ConfigWatcher(lambda: manager.update_from_config(stored["enabled"], stored["interval"]))

    watcher._run()
    assert manager.status()["running"] is True
    assert manager.interval_days == 4

    stored["enabled"] = "false"
    watcher._run()
    assert manager.is_running is False


def test_config_watcher_survives_sync_errors() -> None:
    def failing_sync() -> str:
        raise RuntimeError("database locked")

    watcher = ConfigWatcher(failing_sync)
    watcher._run()
