"""Periodic auto-refresh scheduling."""

from .manager import ConfigWatcher, RefreshTimer, SchedulerManager, parse_interval

__all__ = ["ConfigWatcher", "RefreshTimer", "SchedulerManager", "parse_interval"]
