"""structlog on top of stdlib handlers writing JSON lines to the console and log files."""

from __future__ import annotations

import logging.config
import os
from collections import deque
from pathlib import Path
from typing import Any

import structlog

APP_LOG = "rt_manager.log"
ERROR_LOG = "error.log"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def _log_dir() -> Path:
    home = os.environ.get("RT_MANAGER_HOME")
    if home:
        return Path(home).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _file_handler(path: Path, level: str) -> dict[str, Any]:
    return {
        "class": "logging.FileHandler",
        "level": level,
        "filename": str(path),
        "formatter": "json",
        "encoding": "utf-8",
    }


def _dict_config(log_dir: Path, console_level: str) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": JSON_FORMAT},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": console_level, "formatter": "json"},
            "app_file": _file_handler(log_dir / APP_LOG, "INFO"),
            "error_file": _file_handler(log_dir / ERROR_LOG, "ERROR"),
        },
        "loggers": {
            "rt_manager": {
                "handlers": ["console", "app_file", "error_file"],
                "level": console_level,
                "propagate": False,
            },
            # missed runs and job exceptions
            "apscheduler": {
                "handlers": ["console", "error_file"],
                "level": "WARNING",
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False, level: str = "INFO") -> structlog.BoundLogger:
    """Install handlers and the structlog chain once; return the ``rt_manager`` logger.

    ``verbose`` forces DEBUG on the console, otherwise ``level`` applies.
    Later calls only make sure the log files exist.
    """

    global _configured
    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    for name in (APP_LOG, ERROR_LOG):
        (log_dir / name).touch(exist_ok=True)

    if not _configured:
        logging.config.dictConfig(_dict_config(log_dir, "DEBUG" if verbose else level.upper()))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured = True
    return structlog.get_logger("rt_manager")


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


def available_logs() -> list[Path]:
    """``*.log`` files in the log directory, sorted by name."""

    log_dir = _log_dir()
    if not log_dir.exists():
        return []
    return sorted(log_dir.glob("*.log"))


__all__ = ["APP_LOG", "ERROR_LOG", "available_logs", "configure_logging", "tail_log"]
