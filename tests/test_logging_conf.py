from __future__ import annotations

from pathlib import Path

from rt_manager.logging_conf import APP_LOG, ERROR_LOG, _dict_config, available_logs, tail_log


def test_dict_config_routes_errors_to_error_log(tmp_path: Path) -> None:
    config = _dict_config(tmp_path, "DEBUG")
    handlers = config["handlers"]
    assert handlers["console"]["level"] == "DEBUG"
    assert handlers["app_file"]["filename"] == str(tmp_path / APP_LOG)
    assert handlers["error_file"]["filename"] == str(tmp_path / ERROR_LOG)
    assert handlers["error_file"]["level"] == "ERROR"
    assert config["loggers"]["apscheduler"]["level"] == "WARNING"


def test_tail_log_and_available_logs(rt_home: Path) -> None:
    assert available_logs() == []
    logs_dir = rt_home / "logs"
    logs_dir.mkdir()
    app_log = logs_dir / APP_LOG
    app_log.write_text("".join(f"line-{index}\n" for index in range(5)), encoding="utf-8")
    (logs_dir / "notes.txt").write_text("ignored", encoding="utf-8")

    assert tail_log(app_log, 2) == ["line-3\n", "line-4\n"]
    assert tail_log(logs_dir / "missing.log") == []
    assert [path.name for path in available_logs()] == [APP_LOG]
