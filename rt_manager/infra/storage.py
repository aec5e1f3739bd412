"""SQLite connection management and schema for token records and system config."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Dict, Iterator

from ..errors import StorageError

RECORDS_TABLE = "rts"
CONFIG_TABLE = "system_configs"


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self, table_prefix: str = "") -> None:
        self.table_prefix = table_prefix
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = RLock()

    def table(self, name: str) -> str:
        if not self.table_prefix:
            return name
        return f"{self.table_prefix}_{name}"

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                try:
                    conn = sqlite3.connect(path, check_same_thread=False)
                    conn.row_factory = sqlite3.Row
                    self._ensure_schema(conn)
                except sqlite3.Error as exc:
                    raise StorageError(f"Cannot open database {path}: {exc}") from exc
                self._connections[path] = conn
            return self._connections[path]

    @contextmanager
    def session(self, path: Path) -> Iterator[sqlite3.Connection]:
        """Serialise access to one database; commit on success, roll back on error."""

        conn = self.connect(path)
        with self._lock:
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(str(exc)) from exc
            except BaseException:
                conn.rollback()
                raise

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        records = self.table(RECORDS_TABLE)
        configs = self.table(CONFIG_TABLE)
        conn.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS {records} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                biz_id TEXT NOT NULL,
                refresh_token TEXT NOT NULL,
                previous_refresh_token TEXT NOT NULL DEFAULT '',
                access_token TEXT NOT NULL DEFAULT '',
                last_refresh_result TEXT NOT NULL DEFAULT '',
                user_info TEXT NOT NULL DEFAULT '',
                account_info TEXT NOT NULL DEFAULT '',
                account_type TEXT NOT NULL DEFAULT '',
                user_name TEXT NOT NULL DEFAULT '',
                email TEXT NOT NULL DEFAULT '',
                proxy TEXT NOT NULL DEFAULT '',
                client_id TEXT NOT NULL DEFAULT '',
                enabled INTEGER NOT NULL DEFAULT 1,
                last_refresh_time TEXT,
                tag TEXT NOT NULL DEFAULT '',
                memo TEXT NOT NULL DEFAULT '',
                create_time TEXT NOT NULL,
                update_time TEXT NOT NULL
            );
            CREATE UNIQUE INDEX IF NOT EXISTS idx_{records}_biz_id ON {records}(biz_id);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_{records}_refresh_token ON {records}(refresh_token);
            CREATE INDEX IF NOT EXISTS idx_{records}_email ON {records}(email);
            CREATE TABLE IF NOT EXISTS {configs} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                config_key TEXT NOT NULL,
                config_value TEXT NOT NULL DEFAULT '',
                create_time TEXT NOT NULL,
                update_time TEXT NOT NULL
            );
            CREATE UNIQUE INDEX IF NOT EXISTS idx_{configs}_config_key ON {configs}(config_key);
            """
        )
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


__all__ = ["CONFIG_TABLE", "RECORDS_TABLE", "SQLiteManager"]
