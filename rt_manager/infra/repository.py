"""Token record and system configuration stores backed by SQLite."""

from __future__ import annotations

import sqlite3
from dataclasses import fields
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from ..errors import DuplicateRecordError, StorageError
from ..records import RecordFilters, SystemConfigEntry, TokenRecord, utcnow
from .storage import CONFIG_TABLE, RECORDS_TABLE, SQLiteManager

_RECORD_COLUMNS = tuple(item.name for item in fields(TokenRecord) if item.name != "id")
_TIME_COLUMNS = ("last_refresh_time", "create_time", "update_time")


def _to_text(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_text(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _row_to_record(row: sqlite3.Row) -> TokenRecord:
    data: dict[str, Any] = {key: row[key] for key in row.keys()}
    for column in _TIME_COLUMNS:
        data[column] = _from_text(data.get(column))
    data["enabled"] = bool(data.get("enabled"))
    return TokenRecord(**data)


def _record_values(record: TokenRecord) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for column in _RECORD_COLUMNS:
        value = getattr(record, column)
        if column in _TIME_COLUMNS:
            value = _to_text(value)
        elif column == "enabled":
            value = 1 if value else 0
        values[column] = value
    return values


class TokenRecordRepository:
    """Read/write contract the refresh engine needs; lookups return ``None`` when absent."""

    def __init__(self, storage: SQLiteManager, path: Path) -> None:
        self.storage = storage
        self.path = path
        self.table = storage.table(RECORDS_TABLE)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(self, record: TokenRecord) -> TokenRecord:
        now = utcnow()
        record.create_time = record.create_time or now
        record.update_time = now
        values = _record_values(record)
        columns = ", ".join(values)
        placeholders = ", ".join(f":{name}" for name in values)
        try:
            with self.storage.session(self.path) as conn:
                cursor = conn.execute(
                    f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})", values
                )
                record.id = cursor.lastrowid
        except StorageError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise DuplicateRecordError(str(exc)) from exc
            raise
        return record

    def update(self, record: TokenRecord) -> TokenRecord:
        """Full-record upsert keyed by ``id``."""

        if record.id is None:
            return self.create(record)
        record.update_time = utcnow()
        record.create_time = record.create_time or record.update_time
        values = _record_values(record)
        values["id"] = record.id
        columns = ", ".join(["id", *_RECORD_COLUMNS])
        placeholders = ", ".join(f":{name}" for name in ["id", *_RECORD_COLUMNS])
        assignments = ", ".join(
            f"{name} = excluded.{name}" for name in _RECORD_COLUMNS if name != "create_time"
        )
        try:
            with self.storage.session(self.path) as conn:
                conn.execute(
                    f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders}) "
                    f"ON CONFLICT(id) DO UPDATE SET {assignments}",
                    values,
                )
        except StorageError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise DuplicateRecordError(str(exc)) from exc
            raise
        return record

    def delete(self, record_id: int) -> bool:
        with self.storage.session(self.path) as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def batch_delete(self, ids: Iterable[int]) -> tuple[int, int]:
        success = 0
        failed = 0
        for record_id in ids:
            try:
                deleted = self.delete(record_id)
            except StorageError:
                deleted = False
            if deleted:
                success += 1
            else:
                failed += 1
        return success, failed

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _fetch_one(self, column: str, value: Any) -> TokenRecord | None:
        with self.storage.session(self.path) as conn:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE {column} = ? LIMIT 1", (value,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_by_id(self, record_id: int) -> TokenRecord | None:
        return self._fetch_one("id", record_id)

    def get_by_biz_id(self, biz_id: str) -> TokenRecord | None:
        return self._fetch_one("biz_id", biz_id)

    def get_by_token(self, refresh_token: str) -> TokenRecord | None:
        return self._fetch_one("refresh_token", refresh_token)

    def get_by_email(self, email: str) -> TokenRecord | None:
        return self._fetch_one("email", email)

    def get_by_ids(self, ids: Sequence[int]) -> list[TokenRecord]:
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self.storage.session(self.path) as conn:
            rows = conn.execute(
                f"SELECT * FROM {self.table} WHERE id IN ({placeholders}) ORDER BY id",
                tuple(ids),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def _where(self, filters: RecordFilters | None) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if filters is None:
            return "", params
        for column, value in (
            ("biz_id", filters.biz_id),
            ("tag", filters.tag),
            ("email", filters.email),
            ("account_type", filters.account_type),
        ):
            if value:
                clauses.append(f"{column} LIKE ?")
                params.append(f"%{value}%")
        if filters.enabled is not None:
            clauses.append("enabled = ?")
            params.append(1 if filters.enabled else 0)
        if filters.create_date is not None:
            start = datetime.combine(filters.create_date, time.min, tzinfo=timezone.utc)
            clauses.append("create_time >= ? AND create_time < ?")
            params.extend([_to_text(start), _to_text(start + timedelta(days=1))])
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def list(
        self,
        filters: RecordFilters | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[TokenRecord], int]:
        page = max(page, 1)
        page_size = max(page_size, 1)
        where, params = self._where(filters)
        with self.storage.session(self.path) as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM {self.table}{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM {self.table}{where} ORDER BY id DESC LIMIT ? OFFSET ?",
                [*params, page_size, (page - 1) * page_size],
            ).fetchall()
        return [_row_to_record(row) for row in rows], int(total)

    def list_all(self, filters: RecordFilters | None = None) -> list[TokenRecord]:
        where, params = self._where(filters)
        with self.storage.session(self.path) as conn:
            rows = conn.execute(f"SELECT * FROM {self.table}{where} ORDER BY id", params).fetchall()
        return [_row_to_record(row) for row in rows]


class SystemConfigRepository:
    """Key/value system configuration; ``batch_set`` is all-or-nothing."""

    def __init__(self, storage: SQLiteManager, path: Path) -> None:
        self.storage = storage
        self.path = path
        self.table = storage.table(CONFIG_TABLE)

    def get_by_key(self, key: str) -> SystemConfigEntry | None:
        with self.storage.session(self.path) as conn:
            row = conn.execute(
                f"SELECT * FROM {self.table} WHERE config_key = ? LIMIT 1", (key,)
            ).fetchone()
        if row is None:
            return None
        return SystemConfigEntry(
            key=row["config_key"],
            value=row["config_value"],
            create_time=_from_text(row["create_time"]),
            update_time=_from_text(row["update_time"]),
        )

    def get_all(self) -> dict[str, str]:
        with self.storage.session(self.path) as conn:
            rows = conn.execute(f"SELECT config_key, config_value FROM {self.table}").fetchall()
        return {row["config_key"]: row["config_value"] for row in rows}

    def _upsert(self, conn: sqlite3.Connection, key: str, value: str) -> None:
        now = _to_text(utcnow())
        conn.execute(
            f"INSERT INTO {self.table} (config_key, config_value, create_time, update_time) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(config_key) DO UPDATE SET "
            "config_value = excluded.config_value, update_time = excluded.update_time",
            (key, value, now, now),
        )

    def set(self, key: str, value: str) -> None:
        with self.storage.session(self.path) as conn:
            self._upsert(conn, key, value)

    def batch_set(self, configs: Mapping[str, str]) -> None:
        with self.storage.session(self.path) as conn:
            for key, value in configs.items():
                self._upsert(conn, key, value)


__all__ = ["SystemConfigRepository", "TokenRecordRepository"]
