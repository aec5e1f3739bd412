"""Record types exchanged between the stores, the engine and the services."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_preview(token: str, length: int = 20) -> str:
    """Shorten a secret for log output."""

    if not token:
        return ""
    if len(token) <= length:
        return token
    return token[:length] + "..."


@dataclass(slots=True)
class TokenRecord:
    """One tracked refresh-token credential."""

    id: int | None = None
    biz_id: str = ""
    refresh_token: str = ""
    # Superseded by the last successful exchange; never touched on failure.
    previous_refresh_token: str = ""
    access_token: str = ""
    last_refresh_result: str = ""
    user_info: str = ""
    account_info: str = ""
    account_type: str = ""
    user_name: str = ""
    email: str = ""
    proxy: str = ""
    client_id: str = ""
    enabled: bool = True
    last_refresh_time: datetime | None = None
    tag: str = ""
    memo: str = ""
    create_time: datetime | None = None
    update_time: datetime | None = None

    def copy(self) -> "TokenRecord":
        return replace(self)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            payload[item.name] = value
        return payload


@dataclass(slots=True)
class RecordUpdate:
    """Partial update of the operator-editable fields; ``None`` means unchanged."""

    biz_id: str | None = None
    proxy: str | None = None
    tag: str | None = None
    enabled: bool | None = None
    memo: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, item.name) is None for item in fields(self))


@dataclass(slots=True)
class RecordFilters:
    """Filters accepted by ``TokenRecordRepository.list``."""

    biz_id: str = ""
    tag: str = ""
    email: str = ""
    account_type: str = ""
    enabled: bool | None = None
    create_date: date | None = None


@dataclass(slots=True)
class SystemConfigEntry:
    key: str
    value: str
    create_time: datetime | None = None
    update_time: datetime | None = None


__all__ = [
    "RecordFilters",
    "RecordUpdate",
    "SystemConfigEntry",
    "TokenRecord",
    "token_preview",
    "utcnow",
]
