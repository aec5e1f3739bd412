"""Infra layer utilities (storage, repositories, pools)."""

from .pools import ClientIdPool, ProxyPool
from .repository import SystemConfigRepository, TokenRecordRepository
from .storage import SQLiteManager

__all__ = [
    "ClientIdPool",
    "ProxyPool",
    "SQLiteManager",
    "SystemConfigRepository",
    "TokenRecordRepository",
]
