"""Refresh engine: protocol client, per-record refresh, batches and pool reconciliation."""

from .batch import BatchRefresher, BatchResult, RefreshReport
from .client import AccountInfo, ExchangeOutcome, ProtocolClient, UserInfo, select_plan_type
from .pool_assignment import PoolReconciler, ReconcileReport, assign_from_pools
from .refresher import TokenRefresher
from .transport import BrowserProfile, HttpClientFactory

__all__ = [
    "AccountInfo",
    "BatchRefresher",
    "BatchResult",
    "BrowserProfile",
    "ExchangeOutcome",
    "HttpClientFactory",
    "PoolReconciler",
    "ProtocolClient",
    "ReconcileReport",
    "RefreshReport",
    "TokenRefresher",
    "UserInfo",
    "assign_from_pools",
    "select_plan_type",
]
