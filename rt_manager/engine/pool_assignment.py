"""Reconcile every record's proxy and client id against the configured pools."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from ..errors import RTManagerError
from ..infra.pools import ClientIdPool, ProxyPool
from ..infra.repository import TokenRecordRepository
from ..records import TokenRecord


@dataclass(slots=True)
class ReconcileReport:
    total: int = 0
    updated: int = 0
    failed: int = 0


def assign_from_pools(record: TokenRecord, proxies: ProxyPool, client_ids: ClientIdPool) -> bool:
    """Mutate ``record`` so it satisfies the pools; return whether anything changed."""

    changed = False
    if proxies.empty:
        if record.proxy:
            record.proxy = ""
            changed = True
    elif record.proxy not in proxies:
        record.proxy = proxies.choose() or ""
        changed = True

    if record.client_id not in client_ids:
        record.client_id = client_ids.choose() or client_ids.fallback
        changed = True
    return changed


class PoolReconciler:
    """Idempotent pass: records already inside both pools are left untouched."""

    def __init__(
        self,
        records: TokenRecordRepository,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.records = records
        self.logger = logger or structlog.get_logger("rt_manager.pools")

    def reconcile(self, proxies: ProxyPool, client_ids: ClientIdPool) -> ReconcileReport:
        records = self.records.list_all()
        report = ReconcileReport(total=len(records))
        self.logger.info(
            "pool_reconcile_started",
            total=report.total,
            proxy_count=len(proxies),
            client_id_count=len(client_ids),
        )
        for record in records:
            old_proxy, old_client_id = record.proxy, record.client_id
            if not assign_from_pools(record, proxies, client_ids):
                continue
            try:
                self.records.update(record)
            except RTManagerError as exc:
                report.failed += 1
                self.logger.error(
                    "pool_reconcile_persist_failed",
                    record_id=record.id,
                    biz_id=record.biz_id,
                    error=str(exc),
                )
                continue
            report.updated += 1
            self.logger.info(
                "pool_reconcile_record_updated",
                record_id=record.id,
                biz_id=record.biz_id,
                old_proxy=old_proxy,
                new_proxy=record.proxy,
                old_client_id=old_client_id,
                new_client_id=record.client_id,
            )
        self.logger.info("pool_reconcile_finished", updated=report.updated, total=report.total)
        return report


__all__ = ["PoolReconciler", "ReconcileReport", "assign_from_pools"]
