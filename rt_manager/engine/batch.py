"""Sequential, paced refresh of many records."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

import structlog

from ..errors import RTManagerError
from ..infra.repository import TokenRecordRepository
from ..records import RecordFilters
from .refresher import TokenRefresher

DELAY_RANGE = (1, 3)
SUCCESS_MESSAGE = "refreshed"


@dataclass(slots=True)
class RefreshReport:
    record_id: int
    biz_id: str
    success: bool
    message: str


@dataclass(slots=True)
class BatchResult:
    success_count: int = 0
    fail_count: int = 0
    results: list[RefreshReport] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)


class BatchRefresher:
    """Refresh records one at a time with a random whole-second pause in between."""

    def __init__(
        self,
        refresher: TokenRefresher,
        records: TokenRecordRepository,
        sleep: Callable[[float], None] = time.sleep,
        delay_range: tuple[int, int] = DELAY_RANGE,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.refresher = refresher
        self.records = records
        self.sleep = sleep
        self.delay_range = delay_range
        self.logger = logger or structlog.get_logger("rt_manager.batch")

    def refresh_many(self, ids: Sequence[int]) -> BatchResult:
        """Attempt every id; one report per input id, in input order."""

        labels = {record.id: record.biz_id for record in self.records.get_by_ids(list(ids))}
        result = BatchResult()
        for index, record_id in enumerate(ids):
            try:
                self.refresher.refresh(record_id, with_user_info=True, with_account_info=True)
            except RTManagerError as exc:
                result.fail_count += 1
                report = RefreshReport(record_id, labels.get(record_id, ""), False, str(exc))
            else:
                result.success_count += 1
                report = RefreshReport(record_id, labels.get(record_id, ""), True, SUCCESS_MESSAGE)
            result.results.append(report)

            if index < len(ids) - 1:
                delay = random.randint(*self.delay_range)
                self.logger.info("batch_refresh_delay", delay_seconds=delay)
                self.sleep(delay)

        self.logger.info(
            "batch_refresh_finished",
            total=len(ids),
            success=result.success_count,
            fail=result.fail_count,
        )
        return result

    def refresh_all_enabled(self) -> BatchResult:
        """Scheduled job body: batch-refresh every enabled record."""

        records = self.records.list_all(RecordFilters(enabled=True))
        self.logger.info("auto_refresh_started", count=len(records))
        ids = [record.id for record in records if record.id is not None]
        if not ids:
            return BatchResult()
        result = self.refresh_many(ids)
        self.logger.info(
            "auto_refresh_finished", success=result.success_count, fail=result.fail_count
        )
        return result


__all__ = ["BatchRefresher", "BatchResult", "DELAY_RANGE", "RefreshReport"]
