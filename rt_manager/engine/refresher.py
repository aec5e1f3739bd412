"""Per-record refresh: exchange, persist, then best-effort enrichment."""

from __future__ import annotations

from typing import Callable

import structlog

from ..errors import EnrichmentError, ExchangeError, RecordNotFoundError, StorageError
from ..infra.repository import TokenRecordRepository
from ..records import TokenRecord, utcnow
from .client import AccountInfo, ProtocolClient, UserInfo


def apply_user_info(record: TokenRecord, info: UserInfo) -> None:
    record.user_info = info.raw
    if info.email:
        record.email = info.email
    if info.name:
        record.user_name = info.name


def apply_account_info(record: TokenRecord, info: AccountInfo) -> None:
    record.account_info = info.raw
    if info.plan_type:
        record.account_type = info.plan_type


class TokenRefresher:
    """Drive a record through ``exchange → persist → [enrich] → persist``."""

    def __init__(
        self,
        records: TokenRecordRepository,
        client: ProtocolClient,
        clock: Callable = utcnow,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.records = records
        self.client = client
        self.clock = clock
        self.logger = logger or structlog.get_logger("rt_manager.refresher")

    def _load(self, record_id: int) -> TokenRecord:
        record = self.records.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(f"record {record_id} does not exist")
        return record

    def refresh(
        self,
        record_id: int,
        *,
        with_user_info: bool = False,
        with_account_info: bool = False,
    ) -> TokenRecord:
        """Exchange the record's refresh token and return the persisted record.

        Raises ``ExchangeError`` when the exchange fails; the record then only
        carries the new ``last_refresh_result``. Enrichment failures are logged.
        """

        record = self._load(record_id)
        log = self.logger.bind(record_id=record.id, biz_id=record.biz_id)
        log.info("refresh_started", has_proxy=bool(record.proxy))

        outcome = self.client.exchange_token(record)
        if not outcome.success:
            record.last_refresh_result = outcome.raw
            try:
                self.records.update(record)
            except StorageError as exc:
                log.error("refresh_result_persist_failed", error=str(exc))
            log.error("refresh_failed", status=outcome.status_code, reason=outcome.message)
            raise ExchangeError(f"refresh failed: {outcome.message}", record=record, outcome=outcome)

        record.previous_refresh_token, record.refresh_token = record.refresh_token, outcome.refresh_token
        record.access_token = outcome.access_token
        record.last_refresh_result = outcome.raw
        record.last_refresh_time = self.clock()
        self.records.update(record)
        log.info("refresh_succeeded")

        if with_user_info or with_account_info:
            if self._enrich(record, with_user_info, with_account_info):
                try:
                    self.records.update(record)
                except StorageError as exc:
                    log.warning("enrichment_persist_failed", error=str(exc))
        return record

    def _enrich(self, record: TokenRecord, user_info: bool, account_info: bool) -> bool:
        changed = False
        if user_info:
            try:
                apply_user_info(record, self.client.fetch_user_info(record))
                changed = True
            except EnrichmentError as exc:
                self.logger.warning("user_info_failed", record_id=record.id, error=str(exc))
                if exc.raw:
                    record.user_info = exc.raw
                    changed = True
        if account_info:
            try:
                apply_account_info(record, self.client.fetch_account_info(record))
                changed = True
            except EnrichmentError as exc:
                self.logger.warning("account_info_failed", record_id=record.id, error=str(exc))
                if exc.raw:
                    record.account_info = exc.raw
                    changed = True
        return changed

    # ------------------------------------------------------------------
    def refresh_user_info(self, record_id: int) -> TokenRecord:
        record = self._load(record_id)
        if not record.access_token:
            raise EnrichmentError("access token is empty, cannot fetch user info")
        try:
            info = self.client.fetch_user_info(record)
        except EnrichmentError as exc:
            self._keep_raw(record, "user_info", exc)
            raise
        apply_user_info(record, info)
        self.records.update(record)
        self.logger.info(
            "user_info_refreshed", record_id=record.id, email=record.email, user_name=record.user_name
        )
        return record

    def refresh_account_info(self, record_id: int) -> TokenRecord:
        record = self._load(record_id)
        if not record.access_token:
            raise EnrichmentError("access token is empty, cannot fetch account info")
        try:
            info = self.client.fetch_account_info(record)
        except EnrichmentError as exc:
            self._keep_raw(record, "account_info", exc)
            raise
        apply_account_info(record, info)
        self.records.update(record)
        self.logger.info("account_info_refreshed", record_id=record.id, account_type=record.account_type)
        return record

    def _keep_raw(self, record: TokenRecord, field_name: str, exc: EnrichmentError) -> None:
        """Persist an unusable 200 body before the error propagates."""

        if not exc.raw:
            return
        setattr(record, field_name, exc.raw)
        try:
            self.records.update(record)
        except StorageError as persist_exc:
            self.logger.warning("enrichment_persist_failed", record_id=record.id, error=str(persist_exc))

    def refresh_by_lookup(self, *, biz_id: str = "", email: str = "") -> TokenRecord:
        """Locate a record by business id or e-mail and exchange without enrichment."""

        if not biz_id and not email:
            raise RecordNotFoundError("either biz_id or email is required")
        record = self.records.get_by_biz_id(biz_id) if biz_id else self.records.get_by_email(email)
        if record is None or record.id is None:
            raise RecordNotFoundError(f"no record for biz_id={biz_id!r} email={email!r}")
        return self.refresh(record.id)


__all__ = ["TokenRefresher", "apply_account_info", "apply_user_info"]
