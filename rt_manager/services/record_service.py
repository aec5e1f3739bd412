"""Operator-facing record management: create, edit, list, delete and bulk import."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, Sequence

import structlog

from ..config.models import ProviderSettings
from ..errors import ConfigurationError, DuplicateRecordError, RecordNotFoundError
from ..infra.pools import validate_proxy_url
from ..infra.repository import TokenRecordRepository
from ..records import RecordFilters, RecordUpdate, TokenRecord, token_preview
from .config_service import SystemConfigService


@dataclass(slots=True)
class ImportResult:
    success: int = 0
    fail: int = 0


def new_biz_id() -> str:
    return uuid.uuid4().hex


class RecordService:
    def __init__(
        self,
        records: TokenRecordRepository,
        config_service: SystemConfigService,
        provider: ProviderSettings | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.records = records
        self.config_service = config_service
        self.provider = provider or ProviderSettings()
        self.logger = logger or structlog.get_logger("rt_manager.records")

    def _unique_biz_id(self) -> str:
        while True:
            biz_id = new_biz_id()
            if self.records.get_by_biz_id(biz_id) is None:
                return biz_id

    # ------------------------------------------------------------------
    def create(self, record: TokenRecord) -> TokenRecord:
        """Store a new record; blank business id, client id and proxy get defaults."""

        record.refresh_token = record.refresh_token.strip()
        if not record.refresh_token:
            raise ConfigurationError("refresh token is required")
        record.biz_id = record.biz_id.strip() or self._unique_biz_id()
        if self.records.get_by_biz_id(record.biz_id) is not None:
            raise DuplicateRecordError(f"biz_id {record.biz_id!r} already exists")
        if self.records.get_by_token(record.refresh_token) is not None:
            raise DuplicateRecordError("refresh token already exists")
        record.client_id = record.client_id.strip() or self.provider.client_id
        record.proxy = record.proxy.strip() or self.provider.proxy
        if record.proxy:
            validate_proxy_url(record.proxy)
        record.id = None
        created = self.records.create(record)
        self.logger.info(
            "record_created",
            record_id=created.id,
            biz_id=created.biz_id,
            refresh_token=token_preview(created.refresh_token),
        )
        return created

    def update(self, record_id: int, changes: RecordUpdate) -> TokenRecord:
        record = self.get_by_id(record_id)
        if changes.biz_id is not None:
            biz_id = changes.biz_id.strip()
            if not biz_id:
                raise ConfigurationError("biz_id cannot be empty")
            if biz_id != record.biz_id:
                existing = self.records.get_by_biz_id(biz_id)
                if existing is not None and existing.id != record.id:
                    raise DuplicateRecordError(f"biz_id {biz_id!r} already exists")
            record.biz_id = biz_id
        if changes.proxy is not None:
            proxy = changes.proxy.strip()
            if proxy:
                validate_proxy_url(proxy)
            record.proxy = proxy
        if changes.tag is not None:
            record.tag = changes.tag
        if changes.enabled is not None:
            record.enabled = changes.enabled
        if changes.memo is not None:
            record.memo = changes.memo
        self.records.update(record)
        self.logger.info("record_updated", record_id=record.id, biz_id=record.biz_id)
        return record

    def get_by_id(self, record_id: int) -> TokenRecord:
        record = self.records.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(f"record {record_id} does not exist")
        return record

    def get_by_biz_id(self, biz_id: str) -> TokenRecord:
        record = self.records.get_by_biz_id(biz_id)
        if record is None:
            raise RecordNotFoundError(f"no record with biz_id {biz_id!r}")
        return record

    def get_by_email(self, email: str) -> TokenRecord:
        record = self.records.get_by_email(email) if email else None
        if record is None:
            raise RecordNotFoundError(f"no record with email {email!r}")
        return record

    def list(
        self, filters: RecordFilters | None = None, page: int = 1, page_size: int = 20
    ) -> tuple[list[TokenRecord], int]:
        return self.records.list(filters, page, page_size)

    def delete(self, record_id: int) -> None:
        if not self.records.delete(record_id):
            raise RecordNotFoundError(f"record {record_id} does not exist")
        self.logger.info("record_deleted", record_id=record_id)

    def batch_delete(self, ids: Sequence[int]) -> tuple[int, int]:
        success, failed = self.records.batch_delete(ids)
        self.logger.info("records_batch_deleted", success=success, fail=failed)
        return success, failed

    # ------------------------------------------------------------------
    def batch_import(
        self,
        tokens: Iterable[str],
        tag: str = "",
        proxy: str = "",
        client_id: str = "",
    ) -> ImportResult:
        """Import refresh tokens as disabled records.

        Duplicates within ``tokens`` collapse to the first occurrence; tokens
        already stored count as failures. Proxy and client id come from the
        explicit arguments or a random member of the configured pools.
        """

        proxy = proxy.strip()
        if proxy:
            validate_proxy_url(proxy)
        proxies, client_ids = self.config_service.effective_pools()

        unique: list[str] = []
        for token in tokens:
            token = token.strip()
            if token and token not in unique:
                unique.append(token)

        result = ImportResult()
        for token in unique:
            if self.records.get_by_token(token) is not None:
                result.fail += 1
                self.logger.info("import_token_exists", refresh_token=token_preview(token))
                continue
            record = TokenRecord(
                biz_id=self._unique_biz_id(),
                refresh_token=token,
                proxy=proxy or proxies.choose() or "",
                client_id=client_id.strip() or client_ids.choose() or self.provider.client_id,
                enabled=False,
                tag=tag,
            )
            try:
                self.records.create(record)
            except DuplicateRecordError as exc:
                result.fail += 1
                self.logger.warning("import_token_failed", error=str(exc))
                continue
            result.success += 1
        self.logger.info("records_imported", success=result.success, fail=result.fail)
        return result


__all__ = ["ImportResult", "RecordService", "new_biz_id"]
