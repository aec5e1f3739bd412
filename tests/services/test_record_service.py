from __future__ import annotations

import random

import pytest

from rt_manager.config import ProviderSettings
from rt_manager.engine import PoolReconciler
from rt_manager.errors import ConfigurationError, DuplicateRecordError, RecordNotFoundError
from rt_manager.infra.pools import DEFAULT_CLIENT_ID
from rt_manager.records import RecordFilters, RecordUpdate, TokenRecord
from rt_manager.services import RecordService, SystemConfigService


@pytest.fixture
def config_service(config_repository, record_repository) -> SystemConfigService:
    return SystemConfigService(config_repository, PoolReconciler(record_repository), scheduler=None)


@pytest.fixture
def service(record_repository, config_service) -> RecordService:
    return RecordService(
        record_repository,
        config_service,
        provider=ProviderSettings(client_id="settings-client", proxy="http://default:3128"),
    )


def test_create_fills_defaults(service) -> None:
    record = service.create(TokenRecord(refresh_token="  rt-1  "))
    assert record.id is not None
    assert len(record.biz_id) == 32
    assert record.refresh_token == "rt-1"
    assert record.client_id == "settings-client"
    assert record.proxy == "http://default:3128"
    assert record.enabled is True


def test_create_rejects_duplicates_and_blank_token(service) -> None:
    service.create(TokenRecord(biz_id="b1", refresh_token="rt-1"))
    with pytest.raises(DuplicateRecordError):
        service.create(TokenRecord(biz_id="b1", refresh_token="rt-2"))
    with pytest.raises(DuplicateRecordError):
        service.create(TokenRecord(biz_id="b2", refresh_token="rt-1"))
    with pytest.raises(ConfigurationError):
        service.create(TokenRecord(refresh_token="   "))
    with pytest.raises(ConfigurationError):
        service.create(TokenRecord(refresh_token="rt-3", proxy="ftp://nope:21"))


def test_update_only_touches_editable_fields(service) -> None:
    record = service.create(TokenRecord(biz_id="b1", refresh_token="rt-1", tag="old", memo="m"))

    updated = service.update(record.id, RecordUpdate(tag="new", enabled=False, proxy=""))

    assert updated.tag == "new"
    assert updated.enabled is False
    assert updated.proxy == ""
    assert updated.memo == "m"
    assert updated.biz_id == "b1"
    assert updated.refresh_token == "rt-1"


def test_update_biz_id_conflicts(service) -> None:
    first = service.create(TokenRecord(biz_id="b1", refresh_token="rt-1"))
    service.create(TokenRecord(biz_id="b2", refresh_token="rt-2"))
    with pytest.raises(DuplicateRecordError):
        service.update(first.id, RecordUpdate(biz_id="b2"))
    assert service.update(first.id, RecordUpdate(biz_id="b1")).biz_id == "b1"
    with pytest.raises(ConfigurationError):
        service.update(first.id, RecordUpdate(biz_id=" "))
    with pytest.raises(RecordNotFoundError):
        service.update(999, RecordUpdate(tag="x"))


def test_lookups_and_delete(service) -> None:
    record = service.create(TokenRecord(biz_id="b1", refresh_token="rt-1"))
    assert service.get_by_biz_id("b1").id == record.id
    with pytest.raises(RecordNotFoundError):
        service.get_by_email("")
    with pytest.raises(RecordNotFoundError):
        service.get_by_id(999)

    records, total = service.list(RecordFilters(biz_id="b"))
    assert total == 1
    assert records[0].id == record.id

    service.delete(record.id)
    with pytest.raises(RecordNotFoundError):
        service.delete(record.id)


def test_batch_delete(service) -> None:
    ids = [service.create(TokenRecord(refresh_token=f"rt-{n}")).id for n in range(3)]
    assert service.batch_delete([*ids, 404]) == (3, 1)


def test_batch_import_dedupes_and_disables(service, record_repository) -> None:
    service.create(TokenRecord(refresh_token="existing"))

    result = service.batch_import(["a", " a ", "", "b", "existing", "b"], tag="bulk")

    assert result.success == 2
    assert result.fail == 1
    imported = [r for r in record_repository.list_all() if r.tag == "bulk"]
    assert [r.refresh_token for r in imported] == ["a", "b"]
    assert all(not r.enabled for r in imported)
    assert len({r.biz_id for r in imported}) == 2
    # no pools configured: direct connection and the fallback client id
    assert all(r.proxy == "" for r in imported)
    assert all(r.client_id == DEFAULT_CLIENT_ID for r in imported)


def test_batch_import_uses_pools(service, config_repository, record_repository, monkeypatch) -> None:
    monkeypatch.setattr(random, "choice", lambda seq: seq[-1])
    config_repository.batch_set({"proxy_list": '["http://p1:1", "http://p2:1"]', "client_id_list": '["c1", "c2"]'})

    service.batch_import(["t1"])
    service.batch_import(["t2"], proxy="socks5://explicit:1080", client_id="explicit-client")

    first = record_repository.get_by_token("t1")
    assert first.proxy == "http://p2:1"
    assert first.client_id == "c2"
    second = record_repository.get_by_token("t2")
    assert second.proxy == "socks5://explicit:1080"
    assert second.client_id == "explicit-client"


def test_batch_import_rejects_bad_proxy(service, record_repository) -> None:
    with pytest.raises(ConfigurationError):
        service.batch_import(["t1"], proxy="gopher://x:70")
    assert record_repository.list_all() == []
