from __future__ import annotations

import random

import pytest

from rt_manager.engine import BatchRefresher, TokenRefresher


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def batch(record_repository, protocol_client, sleeps) -> BatchRefresher:
    refresher = TokenRefresher(record_repository, protocol_client)
    return BatchRefresher(refresher, record_repository, sleep=sleeps.append)


def test_batch_reports_every_id_and_isolates_failures(batch, make_record, provider, record_repository) -> None:
    first = make_record(refresh_token="ok-1")
    broken = make_record(refresh_token="revoked")
    third = make_record(refresh_token="ok-3")
    provider.rejected_tokens.add("revoked")

    result = batch.refresh_many([first.id, broken.id, third.id, 9999])

    assert len(result.results) == 4
    assert result.success_count == 2
    assert result.fail_count == 2
    assert [r.record_id for r in result.results] == [first.id, broken.id, third.id, 9999]
    assert [r.success for r in result.results] == [True, False, True, False]
    assert result.results[1].biz_id == broken.biz_id
    assert "invalid_grant" in result.results[1].message
    assert result.results[3].biz_id == ""

    assert record_repository.get_by_id(broken.id).refresh_token == "revoked"
    assert record_repository.get_by_id(third.id).previous_refresh_token == "ok-3"


def test_batch_requests_enrichment(batch, make_record, provider, record_repository) -> None:
    record = make_record()
    batch.refresh_many([record.id])
    assert provider.paths() == [provider.TOKEN_PATH, provider.USER_PATH, provider.ACCOUNT_PATH]
    assert record_repository.get_by_id(record.id).account_type == "plus"


def test_batch_sleeps_between_attempts_only(batch, make_record, sleeps, monkeypatch) -> None:
    records = [make_record() for _ in range(3)]
    bounds: list[tuple[int, int]] = []

    def fake_randint(low: int, high: int) -> int:
        bounds.append((low, high))
        return 2

    monkeypatch.setattr(random, "randint", fake_randint)
    batch.refresh_many([record.id for record in records])

    assert sleeps == [2, 2]
    assert bounds == [(1, 3), (1, 3)]


def test_batch_single_id_never_sleeps(batch, make_record, sleeps) -> None:
    batch.refresh_many([make_record().id])
    assert sleeps == []


def test_real_delays_are_whole_seconds_in_range(batch, make_record, sleeps) -> None:
    batch.refresh_many([make_record().id for _ in range(6)])
    assert len(sleeps) == 5
    assert all(isinstance(delay, int) and 1 <= delay <= 3 for delay in sleeps)


def test_refresh_all_enabled_skips_disabled(batch, make_record, record_repository) -> None:
    enabled = make_record(enabled=True)
    disabled = make_record(enabled=False, refresh_token="stay")

    result = batch.refresh_all_enabled()

    assert [r.record_id for r in result.results] == [enabled.id]
    assert record_repository.get_by_id(disabled.id).refresh_token == "stay"


def test_refresh_all_enabled_with_no_records(batch) -> None:
    result = batch.refresh_all_enabled()
    assert result.total == 0
    assert result.success_count == result.fail_count == 0


def test_batch_survives_unparseable_proxy(batch, make_record, provider) -> None:
    broken = make_record(proxy="http://h\x01:80")
    healthy = make_record()

    result = batch.refresh_many([broken.id, healthy.id])

    assert [r.success for r in result.results] == [False, True]
    assert "proxy" in result.results[0].message.lower()
    assert provider.paths().count(provider.TOKEN_PATH) == 1
