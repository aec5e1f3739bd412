"""Shared fixtures: temporary home, SQLite stores and an in-process provider stub."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest
from curl_cffi import CurlError

from rt_manager.engine import HttpClientFactory, ProtocolClient
from rt_manager.infra import SQLiteManager, SystemConfigRepository, TokenRecordRepository
from rt_manager.records import TokenRecord

TOKEN_PATH = "/oauth/token"
USER_PATH = "/backend-api/me"
ACCOUNT_PATH = "/backend-api/accounts/check/v4-2023-04-27"


@pytest.fixture(autouse=True)
def rt_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("RT_MANAGER_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "tokens.db"


@pytest.fixture
def storage() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def record_repository(storage: SQLiteManager, db_path: Path) -> TokenRecordRepository:
    return TokenRecordRepository(storage, db_path)


@pytest.fixture
def config_repository(storage: SQLiteManager, db_path: Path) -> SystemConfigRepository:
    return SystemConfigRepository(storage, db_path)


@pytest.fixture
def make_record(record_repository: TokenRecordRepository) -> Callable[..., TokenRecord]:
    counter = {"value": 0}

    def _builder(**overrides: Any) -> TokenRecord:
        counter["value"] += 1
        base: dict[str, Any] = {
            "biz_id": f"biz-{counter['value']}",
            "refresh_token": f"rt-original-{counter['value']}",
            "client_id": "client-a",
        }
        base.update(overrides)
        return record_repository.create(TokenRecord(**base))

    return _builder


class ProviderStub:
    """Answer token, user and account requests from canned ``(status, body)`` pairs."""

    TOKEN_PATH = TOKEN_PATH
    USER_PATH = USER_PATH
    ACCOUNT_PATH = ACCOUNT_PATH

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, tuple[int, str]] = {
            USER_PATH: (200, json.dumps({"email": "user@example.com", "name": "Example User"})),
            ACCOUNT_PATH: (
                200,
                json.dumps(
                    {
                        "accounts": {
                            "acc-1": {"account": {"plan_type": "free"}},
                            "acc-2": {"account": {"plan_type": "plus"}},
                        },
                        "account_ordering": ["acc-1", "acc-2"],
                    }
                ),
            ),
        }
        self.failures: dict[str, str] = {}
        self.exchanges = 0
        self.rejected_tokens: set[str] = set()
        self.browser_options: list[dict[str, Any]] = []

    def respond(self, path: str, status: int, body: Any) -> None:
        text = body if isinstance(body, str) else json.dumps(body)
        self.routes[path] = (status, text)

    def fail(self, path: str, message: str = "connection refused") -> None:
        self.failures[path] = message

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    @staticmethod
    def _requested_token(request: httpx.Request) -> str:
        return json.loads(request.content).get("refresh_token", "")

    def _rotated_tokens(self) -> str:
        # first exchange yields at-new/rt-new, later ones stay unique
        self.exchanges += 1
        suffix = "" if self.exchanges == 1 else f"-{self.exchanges}"
        return json.dumps(
            {
                "access_token": f"at-new{suffix}",
                "refresh_token": f"rt-new{suffix}",
                "expires_in": 864000,
                "token_type": "Bearer",
                "scope": "openid offline_access",
            }
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.failures:
            raise httpx.ConnectError(self.failures[path], request=request)
        if path == TOKEN_PATH and self._requested_token(request) in self.rejected_tokens:
            error = {
                "error": {
                    "message": "refresh token revoked",
                    "type": "invalid_request_error",
                    "code": "invalid_grant",
                }
            }
            return httpx.Response(401, json=error, request=request)
        if path == TOKEN_PATH and path not in self.routes:
            return httpx.Response(200, text=self._rotated_tokens(), request=request)
        status, body = self.routes.get(path, (404, "not found"))
        return httpx.Response(status, text=body, request=request)

    def browser_session(self, **options: Any) -> "BrowserSessionStub":
        self.browser_options.append(options)
        return BrowserSessionStub(self)


class BrowserSessionStub:
    """Stands in for the impersonating ``curl_cffi`` session; GETs go to the provider stub."""

    def __init__(self, provider: ProviderStub) -> None:
        self.provider = provider

    def __enter__(self) -> "BrowserSessionStub":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None

    def get(self, url: str, headers: Any = None, **kwargs: Any) -> httpx.Response:
        request = httpx.Request("GET", url, headers=headers)
        try:
            return self.provider.handler(request)
        except httpx.TransportError as exc:
            raise CurlError(str(exc)) from exc


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def protocol_client(provider: ProviderStub) -> ProtocolClient:
    factory = HttpClientFactory(
        transport=httpx.MockTransport(provider.handler),
        browser_session_factory=provider.browser_session,
    )
    return ProtocolClient(default_client_id="client-default", factory=factory)
