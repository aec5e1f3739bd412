"""Protocol client for the identity provider: token exchange and enrichment calls."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import httpx
import structlog
from curl_cffi import CurlError

from ..errors import EnrichmentError
from ..infra.pools import DEFAULT_CLIENT_ID
from ..records import TokenRecord, token_preview
from .transport import HttpClientFactory

TOKEN_URL = "https://auth.openai.com/oauth/token"
USER_INFO_URL = "https://chatgpt.com/backend-api/me"
ACCOUNT_CHECK_URL = (
    "https://chatgpt.com/backend-api/accounts/check/v4-2023-04-27?timezone_offset_min=-480"
)
REDIRECT_URI = "com.openai.chat://auth0.openai.com/ios/com.openai.chat/callback"
GRANT_TYPE = "refresh_token"
FREE_PLAN = "free"


@dataclass(slots=True)
class ExchangeOutcome:
    """Result of one exchange attempt; ``raw`` is the audit text stored on the record."""

    success: bool
    raw: str
    access_token: str = ""
    refresh_token: str = ""
    status_code: int | None = None
    error_code: str = ""
    message: str = ""


@dataclass(slots=True)
class UserInfo:
    raw: str
    email: str = ""
    name: str = ""


@dataclass(slots=True)
class AccountInfo:
    raw: str
    plan_type: str | None = None
    plans: dict[str, str] = field(default_factory=dict)


def _ordered_account_ids(accounts: Mapping[str, Any], ordering: Iterable[str]) -> list[str]:
    ordered = [account_id for account_id in ordering if account_id in accounts]
    ordered.extend(sorted(account_id for account_id in accounts if account_id not in ordered))
    return ordered


def select_plan_type(accounts: Mapping[str, Any], ordering: Iterable[str] = ()) -> str | None:
    """Pick the account type: first non-free plan, else ``free``, else ``None``.

    Accounts are visited in ``account_ordering`` order, then by account id.
    """

    has_free = False
    for account_id in _ordered_account_ids(accounts, ordering):
        entry = accounts.get(account_id) or {}
        account = entry.get("account") if isinstance(entry, Mapping) else None
        plan_type = account.get("plan_type") if isinstance(account, Mapping) else None
        if not plan_type:
            continue
        if plan_type == FREE_PLAN:
            has_free = True
            continue
        return str(plan_type)
    return FREE_PLAN if has_free else None


class ProtocolClient:
    """Exchange refresh tokens and fetch user/account metadata for a record."""

    def __init__(
        self,
        default_client_id: str = DEFAULT_CLIENT_ID,
        factory: HttpClientFactory | None = None,
        exchange_timeout: float = 10.0,
        enrichment_timeout: float = 30.0,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.default_client_id = default_client_id
        self.factory = factory or HttpClientFactory()
        self.exchange_timeout = exchange_timeout
        self.enrichment_timeout = enrichment_timeout
        self.logger = logger or structlog.get_logger("rt_manager.client")

    # ------------------------------------------------------------------
    def exchange_token(self, record: TokenRecord) -> ExchangeOutcome:
        """POST the refresh token; never raises for transport or provider failures.

        An invalid proxy raises ``ConfigurationError`` before any request is made.
        """

        client_id = record.client_id or self.default_client_id
        payload = {
            "client_id": client_id,
            "grant_type": GRANT_TYPE,
            "redirect_uri": REDIRECT_URI,
            "refresh_token": record.refresh_token,
        }
        client = self.factory.exchange_client(record.proxy, self.exchange_timeout)
        if record.proxy:
            self.logger.info("exchange_via_proxy", record_id=record.id, proxy=record.proxy)
        try:
            with client:
                response = client.post(
                    TOKEN_URL,
                    content=json.dumps(payload),
                    headers={"Content-Type": "application/json"},
                )
                body = response.text
        except httpx.HTTPError as exc:
            self.logger.error("exchange_request_failed", record_id=record.id, error=str(exc))
            text = f"request failed: {exc}"
            return ExchangeOutcome(success=False, raw=text, message=text)

        if response.status_code != 200:
            return self._failure(record, response.status_code, body)

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            self.logger.error("exchange_response_unparseable", record_id=record.id, error=str(exc))
            return ExchangeOutcome(
                success=False,
                raw=body,
                status_code=200,
                message=f"cannot parse token response: {exc}",
            )
        access_token = data.get("access_token") if isinstance(data, dict) else None
        refresh_token = data.get("refresh_token") if isinstance(data, dict) else None
        if not access_token or not refresh_token:
            return ExchangeOutcome(
                success=False,
                raw=body,
                status_code=200,
                message="token response is missing access_token or refresh_token",
            )
        self.logger.info(
            "exchange_succeeded",
            record_id=record.id,
            old_rt=token_preview(record.refresh_token),
            new_rt=token_preview(refresh_token),
        )
        return ExchangeOutcome(
            success=True,
            raw=body,
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            status_code=200,
        )

    def _failure(self, record: TokenRecord, status_code: int, body: str) -> ExchangeOutcome:
        error: Any = None
        try:
            data = json.loads(body)
            error = data.get("error") if isinstance(data, dict) else None
        except json.JSONDecodeError:
            error = None
        if isinstance(error, Mapping):
            code = str(error.get("code") or error.get("type") or "")
            message = f"{code}: {error.get('message') or ''}"
            self.logger.error(
                "exchange_rejected",
                record_id=record.id,
                status=status_code,
                error_code=code,
                error_message=error.get("message"),
            )
        else:
            code = ""
            message = f"HTTP {status_code}: {body}"
            self.logger.error("exchange_rejected", record_id=record.id, status=status_code, body=body)
        return ExchangeOutcome(
            success=False,
            raw=body,
            status_code=status_code,
            error_code=code,
            message=message,
        )

    # ------------------------------------------------------------------
    def _browser_get(self, record: TokenRecord, url: str) -> str:
        if not record.access_token:
            raise EnrichmentError("record has no access token")
        session = self.factory.browser_session(record.proxy, self.enrichment_timeout)
        headers = self.factory.profile.headers(record.access_token)
        try:
            with session:
                response = session.get(url, headers=headers)
                body = response.text
        except CurlError as exc:
            raise EnrichmentError(f"request failed: {exc}") from exc
        if response.status_code != 200:
            self.logger.warning(
                "enrichment_rejected", record_id=record.id, url=url, status=response.status_code
            )
            raise EnrichmentError(f"HTTP {response.status_code}")
        return body

    @staticmethod
    def _decode(body: str) -> dict:
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise EnrichmentError(f"cannot parse response: {exc}", raw=body) from exc
        if not isinstance(data, dict):
            raise EnrichmentError("response is not a JSON object", raw=body)
        return data

    def fetch_user_info(self, record: TokenRecord) -> UserInfo:
        body = self._browser_get(record, USER_INFO_URL)
        data = self._decode(body)
        return UserInfo(
            raw=body,
            email=str(data.get("email") or ""),
            name=str(data.get("name") or ""),
        )

    def fetch_account_info(self, record: TokenRecord) -> AccountInfo:
        body = self._browser_get(record, ACCOUNT_CHECK_URL)
        data = self._decode(body)
        accounts = data.get("accounts") or {}
        if not isinstance(accounts, Mapping):
            raise EnrichmentError("accounts field is not an object", raw=body)
        ordering = data.get("account_ordering") or []
        plans: dict[str, str] = {}
        for account_id, entry in accounts.items():
            account = entry.get("account") if isinstance(entry, Mapping) else None
            if isinstance(account, Mapping) and account.get("plan_type"):
                plans[account_id] = str(account["plan_type"])
        plan_type = select_plan_type(accounts, ordering if isinstance(ordering, list) else [])
        self.logger.info("accounts_checked", record_id=record.id, plans=plans, selected=plan_type)
        return AccountInfo(raw=body, plan_type=plan_type, plans=plans)


__all__ = [
    "ACCOUNT_CHECK_URL",
    "AccountInfo",
    "ExchangeOutcome",
    "ProtocolClient",
    "REDIRECT_URI",
    "TOKEN_URL",
    "USER_INFO_URL",
    "UserInfo",
    "select_plan_type",
]
