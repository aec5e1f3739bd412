"""HTTP client construction: proxy routing and the browser fingerprint profile.

Token exchange goes through plain ``httpx``. The user and account endpoints sit
behind browser fingerprinting, so those requests go through a ``curl_cffi``
session impersonating Firefox 133 (TLS hello, HTTP/1.1 framing) with the
profile's header set sent in a fixed order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from curl_cffi import CurlHttpVersion
from curl_cffi import requests as curl_requests

from ..infra.pools import validate_proxy_url

FIREFOX_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:133.0) Gecko/20100101 Firefox/133.0"
)
FIREFOX_IMPERSONATE = "firefox133"


@dataclass(frozen=True)
class BrowserProfile:
    """Impersonation target plus the header set and order sent to the provider's web API."""

    impersonate: str = FIREFOX_IMPERSONATE
    user_agent: str = FIREFOX_USER_AGENT
    header_order: tuple[tuple[str, str], ...] = field(
        default=(
            ("accept", "*/*"),
            ("accept-language", "zh-CN,zh;q=0.9,en;q=0.8"),
            ("authorization", ""),
            ("dnt", "1"),
            ("oai-language", "zh-CN"),
            ("priority", "u=1"),
            ("referer", "https://chatgpt.com/"),
            ("sec-fetch-dest", "empty"),
            ("sec-fetch-mode", "cors"),
            ("sec-fetch-site", "same-origin"),
            ("user-agent", ""),
            # compression disabled
            ("accept-encoding", "identity"),
        )
    )

    def headers(self, access_token: str) -> list[tuple[str, str]]:
        ordered: list[tuple[str, str]] = []
        for name, value in self.header_order:
            if name == "authorization":
                value = f"Bearer {access_token}"
            elif name == "user-agent":
                value = self.user_agent
            ordered.append((name, value))
        return ordered


FIREFOX_133 = BrowserProfile()


def resolve_proxy(proxy: str | None) -> str | None:
    """Validate a record's proxy; empty means a direct connection."""

    text = (proxy or "").strip()
    if not text:
        return None
    return validate_proxy_url(text)


class HttpClientFactory:
    """Build per-request clients routed through a record's proxy.

    ``transport`` replaces the exchange client's network layer and
    ``browser_session_factory`` replaces the impersonating session (both used
    by tests). The proxy is validated either way, so configuration errors
    surface before any request.
    """

    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        profile: BrowserProfile = FIREFOX_133,
        browser_session_factory: Callable[..., Any] = curl_requests.Session,
    ) -> None:
        self.transport = transport
        self.profile = profile
        self.browser_session_factory = browser_session_factory

    def _routing(self, proxy: str | None) -> dict:
        proxy_url = resolve_proxy(proxy)
        if self.transport is not None:
            return {"transport": self.transport}
        if proxy_url:
            return {"proxy": proxy_url}
        return {}

    def exchange_client(self, proxy: str | None, timeout: float) -> httpx.Client:
        return httpx.Client(
            timeout=timeout,
            http2=False,
            follow_redirects=False,
            **self._routing(proxy),
        )

    def browser_options(self, proxy: str | None, timeout: float) -> dict[str, Any]:
        proxy_url = resolve_proxy(proxy)
        options: dict[str, Any] = {
            "impersonate": self.profile.impersonate,
            "timeout": timeout,
            "http_version": CurlHttpVersion.V1_1,
            # only the profile's headers, in the profile's order
            "default_headers": False,
        }
        if proxy_url:
            options["proxies"] = {"http": proxy_url, "https": proxy_url}
        return options

    def browser_session(self, proxy: str | None, timeout: float) -> Any:
        return self.browser_session_factory(**self.browser_options(proxy, timeout))


__all__ = [
    "BrowserProfile",
    "FIREFOX_133",
    "FIREFOX_IMPERSONATE",
    "FIREFOX_USER_AGENT",
    "HttpClientFactory",
    "resolve_proxy",
]
