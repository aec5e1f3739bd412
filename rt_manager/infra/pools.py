"""Proxy and client-id pools reconciled against stored records."""

from __future__ import annotations

import json
import random
from threading import Lock
from typing import Iterable, Iterator, List, Optional
from urllib.parse import urlsplit

import httpx

from ..errors import ConfigurationError

DEFAULT_CLIENT_ID = "app_WXrF1LSkiTtfYqiL6XtjygvX"
SUPPORTED_PROXY_SCHEMES = ("http", "https", "socks5")


def validate_proxy_url(proxy: str) -> str:
    """Return the proxy URI unchanged or raise ``ConfigurationError``."""

    text = proxy.strip()
    try:
        parsed = urlsplit(text)
        port = parsed.port
        httpx.URL(text)
    except (ValueError, httpx.InvalidURL) as exc:
        raise ConfigurationError(f"Cannot parse proxy URL {text!r}: {exc}") from exc
    scheme = parsed.scheme.lower()
    if scheme not in SUPPORTED_PROXY_SCHEMES:
        raise ConfigurationError(
            f"Unsupported proxy scheme {scheme or '<none>'!r} in {text!r} "
            f"(supported: {', '.join(SUPPORTED_PROXY_SCHEMES)})"
        )
    if not parsed.hostname:
        raise ConfigurationError(f"Proxy URL {text!r} has no host")
    if port is None and scheme == "socks5":
        raise ConfigurationError(f"SOCKS5 proxy {text!r} requires an explicit port")
    return text


def parse_pool(raw: str | None, *, name: str) -> list[str]:
    """Decode a JSON array of strings stored in system configuration."""

    if raw is None or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{name} is not valid JSON: {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ConfigurationError(f"{name} must be a JSON array of strings")
    return [item.strip() for item in data if item.strip()]


class _Pool:
    def __init__(self, members: Iterable[str] | None = None) -> None:
        self._lock = Lock()
        self._members: List[str] = []
        if members:
            for member in members:
                member = member.strip()
                if member and member not in self._members:
                    self._members.append(member)

    @property
    def empty(self) -> bool:
        return not self._members

    @property
    def members(self) -> list[str]:
        return list(self._members)

    def __contains__(self, item: object) -> bool:
        return item in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self.members)

    def __len__(self) -> int:
        return len(self._members)

    def choose(self) -> Optional[str]:
        with self._lock:
            if not self._members:
                return None
            return random.choice(self._members)


class ProxyPool(_Pool):
    """Operator-configured egress proxies."""

    def validate(self) -> None:
        """Raise ``ConfigurationError`` for the first unsupported proxy URI."""

        for member in self._members:
            validate_proxy_url(member)

    @classmethod
    def from_config(cls, raw: str | None) -> "ProxyPool":
        return cls(parse_pool(raw, name="proxy_list"))


class ClientIdPool(_Pool):
    """Client identifiers; falls back to a single default id when empty."""

    def __init__(self, client_ids: Iterable[str] | None = None, fallback: str = DEFAULT_CLIENT_ID) -> None:
        super().__init__(client_ids)
        self.fallback = fallback
        self.used_fallback = self.empty
        if self.empty:
            self._members.append(fallback)

    @classmethod
    def from_config(cls, raw: str | None, fallback: str = DEFAULT_CLIENT_ID) -> "ClientIdPool":
        return cls(parse_pool(raw, name="client_id_list"), fallback=fallback)


__all__ = [
    "ClientIdPool",
    "DEFAULT_CLIENT_ID",
    "ProxyPool",
    "SUPPORTED_PROXY_SCHEMES",
    "parse_pool",
    "validate_proxy_url",
]
