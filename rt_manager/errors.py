"""Exception hierarchy shared by the refresh engine and its services."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine.client import ExchangeOutcome
    from .records import TokenRecord


class RTManagerError(Exception):
    """Base class for every error raised by rt_manager."""


class ConfigurationError(RTManagerError):
    """Invalid proxy URI, malformed pool JSON or unusable settings."""


class RecordNotFoundError(RTManagerError):
    """Raised when a token record lookup returns nothing."""


class DuplicateRecordError(RTManagerError):
    """Business id or refresh token already belongs to another record."""


class StorageError(RTManagerError):
    """Wraps sqlite3 errors raised by the storage layer."""


class ExchangeError(RTManagerError):
    """A refresh-token exchange failed (transport error or provider rejection)."""

    def __init__(
        self,
        message: str,
        *,
        record: "TokenRecord | None" = None,
        outcome: "ExchangeOutcome | None" = None,
    ) -> None:
        super().__init__(message)
        self.record = record
        self.outcome = outcome

    @property
    def status_code(self) -> int | None:
        return self.outcome.status_code if self.outcome else None


class EnrichmentError(RTManagerError):
    """User-info or account-info fetch failed.

    ``raw`` holds the response body when the provider answered 200 but the
    body could not be used, so it can still be kept for auditing.
    """

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


__all__ = [
    "ConfigurationError",
    "DuplicateRecordError",
    "EnrichmentError",
    "ExchangeError",
    "RTManagerError",
    "RecordNotFoundError",
    "StorageError",
]
