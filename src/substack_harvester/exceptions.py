"""Centralized exception hierarchy for the substack-harvester package.

All domain-specific exceptions inherit from ``HarvesterError`` so
callers can catch the entire family with a single ``except`` clause.
"""

from __future__ import annotations


class HarvesterError(Exception):
    """Base exception for all substack-harvester errors."""


# ---------------------------------------------------------------------------
# Fetch errors
# ---------------------------------------------------------------------------


class FetchError(HarvesterError):
    """Base exception for a single failed fetch attempt (retryable)."""


class TransientFetchError(FetchError):
    """Raised on network errors, timeouts, and non-2xx responses."""


class ProxyUnavailableError(TransientFetchError):
    """Raised when no proxy endpoint could be acquired for an attempt."""


class ParseError(FetchError):
    """Raised when a structured response body cannot be decoded."""


class FetchExhausted(HarvesterError):
    """Raised when every attempt in the retry budget has failed."""

    def __init__(self, url: str, last_error: BaseException | None) -> None:
        self.url = url
        self.last_error = last_error
        super().__init__(f"Fetch exhausted for {url}: {last_error}")


# ---------------------------------------------------------------------------
# Persistence errors
# ---------------------------------------------------------------------------


class PersistenceError(HarvesterError):
    """Raised when an artifact write or downstream load fails."""
