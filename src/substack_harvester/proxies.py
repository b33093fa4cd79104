"""Rotating proxy endpoint capability."""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING, Protocol

import structlog

from substack_harvester.exceptions import ProxyUnavailableError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from substack_harvester.config import ProxySettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class ProxyProvider(Protocol):
    """Anything that can hand out a proxy URL (or ``None`` for direct)."""

    def get_proxy_url(self) -> str | None: ...


class DirectConnection:
    """Provider that never routes through a proxy."""

    def get_proxy_url(self) -> str | None:
        return None


class RotatingProxyPool:
    """Round-robin rotation over a fixed list of proxy URLs.

    Safe to share between concurrent fetches; each call returns the next
    URL in the cycle.
    """

    def __init__(self, urls: Iterable[str]) -> None:
        self._urls = [u for u in urls if u]
        self._cycle = itertools.cycle(self._urls)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._urls)

    def get_proxy_url(self) -> str | None:
        if not self._urls:
            raise ProxyUnavailableError("Proxy pool is empty")
        with self._lock:
            return next(self._cycle)


def build_proxy_provider(settings: ProxySettings) -> ProxyProvider:
    """Pick the provider described by the proxy settings."""
    if not settings.enabled or not settings.urls:
        return DirectConnection()
    pool = RotatingProxyPool(settings.urls)
    logger.info("proxy_pool_ready", size=len(pool))
    return pool
