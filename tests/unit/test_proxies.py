"""Unit tests for substack_harvester.proxies - proxy rotation."""

from __future__ import annotations

import pytest

from substack_harvester.config import ProxySettings
from substack_harvester.exceptions import ProxyUnavailableError
from substack_harvester.proxies import (
    DirectConnection,
    RotatingProxyPool,
    build_proxy_provider,
)


def test_direct_connection_never_proxies() -> None:
    assert DirectConnection().get_proxy_url() is None


class TestRotatingProxyPool:
    def test_round_robin(self) -> None:
        pool = RotatingProxyPool(["http://a", "http://b", "http://c"])
        assert [pool.get_proxy_url() for _ in range(4)] == [
            "http://a",
            "http://b",
            "http://c",
            "http://a",
        ]

    def test_blank_entries_are_dropped(self) -> None:
        assert len(RotatingProxyPool(["http://a", ""])) == 1

    def test_empty_pool_raises(self) -> None:
        with pytest.raises(ProxyUnavailableError):
            RotatingProxyPool([]).get_proxy_url()


class TestBuildProxyProvider:
    def test_disabled_is_direct(self) -> None:
        provider = build_proxy_provider(ProxySettings(urls=["http://a"]))
        assert isinstance(provider, DirectConnection)

    def test_enabled_without_urls_is_direct(self) -> None:
        provider = build_proxy_provider(ProxySettings(enabled=True, urls=[]))
        assert isinstance(provider, DirectConnection)

    def test_enabled_is_pool(self) -> None:
        provider = build_proxy_provider(
            ProxySettings(enabled=True, urls=["http://a", "http://b"])
        )
        assert isinstance(provider, RotatingProxyPool)
        assert provider.get_proxy_url() == "http://a"
