"""Resilient HTTP fetcher with proxy rotation and exponential backoff.

Every attempt acquires a proxy endpoint, opens a fresh ``httpx.AsyncClient``
routed through it, and issues one GET. Network errors, timeouts, non-2xx
responses, proxy acquisition failures, malformed target or proxy URLs, and
undecodable JSON bodies are all retried. The delay between attempt ``i`` and
``i + 1`` (0-indexed) is ``base_delay * 2**i``; no delay follows the final
attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from substack_harvester.exceptions import (
    FetchError,
    FetchExhausted,
    ParseError,
    ProxyUnavailableError,
    TransientFetchError,
)
from substack_harvester.models import FetchRequest
from substack_harvester.proxies import DirectConnection, ProxyProvider

if TYPE_CHECKING:
    from substack_harvester.config import FetchSettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
ClientFactory = Callable[[str | None, float, dict[str, str]], httpx.AsyncClient]

_DEFAULT_MAX_ATTEMPTS = 3
_DEFAULT_BASE_DELAY = 1.0
_DEFAULT_TIMEOUT = 30.0


def _default_client_factory(
    proxy: str | None, timeout: float, headers: dict[str, str]
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        proxy=proxy,
        timeout=httpx.Timeout(timeout),
        headers=headers,
        follow_redirects=True,
    )


class ResilientFetcher:
    """Fetch JSON or text payloads with retry, backoff, and proxy rotation.

    Args:
        proxies: Proxy capability consulted once per attempt.
        max_attempts: Default retry budget per fetch.
        base_delay_seconds: Default backoff base.
        timeout_seconds: Per-attempt request timeout.
        user_agent: Optional ``User-Agent`` header.
        client_factory: Builds the ``httpx.AsyncClient`` for one attempt.
        sleep: Awaitable used for backoff delays.
    """

    def __init__(
        self,
        proxies: ProxyProvider | None = None,
        *,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = _DEFAULT_BASE_DELAY,
        timeout_seconds: float = _DEFAULT_TIMEOUT,
        user_agent: str | None = None,
        client_factory: ClientFactory | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._proxies = proxies if proxies is not None else DirectConnection()
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.timeout_seconds = timeout_seconds
        self._headers = {"User-Agent": user_agent} if user_agent else {}
        self._client_factory = client_factory or _default_client_factory
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: FetchSettings,
        proxies: ProxyProvider | None = None,
        **kwargs: Any,
    ) -> ResilientFetcher:
        return cls(
            proxies,
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            timeout_seconds=settings.timeout_seconds,
            user_agent=settings.user_agent,
            **kwargs,
        )

    def request(
        self,
        url: str,
        structured: bool = True,
        max_attempts: int | None = None,
        base_delay_seconds: float | None = None,
    ) -> FetchRequest:
        return FetchRequest(
            url=url,
            structured=structured,
            max_attempts=max_attempts or self.max_attempts,
            base_delay_seconds=(
                self.base_delay_seconds
                if base_delay_seconds is None
                else base_delay_seconds
            ),
        )

    async def fetch(
        self,
        url: str,
        structured: bool = True,
        max_attempts: int | None = None,
        base_delay_seconds: float | None = None,
    ) -> Any:
        """Fetch ``url`` and return the decoded JSON body or the raw text.

        Raises:
            FetchExhausted: If every attempt failed. ``last_error`` holds the
                final attempt's error.
        """
        return await self.execute(
            self.request(url, structured, max_attempts, base_delay_seconds)
        )

    async def fetch_json(self, url: str) -> Any:
        return await self.fetch(url, structured=True)

    async def fetch_text(self, url: str) -> str:
        return await self.fetch(url, structured=False)

    async def execute(self, request: FetchRequest) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(request.max_attempts),
            wait=wait_exponential(multiplier=request.base_delay_seconds, exp_base=2),
            retry=retry_if_exception_type(FetchError),
            after=_failed_attempt_logger(request.url),
            sleep=self._sleep,
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(request)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.error(
                "fetch_exhausted",
                url=request.url,
                attempts=request.max_attempts,
                error=str(last_error),
            )
            raise FetchExhausted(request.url, last_error) from last_error
        # AsyncRetrying either yields a successful attempt or raises
        raise FetchExhausted(request.url, None)

    async def _attempt(self, request: FetchRequest) -> Any:
        try:
            proxy = self._proxies.get_proxy_url()
        except ProxyUnavailableError:
            raise
        except Exception as exc:
            raise ProxyUnavailableError(f"Proxy acquisition failed: {exc}") from exc

        try:
            async with self._client_factory(
                proxy, self.timeout_seconds, self._headers
            ) as client:
                response = await client.get(request.url)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransientFetchError(
                f"HTTP {exc.response.status_code} for {request.url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientFetchError(
                f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
            ) from exc
        except (httpx.InvalidURL, ValueError) as exc:
            # Malformed target or proxy URL, raised while building the request
            msg = f"Invalid request for {request.url}: {exc}"
            raise TransientFetchError(msg) from exc

        if not request.structured:
            return response.text
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"Malformed JSON body from {request.url}: {exc}") from exc


def _failed_attempt_logger(url: str) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "fetch_attempt_failed",
            url=url,
            attempt=retry_state.attempt_number,
            error=str(exc),
        )

    return _log
