"""Resilient outbound HTTP executor used by plugins and the config fetcher."""

from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Mapping

import httpx
import structlog

from vodhub.domain.errors import (
    HttpStatusError,
    InvokerError,
    NetworkError,
    RequestTimeoutError,
)
from vodhub.domain.ports.invoker import InvokeRequest, InvokeResponse
from vodhub.infrastructure.config.schema import HttpConfig

log = structlog.get_logger(__name__)

_DEFAULT_RETRYABLE = frozenset({429, 502, 503, 504})
_RETRY_AFTER_STATUSES = frozenset({429, 503})


def _parse_retry_after(headers: httpx.Headers) -> float | None:
    """Parse ``Retry-After`` header value (seconds only).

    Returns the delay in seconds, or ``None`` if the header is missing
    or unparseable.  HTTP-date format is ignored.
    """
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (ValueError, TypeError):
        return None


class ResilientInvoker:
    """Executes :class:`InvokeRequest` objects over one ``httpx.AsyncClient``.

    **Timeouts:** connect/read timeouts per attempt, shrunk to whatever is
    left of the optional ``deadline`` (an absolute ``time.monotonic()`` value).

    **Retries:** idempotent requests only, on retryable status codes
    (429, 502, 503, 504) and on transport errors/timeouts, with exponential
    backoff plus jitter. ``Retry-After`` on 429/503 wins over the computed
    delay, capped at *max_backoff*. No sleep ever crosses the deadline.

    **Release:** each attempt holds its response inside ``async with
    client.stream(...)`` so the connection is returned on every exit path,
    including cancellation.

    Every site gets its own invoker (own session, own cookies/headers).
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 15.0,
        connect_timeout_seconds: float = 5.0,
        follow_redirects: bool = True,
        user_agent: str = "vodhub",
        headers: Mapping[str, str] | None = None,
        max_retries: int = 2,
        backoff_base: float = 0.5,
        max_backoff: float = 8.0,
        retryable_status_codes: frozenset[int] = _DEFAULT_RETRYABLE,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "default",
    ) -> None:
        self.name = name
        self._timeout_seconds = timeout_seconds
        self._connect_timeout = connect_timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._max_backoff = max_backoff
        self._retryable = retryable_status_codes
        self._sleep = sleep

        base_headers = {"User-Agent": user_agent}
        base_headers.update(headers or {})
        self._client = httpx.AsyncClient(
            headers=base_headers,
            follow_redirects=follow_redirects,
            timeout=httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds),
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: HttpConfig,
        *,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        name: str = "default",
    ) -> ResilientInvoker:
        return cls(
            timeout_seconds=config.timeout_seconds,
            connect_timeout_seconds=config.connect_timeout_seconds,
            follow_redirects=config.follow_redirects,
            user_agent=config.user_agent,
            headers=headers,
            max_retries=config.max_retries,
            backoff_base=config.backoff_base,
            max_backoff=config.max_backoff,
            transport=transport,
            name=name,
        )

    # --- Context Manager ---
    async def __aenter__(self) -> ResilientInvoker:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()
            log.debug("invoker_closed", invoker=self.name)

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    # --- InvokerPort implementation ---
    async def invoke(
        self, request: InvokeRequest, *, deadline: float | None = None
    ) -> InvokeResponse:
        """Send *request*, retrying where allowed.

        Raises:
            RequestTimeoutError: attempt timed out / deadline exhausted.
            HttpStatusError: final response had status >= 400.
            NetworkError: connection-level failure.
        """
        attempts = 1 + (self._max_retries if request.is_idempotent else 0)
        last_error: InvokerError | None = None

        for attempt in range(attempts):
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                raise RequestTimeoutError(
                    f"deadline exceeded before attempt {attempt + 1} "
                    f"for {request.url}"
                ) from last_error

            retry_after: float | None = None
            try:
                response = await self._attempt(request, remaining)
            except InvokerError as exc:
                # Timeouts and transport errors reach here; both are retryable.
                last_error = exc
            else:
                if response.status_code < 400:
                    return response
                error = HttpStatusError(response.status_code, str(response.url))
                if response.status_code not in self._retryable:
                    raise error
                last_error = error
                if response.status_code in _RETRY_AFTER_STATUSES:
                    retry_after = _parse_retry_after(httpx.Headers(response.headers))

            if attempt + 1 >= attempts:
                break

            delay = self._compute_delay(attempt, retry_after)
            remaining = self._remaining(deadline)
            if remaining is not None and delay >= remaining:
                log.info(
                    "http_retry_abandoned",
                    invoker=self.name,
                    url=request.url,
                    reason="deadline",
                    attempt=attempt + 1,
                )
                break

            log.info(
                "http_retry",
                invoker=self.name,
                url=request.url,
                method=request.method,
                error=str(last_error),
                attempt=attempt + 1,
                delay=round(delay, 2),
            )
            await self._sleep(delay)

        assert last_error is not None
        raise last_error

    async def _attempt(
        self, request: InvokeRequest, remaining: float | None
    ) -> InvokeResponse:
        timeout = self._attempt_timeout(request, remaining)
        try:
            async with self._client.stream(
                request.method.upper(),
                request.url,
                params=dict(request.params) if request.params else None,
                headers=dict(request.headers) if request.headers else None,
                json=request.json_body,
                data=dict(request.form) if request.form else None,
                content=request.content,
                timeout=timeout,
            ) as response:
                body = await response.aread()
                log.debug(
                    "http_response",
                    invoker=self.name,
                    url=str(response.url),
                    status=response.status_code,
                    size=len(body),
                )
                return InvokeResponse(
                    status_code=response.status_code,
                    url=str(response.url),
                    content=body,
                    headers=dict(response.headers),
                    encoding=response.charset_encoding,
                )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"timeout for {request.url}: {exc}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"network error for {request.url}: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise NetworkError(f"invalid url {request.url!r}: {exc}") from exc

    def _attempt_timeout(
        self, request: InvokeRequest, remaining: float | None
    ) -> httpx.Timeout:
        read = request.timeout or self._timeout_seconds
        connect = self._connect_timeout
        if remaining is not None:
            read = min(read, remaining)
            connect = min(connect, remaining)
        return httpx.Timeout(read, connect=connect)

    def _compute_delay(self, attempt: int, retry_after: float | None) -> float:
        """Compute retry delay from Retry-After or exponential backoff."""
        if retry_after is not None:
            return min(retry_after, self._max_backoff)
        delay = self._backoff_base * (2**attempt)
        jitter = random.uniform(0, self._backoff_base)  # noqa: S311
        return min(delay + jitter, self._max_backoff)

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - time.monotonic()

    # --- Convenience helpers ---
    async def get_text(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> str:
        response = await self.invoke(
            InvokeRequest(url=url, params=params, headers=headers), deadline=deadline
        )
        return response.text

    async def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> Any:
        response = await self.invoke(
            InvokeRequest(url=url, params=params, headers=headers), deadline=deadline
        )
        try:
            return response.json()
        except ValueError as exc:
            raise InvokerError(f"invalid JSON from {url}: {exc}") from exc
