"""
Shared HTTP plumbing for the Attio and HubSpot clients.

Handles:
- Injectable retry policy (tenacity) with a replaceable sleep
- Mapping of httpx failures into the typed error hierarchy
- Cursor/offset pagination that must be exhausted before returning
- Fixed-size batching with fork-join fan-out and an inter-batch delay
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import is_transient, wrap_http_error
from ..logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')
R = TypeVar('R')

Sleep = Callable[[float], Awaitable[None]]


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        'http_retry_scheduled',
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff for remote calls.

    Delay before attempt n+1 is ``base_delay * 2**(n-1)`` capped at
    ``max_delay``. Only exceptions accepted by ``is_retryable`` are retried;
    everything else propagates on the first failure. ``sleep`` can be
    swapped for a recording coroutine in tests.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    is_retryable: Callable[[BaseException], bool] = is_transient
    sleep: Sleep = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: Any, sleep: Sleep | None = None) -> 'RetryPolicy':
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            sleep=sleep or asyncio.sleep,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(self.is_retryable),
            sleep=self.sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[R]], *args: Any, **kwargs: Any) -> R:
        """Run ``fn`` under this policy, re-raising the last error when exhausted."""
        return await self.retrying()(fn, *args, **kwargs)


class ApiClient:
    """
    Async JSON API client with retry and typed errors.

    Subclasses set ``service_name`` and build their own endpoints on top of
    ``request``. Pass ``transport`` (e.g. ``httpx.MockTransport``) to run
    against an in-process fake.
    """

    service_name = 'api'

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        page_delay: float = 0.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.page_delay = page_delay
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip('/'),
            headers={'Content-Type': 'application/json', **headers},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Issue a request under the retry policy.

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            TransientNetworkError: Retries exhausted on network/5xx/429
            NotFoundError: 404 (never retried)
            PermanentAPIError: Any other 4xx (never retried)
        """
        return await self.retry_policy.call(
            self._send, method, path, params=params, json=json
        )

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: Any,
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=json)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise wrap_http_error(
                exc,
                context={'service': self.service_name, 'method': method, 'path': path},
            ) from exc

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def exhaust_pages(
        self,
        fetch_page: Callable[[Any], Awaitable[tuple[list[T], Any]]],
    ) -> list[T]:
        return await exhaust_pages(
            fetch_page, delay=self.page_delay, sleep=self.retry_policy.sleep
        )


async def exhaust_pages(
    fetch_page: Callable[[Any], Awaitable[tuple[list[T], Any]]],
    delay: float = 0.0,
    sleep: Sleep = asyncio.sleep,
) -> list[T]:
    """
    Drain a cursor- or offset-paginated listing.

    ``fetch_page(cursor)`` returns ``(items, next_cursor)``; the first call
    receives None and a falsy ``next_cursor`` ends the listing. A cursor
    that repeats also ends it, so a misbehaving API cannot loop forever.
    """
    items: list[T] = []
    seen: set[Any] = set()
    cursor: Any = None
    pages = 0

    while True:
        page, next_cursor = await fetch_page(cursor)
        items.extend(page)
        pages += 1
        if not next_cursor:
            break
        if next_cursor in seen:
            logger.warning('pagination_cursor_repeated', cursor=str(next_cursor), pages=pages)
            break
        seen.add(next_cursor)
        cursor = next_cursor
        if delay:
            await sleep(delay)

    return items


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay: float = 0.0,
    sleep: Sleep = asyncio.sleep,
) -> list[R | BaseException]:
    """
    Run ``worker`` over ``items`` in fixed-size concurrent groups.

    Each group is gathered before the next starts, with ``delay`` seconds
    between groups. Results keep input order; failures are returned in
    place as exception objects.
    """
    if batch_size < 1:
        raise ValueError('batch_size must be >= 1')

    results: list[R | BaseException] = []
    for start in range(0, len(items), batch_size):
        if start and delay:
            await sleep(delay)
        batch = items[start:start + batch_size]
        results.extend(
            await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        )
    return results
