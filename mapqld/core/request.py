"""Resilient request client.

Wraps a single backend call with a per-attempt timeout, cooperative
cancellation, and retry with exponential backoff. The same wrapper is
used by every endpoint the backend adapter talks to; it has no
knowledge of parcels or layers.

Semantics:
    - Each attempt is bounded by ``timeout_s``. On expiry the in-flight
      transport task is cancelled and ``RequestTimeoutError`` is raised.
    - A ``CancellationToken`` that is already cancelled fails the call
      before any transport work. Cancelling it mid-flight (or during a
      backoff sleep) aborts the transport and raises
      ``RequestCancelledError``, which is never retried.
    - Every other failure is retried up to ``retries`` times, sleeping
      ``backoff_base_s * 2**attempt`` between attempts. When attempts
      are exhausted the last failure is re-raised.
    - Non-2xx responses are failures (``HttpStatusError``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from mapqld.core.constants import (
    DEFAULT_API_BASE,
    DEFAULT_BACKOFF_BASE_S,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_S,
)
from mapqld.core.exceptions import (
    HttpStatusError,
    RequestCancelledError,
    RequestTimeoutError,
    RequestTransportError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from mapqld.core.config import ClientConfig

logger = logging.getLogger("mapqld.core.request")

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation handle shared by one chain of requests.

    A token is single-use: once cancelled it stays cancelled. Callers
    that need a fresh chain create a new token.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel()`` has been called."""
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "") -> None:
        """Cancel every request currently or subsequently bound to this token."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """Raise ``RequestCancelledError`` if the token is cancelled."""
        if self.cancelled:
            raise RequestCancelledError(self._reason)


class RequestClient:
    """Hardened call wrapper around a shared ``httpx.AsyncClient``.

    Example usage::

        async with RequestClient("http://localhost:8000") as client:
            response = await client.request("GET", "/layers", timeout_s=20)
            data = response.json()

    Args:
        base_url: Backend origin all request paths are relative to.
        timeout_s: Default per-attempt timeout in seconds.
        retries: Default number of retries after the first attempt.
        backoff_base_s: Base backoff delay in seconds (doubles per retry).
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
        sleep: Awaitable sleep used for backoff delays.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retries: int = DEFAULT_RETRIES,
        backoff_base_s: float = DEFAULT_BACKOFF_BASE_S,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._timeout_s = timeout_s
        self._retries = retries
        self._backoff_base_s = backoff_base_s
        self._sleep = sleep
        # Attempt timeouts are enforced here, not by httpx.
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=None)

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RequestClient:
        """Build a client from a validated ``ClientConfig``."""
        return cls(
            config.api_base,
            timeout_s=config.request_timeout_s,
            retries=config.retries,
            backoff_base_s=config.backoff_base_s,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._http.base_url)

    @property
    def retries(self) -> int:
        return self._retries

    async def __aenter__(self) -> RequestClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        timeout_s: float | None = None,
        retries: int | None = None,
        token: CancellationToken | None = None,
    ) -> httpx.Response:
        """Send one HTTP request through ``execute``.

        Returns:
            The successful (2xx) ``httpx.Response`` with its body loaded.

        Raises:
            HttpStatusError: If every attempt answered non-2xx.
            RequestTimeoutError: If the last attempt timed out.
            RequestTransportError: If the last attempt failed in transport.
            RequestCancelledError: If *token* was cancelled.
        """

        async def _send() -> httpx.Response:
            response = await self._http.request(method, path, json=json)
            if not response.is_success:
                raise HttpStatusError(
                    response.status_code,
                    response.reason_phrase,
                    url=str(response.request.url),
                )
            return response

        return await self.execute(
            _send,
            timeout_s=timeout_s,
            retries=retries,
            token=token,
            label=f"{method} {path}",
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout_s: float | None = None,
        retries: int | None = None,
        token: CancellationToken | None = None,
        label: str = "",
    ) -> T:
        """Run *operation* with timeout, cancellation, and retry.

        *operation* is a zero-argument callable returning a fresh awaitable
        for every attempt.

        Raises:
            RequestCancelledError: If *token* is or becomes cancelled.
            Exception: The last failure once all attempts are exhausted.
        """
        timeout = self._timeout_s if timeout_s is None else timeout_s
        max_retries = self._retries if retries is None else retries

        attempt = 0
        while True:
            try:
                return await self._attempt(operation, timeout, token, label)
            except RequestCancelledError:
                raise
            except Exception as exc:
                if attempt >= max_retries:
                    logger.warning(
                        "Request failed | label=%s | attempts=%d | error=%s",
                        label,
                        attempt + 1,
                        exc,
                    )
                    raise
                delay = self._backoff_base_s * 2**attempt
                logger.warning(
                    "Request failed, retrying | label=%s | attempt=%d/%d | delay=%.2fs | error=%s",
                    label,
                    attempt + 1,
                    max_retries + 1,
                    delay,
                    exc,
                )
            await self._backoff(delay, token)
            attempt += 1

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout: float,
        token: CancellationToken | None,
        label: str,
    ) -> T:
        """Run a single attempt racing the operation against timeout and token."""
        if token is not None:
            token.raise_if_cancelled()

        task: asyncio.Future[T] = asyncio.ensure_future(operation())
        watched: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Future[None] | None = None
        if token is not None:
            cancel_waiter = asyncio.ensure_future(token.wait())
            watched.add(cancel_waiter)

        try:
            done, _pending = await asyncio.wait(
                watched,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            await _cancel_and_wait(task, cancel_waiter)

        # A late response for a cancelled token is discarded.
        if token is not None and token.cancelled:
            raise RequestCancelledError(token.reason)
        if task not in done:
            raise RequestTimeoutError(timeout, label)

        try:
            return task.result()
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(timeout, label) from exc
        except httpx.TransportError as exc:
            msg = f"Transport error ({label}): {exc}"
            raise RequestTransportError(msg) from exc

    async def _backoff(self, delay: float, token: CancellationToken | None) -> None:
        """Sleep *delay* seconds, waking early if *token* is cancelled."""
        if token is None:
            await self._sleep(delay)
            return

        token.raise_if_cancelled()
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await _cancel_and_wait(sleeper, waiter)
        token.raise_if_cancelled()


async def _cancel_and_wait(*futures: asyncio.Future[Any] | None) -> None:
    """Cancel unfinished futures and let them unwind."""
    pending = {f for f in futures if f is not None and not f.done()}
    for future in pending:
        future.cancel()
    if pending:
        await asyncio.wait(pending)
    for future in futures:
        # Mark exceptions as retrieved; the caller inspects results itself.
        if future is not None and future.done() and not future.cancelled():
            future.exception()
