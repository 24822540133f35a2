"""Tests for the resilient request client.

Covers:
- Successful requests return the httpx response
- Attempt bound: at most ``retries + 1`` transport calls
- Exponential backoff delays (``base * 2**attempt``)
- Non-2xx answers become ``HttpStatusError("HTTP <status>: <reason>")``
- Cancellation before, during, and between attempts is never retried
- Per-attempt timeout and transport failures map to domain errors
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from mapqld.core.config import ClientConfig
from mapqld.core.exceptions import (
    HttpStatusError,
    RequestCancelledError,
    RequestTimeoutError,
    RequestTransportError,
)
from mapqld.core.request import CancellationToken, RequestClient

BASE_URL = "http://backend.test"


class _Recorder:
    """Counts transport calls and records backoff delays."""

    def __init__(self) -> None:
        self.calls = 0
        self.delays: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler, recorder: _Recorder, **kwargs) -> RequestClient:
    def counting(request: httpx.Request):
        recorder.calls += 1
        return handler(request)

    kwargs.setdefault("retries", 2)
    kwargs.setdefault("backoff_base_s", 0.5)
    return RequestClient(
        BASE_URL,
        transport=httpx.MockTransport(counting),
        sleep=recorder.sleep,
        **kwargs,
    )


class TestRequestSuccess:
    """Happy-path requests."""

    @pytest.mark.asyncio()
    async def test_returns_response(self) -> None:
        recorder = _Recorder()
        client = _client(lambda r: httpx.Response(200, json={"ok": True}), recorder)
        async with client:
            response = await client.request("GET", "/healthz")
        assert response.json() == {"ok": True}
        assert recorder.calls == 1
        assert recorder.delays == []

    @pytest.mark.asyncio()
    async def test_sends_json_body_to_base_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        client = _client(handler, _Recorder())
        async with client:
            await client.request("POST", "/parcel/resolve", json={"lotplan": "3/RP67254"})

        assert str(seen[0].url) == f"{BASE_URL}/parcel/resolve"
        assert json.loads(seen[0].content) == {"lotplan": "3/RP67254"}

    @pytest.mark.asyncio()
    async def test_recovers_after_transient_failure(self) -> None:
        recorder = _Recorder()

        def handler(request: httpx.Request) -> httpx.Response:
            if recorder.calls == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"layers": []})

        client = _client(handler, recorder)
        async with client:
            response = await client.request("GET", "/layers")
        assert response.status_code == 200
        assert recorder.calls == 2
        assert recorder.delays == [0.5]

    def test_from_config(self) -> None:
        cfg = ClientConfig(api_base="http://example.test:9000", retries=5, request_timeout_s=3.0)
        client = RequestClient.from_config(cfg)
        assert client.retries == 5
        assert client.base_url.startswith("http://example.test:9000")


class TestRetryBound:
    """Attempt count and backoff schedule."""

    @pytest.mark.asyncio()
    async def test_at_most_retries_plus_one_attempts(self) -> None:
        recorder = _Recorder()
        client = _client(lambda r: httpx.Response(500), recorder, retries=2)
        async with client:
            with pytest.raises(HttpStatusError):
                await client.request("GET", "/layers")
        assert recorder.calls == 3

    @pytest.mark.asyncio()
    async def test_exponential_backoff_delays(self) -> None:
        recorder = _Recorder()
        client = _client(lambda r: httpx.Response(500), recorder, retries=3, backoff_base_s=0.5)
        async with client:
            with pytest.raises(HttpStatusError):
                await client.request("GET", "/layers")
        assert recorder.delays == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio()
    async def test_zero_retries_single_attempt(self) -> None:
        recorder = _Recorder()
        client = _client(lambda r: httpx.Response(500), recorder)
        async with client:
            with pytest.raises(HttpStatusError):
                await client.request("GET", "/layers", retries=0)
        assert recorder.calls == 1

    @pytest.mark.asyncio()
    async def test_status_error_message(self) -> None:
        client = _client(lambda r: httpx.Response(404), _Recorder(), retries=0)
        async with client:
            with pytest.raises(HttpStatusError) as exc_info:
                await client.request("GET", "/layers")
        assert str(exc_info.value) == "HTTP 404: Not Found"
        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio()
    async def test_server_error_is_retryable(self) -> None:
        client = _client(lambda r: httpx.Response(502), _Recorder(), retries=0)
        async with client:
            with pytest.raises(HttpStatusError) as exc_info:
                await client.request("GET", "/layers")
        assert exc_info.value.retryable is True


class TestCancellation:
    """Cancellation is never retried."""

    @pytest.mark.asyncio()
    async def test_pre_cancelled_token_makes_no_call(self) -> None:
        recorder = _Recorder()
        token = CancellationToken()
        token.cancel("superseded")
        client = _client(lambda r: httpx.Response(200), recorder)
        async with client:
            with pytest.raises(RequestCancelledError) as exc_info:
                await client.request("GET", "/layers", token=token)
        assert recorder.calls == 0
        assert exc_info.value.reason == "superseded"

    @pytest.mark.asyncio()
    async def test_cancel_mid_flight_aborts_without_retry(self) -> None:
        recorder = _Recorder()
        started = asyncio.Event()

        async def slow(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200)

        token = CancellationToken()
        client = _client(slow, recorder, retries=3)
        async with client:
            pending = asyncio.ensure_future(client.request("GET", "/layers", token=token))
            await started.wait()
            token.cancel("new search")
            with pytest.raises(RequestCancelledError):
                await pending
        assert recorder.calls == 1
        assert recorder.delays == []

    @pytest.mark.asyncio()
    async def test_cancel_during_backoff(self) -> None:
        recorder = _Recorder()
        token = CancellationToken()

        async def cancelling_sleep(delay: float) -> None:
            recorder.delays.append(delay)
            token.cancel("stop")

        client = RequestClient(
            BASE_URL,
            retries=3,
            transport=httpx.MockTransport(lambda r: httpx.Response(500)),
            sleep=cancelling_sleep,
        )
        async with client:
            with pytest.raises(RequestCancelledError):
                await client.request("GET", "/layers", token=token)
        assert recorder.delays == [0.5]

    def test_token_is_single_use(self) -> None:
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled is True
        assert token.reason == "first"


class TestTimeoutAndTransport:
    """Timeout and transport failure mapping."""

    @pytest.mark.asyncio()
    async def test_attempt_timeout(self) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        client = _client(slow, _Recorder(), retries=0)
        async with client:
            with pytest.raises(RequestTimeoutError) as exc_info:
                await client.request("GET", "/layers", timeout_s=0.01)
        assert exc_info.value.retryable is True
        assert "GET /layers" in str(exc_info.value)

    @pytest.mark.asyncio()
    async def test_timeout_is_retried(self) -> None:
        recorder = _Recorder()

        async def slow_then_fast(request: httpx.Request) -> httpx.Response:
            if recorder.calls == 1:
                await asyncio.sleep(5)
            return httpx.Response(200, json={})

        client = _client(slow_then_fast, recorder, retries=1)
        async with client:
            response = await client.request("GET", "/layers", timeout_s=0.05)
        assert response.status_code == 200
        assert recorder.calls == 2

    @pytest.mark.asyncio()
    async def test_transport_error(self) -> None:
        def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        recorder = _Recorder()
        client = _client(broken, recorder, retries=1)
        async with client:
            with pytest.raises(RequestTransportError):
                await client.request("GET", "/layers")
        assert recorder.calls == 2
