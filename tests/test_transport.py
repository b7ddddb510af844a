"""
Tests for the HTTP transport, cancellation tokens and transport errors.
"""

import asyncio

import httpx
import pytest

from bufferqueue import BufferQueue, EventManager, SchedulerConfig
from bufferqueue.exceptions import (
    BufferQueueError,
    CancelledByCaller,
    ProtocolFailure,
    TransportError,
)
from bufferqueue.transport import (
    CancellationToken,
    HttpTransport,
    TransferResult,
    Transport,
    TransportSettings,
)


def mock_client(handler, **kwargs) -> httpx.AsyncClient:
    """Create a client answering every request with a handler."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel_runs_callbacks_once(self):
        """Test callbacks fire on the first cancel only."""
        token = CancellationToken()
        calls = []
        token.add_callback(lambda: calls.append("cb"))

        assert not token.cancelled
        assert token.cancel()
        assert not token.cancel()
        assert token.cancelled
        assert calls == ["cb"]

    def test_callback_added_after_cancel_runs_immediately(self):
        """Test late callbacks still run."""
        token = CancellationToken()
        token.cancel()
        calls = []
        token.add_callback(lambda: calls.append("late"))
        assert calls == ["late"]

    def test_raise_if_cancelled(self):
        """Test the token raises CancelledByCaller once fired."""
        token = CancellationToken()
        token.raise_if_cancelled("a")

        token.cancel()
        with pytest.raises(CancelledByCaller) as exc_info:
            token.raise_if_cancelled("a")
        assert exc_info.value.key == "a"

    @pytest.mark.asyncio
    async def test_wait(self):
        """Test waiting for the token."""
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.cancel()
        await asyncio.wait_for(waiter, timeout=1.0)


class TestTransportSettings:
    """Tests for TransportSettings."""

    def test_defaults(self):
        """Test no timeout is enforced by default."""
        settings = TransportSettings()
        assert settings.method == "GET"
        assert settings.timeout is None
        assert settings.follow_redirects

    def test_round_trip(self):
        """Test to_dict / from_dict."""
        settings = TransportSettings(headers={"A": "1"}, timeout=3.0, base_url="http://x")
        assert TransportSettings.from_dict(settings.to_dict()) == settings


class TestHttpTransport:
    """Tests for HttpTransport."""

    def test_satisfies_protocol(self):
        """Test HttpTransport implements the Transport protocol."""
        transport = HttpTransport(client=mock_client(lambda request: httpx.Response(200)))
        assert isinstance(transport, Transport)

    @pytest.mark.asyncio
    async def test_fetch_success(self):
        """Test a 200 response returns its body."""
        client = mock_client(lambda request: httpx.Response(200, content=b"tile-bytes"))
        transport = HttpTransport(client=client)

        result = await transport.fetch("https://cdn.example.com/a.bin", CancellationToken())

        assert isinstance(result, TransferResult)
        assert result.key == "https://cdn.example.com/a.bin"
        assert result.payload == b"tile-bytes"
        assert result.status_code == 200
        assert result.elapsed_ms >= 0
        await client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_sends_settings(self):
        """Test method, headers and base URL are applied."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"ok")

        settings = TransportSettings(
            method="POST",
            headers={"X-Token": "secret"},
            base_url="https://tiles.example.com",
        )
        client = mock_client(handler, base_url=settings.base_url)
        transport = HttpTransport(settings, client=client)

        await transport.fetch("/4/2/7.bin", CancellationToken())

        [request] = seen
        assert request.method == "POST"
        assert request.headers["X-Token"] == "secret"
        assert str(request.url) == "https://tiles.example.com/4/2/7.bin"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        """Test 4xx/5xx responses raise ProtocolFailure."""
        client = mock_client(lambda request: httpx.Response(404))
        transport = HttpTransport(client=client)

        with pytest.raises(ProtocolFailure) as exc_info:
            await transport.fetch("https://cdn.example.com/missing", CancellationToken())

        assert exc_info.value.status_code == 404
        assert exc_info.value.reason == "Not Found"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Test httpx errors raise TransportError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = mock_client(handler)
        transport = HttpTransport(client=client)

        with pytest.raises(TransportError) as exc_info:
            await transport.fetch("https://down.example.com/a", CancellationToken())

        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        assert "connection refused" in exc_info.value.reason
        await client.aclose()

    @pytest.mark.asyncio
    async def test_cancelled_token(self):
        """Test a fired token stops the fetch before any request."""
        seen = []
        client = mock_client(lambda request: seen.append(request) or httpx.Response(200))
        transport = HttpTransport(client=client)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CancelledByCaller):
            await transport.fetch("https://cdn.example.com/a", token)
        assert seen == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_keeps_injected_client(self):
        """Test only clients created by the transport are closed."""
        client = mock_client(lambda request: httpx.Response(200))
        transport = HttpTransport(client=client)
        await transport.aclose()
        assert not client.is_closed
        await client.aclose()

        async with HttpTransport() as owned:
            pass
        assert owned._client.is_closed


class TestHttpDownloads:
    """End-to-end tests of BufferQueue over a mocked HTTP server."""

    @pytest.mark.asyncio
    async def test_downloads_report_outcomes(self):
        """Test success and failed events for real HTTP exchanges."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/missing":
                return httpx.Response(404)
            return httpx.Response(200, content=request.url.path.encode())

        client = mock_client(handler, base_url="https://cdn.example.com")
        transport = HttpTransport(client=client)
        events = EventManager()
        successes, failures = {}, {}
        done = asyncio.Event()

        def on_success(key, payload, elapsed_ms):
            successes[key] = payload
            if len(successes) + len(failures) == 3:
                done.set()

        def on_failed(key, error):
            failures[key] = error
            if len(successes) + len(failures) == 3:
                done.set()

        events.on("success", on_success)
        events.on("failed", on_failed)

        async with BufferQueue(
            SchedulerConfig(concurrent_downloads=2), transport=transport, events=events
        ) as queue:
            queue.add("/a", 0)
            queue.add("/b", 2)
            queue.add("/missing", 1)
            await asyncio.wait_for(done.wait(), timeout=5.0)

        assert successes == {"/a": b"/a", "/b": b"/b"}
        assert isinstance(failures["/missing"], ProtocolFailure)
        await client.aclose()


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_hierarchy(self):
        """Test every outcome error derives from BufferQueueError."""
        assert issubclass(ProtocolFailure, BufferQueueError)
        assert issubclass(TransportError, BufferQueueError)
        assert issubclass(CancelledByCaller, BufferQueueError)

    def test_protocol_failure_details(self):
        """Test ProtocolFailure message and serialization."""
        error = ProtocolFailure("https://x/a", 503, "Service Unavailable")
        assert "503" in str(error)
        assert error.to_dict() == {
            "error_type": "ProtocolFailure",
            "message": "Download of 'https://x/a' failed with status 503 (Service Unavailable)",
            "details": {
                "key": "https://x/a",
                "status_code": 503,
                "reason": "Service Unavailable",
            },
        }

    def test_transport_error_cause(self):
        """Test TransportError keeps its cause."""
        cause = OSError("reset")
        error = TransportError("k", "reset", cause=cause)
        assert error.cause is cause
        assert error.details["cause_type"] == "OSError"

    def test_base_error_without_details(self):
        """Test the plain message is used without details."""
        assert str(BufferQueueError("plain")) == "plain"
