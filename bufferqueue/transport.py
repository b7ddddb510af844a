"""
Transports perform the actual download of a key.

The scheduler only depends on the Transport protocol: one cancellable
``fetch(key, token)`` coroutine per dispatched key. HttpTransport is the
default implementation and treats keys as URLs, fetched with httpx.

Example:
    >>> import asyncio
    >>> from bufferqueue.transport import CancellationToken, HttpTransport
    >>>
    >>> async def main():
    ...     async with HttpTransport() as transport:
    ...         result = await transport.fetch(
    ...             "https://example.com/data.bin", CancellationToken()
    ...         )
    ...         print(len(result.payload), result.elapsed_ms)
    >>>
    >>> asyncio.run(main())
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from bufferqueue.exceptions import CancelledByCaller, ProtocolFailure, TransportError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    One-shot cancellation signal owned by a single in-flight transfer.

    Firing the token runs the registered callbacks once (the scheduler
    registers the cancellation of the transfer's task) and wakes up anyone
    waiting on it. A new transfer always gets a new token, so aborting an
    old transfer never affects a later one for the same key.

    Example:
        >>> token = CancellationToken()
        >>> token.add_callback(lambda: print("cancelled"))
        >>> token.cancel()
        cancelled
        True
        >>> token.cancel()
        False
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        """Whether cancel() was called."""
        return self._cancelled

    def cancel(self) -> bool:
        """
        Fire the token.

        Returns:
            True on the first call, False if the token had already fired.
        """
        if self._cancelled:
            return False

        self._cancelled = True
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], Any]) -> None:
        """Run a callback when the token fires, or now if it already has."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self, key: str) -> None:
        """Raise CancelledByCaller for the key if the token fired."""
        if self._cancelled:
            raise CancelledByCaller(key)

    async def wait(self) -> None:
        """Wait until the token fires."""
        await self._event.wait()


@dataclass
class TransportSettings:
    """
    Settings applied to every HTTP request made by HttpTransport.

    Attributes:
        method: HTTP method used to fetch a key.
        headers: Extra request headers.
        timeout: Timeout in seconds, or None to wait indefinitely.
        follow_redirects: Whether to follow 3xx redirects.
        base_url: Prefix for keys that are relative URLs.

    Example:
        >>> settings = TransportSettings(
        ...     headers={"Authorization": "Bearer abc"},
        ...     base_url="https://tiles.example.com",
        ... )
    """

    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    follow_redirects: bool = True
    base_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""
        return {
            "method": self.method,
            "headers": dict(self.headers),
            "timeout": self.timeout,
            "follow_redirects": self.follow_redirects,
            "base_url": self.base_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransportSettings:
        """Create settings from dictionary."""
        return cls(
            method=data.get("method", "GET"),
            headers=dict(data.get("headers", {})),
            timeout=data.get("timeout"),
            follow_redirects=data.get("follow_redirects", True),
            base_url=data.get("base_url", ""),
        )


@dataclass
class TransferResult:
    """
    Outcome of a successful transfer.

    Attributes:
        key: The key that was fetched.
        payload: Raw body of the response.
        elapsed_ms: Wall time of the transfer in milliseconds.
        status_code: Status code of the response, when the transport has one.
    """

    key: str
    payload: bytes
    elapsed_ms: float
    status_code: int | None = None


@runtime_checkable
class Transport(Protocol):
    """
    Protocol for download backends.

    ``fetch`` must return a TransferResult on success, raise ProtocolFailure
    when the remote end answered with a non-success status, raise
    TransportError on network failures, and raise CancelledByCaller (or let
    asyncio.CancelledError propagate) once ``token`` fires.
    """

    async def fetch(self, key: str, token: CancellationToken) -> TransferResult:
        """Download one key."""
        ...

    async def aclose(self) -> None:
        """Release the resources held by the transport."""
        ...


class HttpTransport:
    """
    Transport fetching keys as URLs with an httpx.AsyncClient.

    The response body is streamed so that an abort is noticed between
    chunks even when the task is not cancelled.

    Example:
        >>> transport = HttpTransport(TransportSettings(timeout=30.0))
        >>> # ... hand it to a BufferQueue, then
        >>> await transport.aclose()
    """

    def __init__(
        self,
        settings: TransportSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            settings: Request settings. Defaults to TransportSettings().
            client: Preconfigured client. When omitted, one is created from
                the settings and closed by aclose().
        """
        self.settings = settings or TransportSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.base_url,
            headers=self.settings.headers,
            timeout=self.settings.timeout,
            follow_redirects=self.settings.follow_redirects,
        )

    async def fetch(self, key: str, token: CancellationToken) -> TransferResult:
        """
        Download a URL.

        Args:
            key: Absolute URL, or URL relative to the settings' base_url.
            token: Cancellation token of the transfer.

        Returns:
            The response body and the time it took.

        Raises:
            ProtocolFailure: If the status code is not 2xx.
            TransportError: If the request could not be completed.
            CancelledByCaller: If the token fired during the transfer.
        """
        token.raise_if_cancelled(key)
        start = time.perf_counter()
        chunks: list[bytes] = []

        try:
            async with self._client.stream(
                self.settings.method,
                key,
                headers=self.settings.headers,
                timeout=self.settings.timeout,
                follow_redirects=self.settings.follow_redirects,
            ) as response:
                if not response.is_success:
                    raise ProtocolFailure(
                        key=key,
                        status_code=response.status_code,
                        reason=response.reason_phrase,
                    )
                async for chunk in response.aiter_bytes():
                    token.raise_if_cancelled(key)
                    chunks.append(chunk)
                status_code = response.status_code
        except httpx.HTTPError as e:
            raise TransportError(key, str(e) or type(e).__name__, cause=e) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Fetched '{key}' ({sum(map(len, chunks))} bytes) in {elapsed_ms:.1f}ms")
        return TransferResult(
            key=key,
            payload=b"".join(chunks),
            elapsed_ms=elapsed_ms,
            status_code=status_code,
        )

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
