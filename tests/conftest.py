"""
Pytest fixtures for bufferqueue tests.

Provides a controllable in-memory transport and an event recorder.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from bufferqueue.events import ALL_EVENTS, EventManager
from bufferqueue.transport import CancellationToken, TransferResult


# ============================================================================
# Transport Fixtures
# ============================================================================


class FakeTransport:
    """
    Transport whose transfers stay pending until the test resolves them.

    Each fetch() parks on a future stored in ``pending``; succeed() and
    fail() resolve it.
    """

    def __init__(self) -> None:
        self.pending: dict[str, asyncio.Future] = {}
        self.started: list[str] = []
        self.tokens: dict[str, CancellationToken] = {}
        self.closed = False

    async def fetch(self, key: str, token: CancellationToken) -> TransferResult:
        future = asyncio.get_running_loop().create_future()
        self.pending[key] = future
        self.started.append(key)
        self.tokens[key] = token
        try:
            return await future
        finally:
            if self.pending.get(key) is future:
                del self.pending[key]

    def succeed(self, key: str, payload: bytes = b"data", elapsed_ms: float = 5.0) -> None:
        self.pending[key].set_result(
            TransferResult(key=key, payload=payload, elapsed_ms=elapsed_ms, status_code=200)
        )

    def fail(self, key: str, error: BaseException) -> None:
        self.pending[key].set_exception(error)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Create a transport resolved by hand."""
    return FakeTransport()


# ============================================================================
# Event Fixtures
# ============================================================================


class EventRecorder:
    """Records every lifecycle event emitted on an EventManager."""

    def __init__(self, events: EventManager) -> None:
        self.calls: list[tuple[Any, ...]] = []
        for name in ALL_EVENTS:
            events.on(name, self._recorder(name))

    def _recorder(self, name: str):
        def record(*args: Any) -> None:
            self.calls.append((name, *args))

        return record

    def named(self, name: str) -> list[tuple[Any, ...]]:
        """Get the arguments of every call of one event."""
        return [call[1:] for call in self.calls if call[0] == name]

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def events() -> EventManager:
    """Create an empty event manager."""
    return EventManager()


@pytest.fixture
def recorder(events: EventManager) -> EventRecorder:
    """Record everything emitted on the ``events`` fixture."""
    return EventRecorder(events)
