"""
Download scheduler with bounded concurrency.

Keys are queued in a PriorityQueue and dispatched to a Transport, at most
``concurrent_downloads`` at a time. Everything runs on one asyncio event
loop: public methods never wait for a transfer, and completions are handled
by task callbacks on the same loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import math
import random
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import Enum, auto
from typing import Any

from bufferqueue.events import (
    EVENT_ABORTED,
    EVENT_ADDED,
    EVENT_DOWNLOADING,
    EVENT_FAILED,
    EVENT_REMOVED,
    EVENT_RESETED,
    EVENT_SUCCESS,
    EventHandler,
    EventManager,
)
from bufferqueue.exceptions import BufferQueueError, CancelledByCaller, TransportError
from bufferqueue.scheduling.priority_queue import PriorityQueue
from bufferqueue.transport import (
    CancellationToken,
    HttpTransport,
    TransferResult,
    Transport,
    TransportSettings,
)

logger = logging.getLogger(__name__)

Decoder = Callable[[bytes], Any]


class SchedulerState(Enum):
    """Scheduler operational states."""

    RUNNING = auto()
    PAUSED = auto()
    STOPPED = auto()


@dataclass
class SchedulerConfig:
    """
    Configuration for the download scheduler.

    Attributes:
        priority_levels: Number of priority levels (0 is the highest).
        concurrent_downloads: Maximum number of transfers in flight.
        transport_settings: Settings for the default HTTP transport.
        tick_interval: Seconds between two periodic dispatch attempts.

    Example:
        >>> config = SchedulerConfig(
        ...     priority_levels=5,
        ...     concurrent_downloads=8,
        ...     transport_settings=TransportSettings(timeout=30.0),
        ... )
    """

    priority_levels: int = 3
    concurrent_downloads: int = 4
    transport_settings: TransportSettings = field(default_factory=TransportSettings)
    tick_interval: float = 0.2

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "priority_levels": self.priority_levels,
            "concurrent_downloads": self.concurrent_downloads,
            "transport_settings": self.transport_settings.to_dict(),
            "tick_interval": self.tick_interval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchedulerConfig:
        """
        Create config from dictionary.

        Both snake_case keys and the camelCase option names
        (``priorityLevels``, ``concurrentDownloads``, ``transportSettings``,
        ``tickInterval``) are accepted.
        """
        settings = data.get("transport_settings", data.get("transportSettings"))
        if isinstance(settings, dict):
            settings = TransportSettings.from_dict(settings)

        return cls(
            priority_levels=data.get("priority_levels", data.get("priorityLevels", 3)),
            concurrent_downloads=data.get(
                "concurrent_downloads", data.get("concurrentDownloads", 4)
            ),
            transport_settings=settings or TransportSettings(),
            tick_interval=data.get("tick_interval", data.get("tickInterval", 0.2)),
        )


@dataclass
class SchedulerStats:
    """Counters for the scheduler."""

    added: int = 0
    removed: int = 0
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    aborted: int = 0
    bytes_received: int = 0
    total_transfer_ms: float = 0.0


@dataclass
class InFlightTransfer:
    """
    A key whose transfer is running.

    Attributes:
        key: The key being downloaded.
        token: Cancellation token of this transfer only.
        task: Task running the transport's fetch.
        started_at: Monotonic time at dispatch.
    """

    key: str
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task | None = field(default=None, repr=False)
    started_at: float = field(default_factory=time.monotonic)


class BufferQueue:
    """
    Priority download queue.

    Keys are popped from a weighted-random PriorityQueue whenever a transfer
    slot is free: after each add(), after each transfer ends, and on a
    periodic tick that recovers from any missed trigger. Lifecycle events
    are reported through an EventManager:

    - ``added(key, level)``, ``removed(key)``, ``reseted()``
    - ``downloading(key)``
    - ``success(key, payload, elapsed_ms)``, ``failed(key, error)``,
      ``aborted(key)``

    Example:
        >>> async def main():
        ...     async with BufferQueue(SchedulerConfig(concurrent_downloads=2)) as queue:
        ...         queue.on("success", lambda key, payload, ms: print(key, len(payload)))
        ...         queue.add("https://example.com/a.bin", 0)
        ...         queue.add("https://example.com/b.bin", 2)
        ...         await asyncio.sleep(1.0)
        >>>
        >>> asyncio.run(main())
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        transport: Transport | None = None,
        events: EventManager | None = None,
        decoder: Decoder | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            config: Scheduler configuration.
            transport: Download backend. Defaults to an HttpTransport built
                from ``config.transport_settings`` and closed by close().
            events: Event manager to report to. Defaults to a new one.
            decoder: Optional function turning the raw payload into the
                value passed to ``success`` handlers. May return an
                awaitable.
            rng: Random source for the priority queue.
        """
        self.config = config or SchedulerConfig()
        self._queue = PriorityQueue(self.config.priority_levels, rng=rng)
        self._events = events or EventManager()
        self._decoder = decoder

        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpTransport(
            self.config.transport_settings
        )

        self._in_flight: dict[str, InFlightTransfer] = {}
        self._background: set[asyncio.Task] = set()
        self._ticker: asyncio.Task | None = None
        self._state = SchedulerState.RUNNING
        self._stats = SchedulerStats()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @property
    def events(self) -> EventManager:
        """The event manager lifecycle events are emitted on."""
        return self._events

    def on(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for a lifecycle event."""
        self._events.on(event_name, handler)

    def off(self, event_name: str, handler: EventHandler) -> bool:
        """Unregister a handler."""
        return self._events.off(event_name, handler)

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def add(self, key: str, level: int, score: float = math.inf) -> bool:
        """
        Queue a key for download.

        Keys already being downloaded are ignored. See PriorityQueue.add()
        for what happens to keys that are already queued.

        Emits ``added`` if the key was queued or moved.

        Args:
            key: The key to download.
            level: Priority level, 0 being the highest.
            score: Optional tie-break score within the level.

        Returns:
            True if the key was queued or moved, False otherwise.
        """
        if key in self._in_flight:
            logger.debug(f"Ignoring add of '{key}': already downloading")
            return False

        if not self._queue.add(key, level, score):
            return False

        self._stats.added += 1
        logger.debug(f"Queued '{key}' at level {level}")
        self._events.emit(EVENT_ADDED, key, level)

        self._ensure_ticker()
        self.try_next()
        return True

    def remove(self, key: str) -> bool:
        """
        Remove a queued key so that it is not downloaded.

        Transfers already in flight are not affected; use abort() for those.

        Emits ``removed`` if the key was queued.

        Returns:
            True if removed, False if the key was not queued.
        """
        if self._queue.remove(key) is None:
            return False

        self._stats.removed += 1
        logger.debug(f"Removed '{key}' from queue")
        self._events.emit(EVENT_REMOVED, key)
        return True

    def reset(self) -> None:
        """
        Empty the priority queue.

        Transfers already in flight keep running and still report their
        outcome.

        Emits ``reseted``.
        """
        self._queue.reset()
        logger.debug("Queue reset")
        self._events.emit(EVENT_RESETED)

    def has(self, key: str, level: int = -1) -> bool:
        """Check if a key is queued, optionally at a specific level."""
        return self._queue.has(key, level)

    def get_priority(self, key: str) -> int:
        """Get the level of a queued key, or -1 if it is not queued."""
        return self._queue.get_priority(key)

    def size(self, level: int = -1) -> int:
        """Get the number of queued keys, overall or for one level."""
        return self._queue.size(level)

    def size_per_priority(self) -> list[int]:
        """Get the number of queued keys for each level."""
        return self._queue.size_per_priority()

    def is_empty(self) -> bool:
        """Check if no key is queued."""
        return self._queue.is_empty()

    def sort_by_score(self, level: int = -1) -> None:
        """Re-order one level, or every level, by ascending score."""
        self._queue.sort_by_score(level)

    def get_status(self) -> str:
        """Describe the queue content and the number of transfers in flight."""
        return (
            f"{self._queue.get_status()} | in flight: "
            f"{len(self._in_flight)}/{self.config.concurrent_downloads}"
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def in_flight(self) -> list[str]:
        """Get the keys currently being downloaded."""
        return sorted(self._in_flight)

    def in_flight_count(self) -> int:
        """Get the number of transfers in flight."""
        return len(self._in_flight)

    def is_downloading(self, key: str) -> bool:
        """Check if a key is being downloaded."""
        return key in self._in_flight

    def abort(self, key: str) -> bool:
        """
        Abort the transfer of a key.

        The slot is freed immediately; ``aborted`` is emitted once the
        transfer task has wound down.

        Returns:
            True if the key was in flight, False otherwise.
        """
        transfer = self._in_flight.pop(key, None)
        if transfer is None:
            return False

        logger.debug(f"Aborting download of '{key}'")
        transfer.token.cancel()
        return True

    def abort_all(self) -> int:
        """
        Abort every transfer in flight.

        Returns:
            Number of transfers aborted.
        """
        return sum(self.abort(key) for key in list(self._in_flight))

    def try_next(self) -> bool:
        """
        Dispatch one queued key if a transfer slot is free.

        Does nothing when the scheduler is paused or closed, or when called
        outside of a running event loop.

        Returns:
            True if a transfer was started.
        """
        if self._state is not SchedulerState.RUNNING:
            return False
        if len(self._in_flight) >= self.config.concurrent_downloads:
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False

        key = self._queue.pop()
        if key is None:
            return False

        self._start_transfer(loop, key)
        return True

    def _fill_slots(self) -> None:
        """Dispatch until every slot is busy or the queue is empty."""
        while self.try_next():
            pass

    def _start_transfer(self, loop: asyncio.AbstractEventLoop, key: str) -> None:
        transfer = InFlightTransfer(key=key)
        self._in_flight[key] = transfer
        self._stats.dispatched += 1

        transfer.task = loop.create_task(
            self._transport.fetch(key, transfer.token),
            name=f"bufferqueue-fetch:{key}",
        )
        transfer.task.add_done_callback(
            lambda task: self._on_transfer_done(transfer, task)
        )
        transfer.token.add_callback(transfer.task.cancel)

        logger.debug(f"Downloading '{key}' ({len(self._in_flight)} in flight)")
        self._events.emit(EVENT_DOWNLOADING, key)

    def _release(self, transfer: InFlightTransfer) -> None:
        """Free the slot of a transfer, unless abort() already did."""
        if self._in_flight.get(transfer.key) is transfer:
            del self._in_flight[transfer.key]

    def _on_transfer_done(self, transfer: InFlightTransfer, task: asyncio.Task) -> None:
        key = transfer.key

        if task.cancelled():
            error: BaseException | None = None
        else:
            error = task.exception()

        if transfer.token.cancelled or isinstance(error, CancelledByCaller):
            self._stats.aborted += 1
            logger.debug(f"Download of '{key}' aborted")
            self._events.emit(EVENT_ABORTED, key)
        elif task.cancelled() or error is not None:
            if error is None:
                error = TransportError(key, "transfer task was cancelled")
            elif not isinstance(error, BufferQueueError):
                error = TransportError(key, str(error) or type(error).__name__, cause=error)
            self._stats.failed += 1
            logger.warning(f"Download of '{key}' failed: {error}")
            self._events.emit(EVENT_FAILED, key, error)
        else:
            # The slot is freed before the payload is decoded
            self._release(transfer)
            self.try_next()
            self._complete(task.result())
            return

        self._release(transfer)
        self.try_next()

    def _complete(self, result: TransferResult) -> None:
        """Decode the payload of a finished transfer and emit ``success``."""
        self._stats.bytes_received += len(result.payload)
        self._stats.total_transfer_ms += result.elapsed_ms

        if self._decoder is None:
            self._emit_success(result, result.payload)
            return

        try:
            decoded = self._decoder(result.payload)
        except Exception as e:
            self._emit_decode_failure(result.key, e)
            return

        if not inspect.isawaitable(decoded):
            self._emit_success(result, decoded)
            return

        task = asyncio.ensure_future(self._await_decoded(result, decoded))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _await_decoded(self, result: TransferResult, decoded: Any) -> None:
        try:
            payload = await decoded
        except Exception as e:
            self._emit_decode_failure(result.key, e)
            return
        self._emit_success(result, payload)

    def _emit_success(self, result: TransferResult, payload: Any) -> None:
        self._stats.succeeded += 1
        logger.debug(f"Downloaded '{result.key}' in {result.elapsed_ms:.1f}ms")
        self._events.emit(EVENT_SUCCESS, result.key, payload, result.elapsed_ms)

    def _emit_decode_failure(self, key: str, cause: Exception) -> None:
        error = BufferQueueError(
            f"Could not decode payload of '{key}': {cause}",
            {"key": key, "cause_type": type(cause).__name__},
        )
        self._stats.failed += 1
        logger.warning(str(error))
        self._events.emit(EVENT_FAILED, key, error)

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the periodic dispatch tick and fill the free slots.

        Must be called from a running event loop. add() starts the tick
        implicitly the first time it runs inside one.
        """
        if self._state is SchedulerState.STOPPED:
            raise RuntimeError("Scheduler is STOPPED")

        self._ensure_ticker()
        self._fill_slots()

    def _ensure_ticker(self) -> None:
        if self._ticker is not None or self._state is SchedulerState.STOPPED:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        self._ticker = loop.create_task(self._tick(), name="bufferqueue-tick")
        logger.info("Scheduler started")

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.config.tick_interval)
            self.try_next()

    def pause(self) -> None:
        """Stop dispatching new transfers. Transfers in flight continue."""
        if self._state is SchedulerState.RUNNING:
            self._state = SchedulerState.PAUSED
            logger.info("Scheduler paused")

    def resume(self) -> None:
        """Resume dispatching and fill the free slots."""
        if self._state is SchedulerState.PAUSED:
            self._state = SchedulerState.RUNNING
            logger.info("Scheduler resumed")
            self._fill_slots()

    def is_running(self) -> bool:
        """Check if the scheduler is dispatching."""
        return self._state is SchedulerState.RUNNING

    def is_paused(self) -> bool:
        """Check if the scheduler is paused."""
        return self._state is SchedulerState.PAUSED

    async def close(self) -> None:
        """
        Stop the scheduler.

        Stops the periodic tick, aborts every transfer in flight and waits
        for them to report, then closes the transport if the scheduler
        created it. Queued keys are left in place.
        """
        if self._state is SchedulerState.STOPPED:
            return
        self._state = SchedulerState.STOPPED
        logger.info("Scheduler shutting down...")

        if self._ticker is not None:
            self._ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ticker
            self._ticker = None

        tasks = [t.task for t in self._in_flight.values() if t.task is not None]
        self.abort_all()
        pending = tasks + list(self._background)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            # Let the done callbacks report before returning
            await asyncio.sleep(0)

        if self._owns_transport:
            await self._transport.aclose()
        logger.info("Scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        """
        Get scheduler statistics.

        Returns:
            Dictionary with state, queue and transfer statistics.
        """
        return {
            "state": self._state.name,
            "queue": {
                "size": self._queue.size(),
                "size_per_priority": self._queue.size_per_priority(),
            },
            "in_flight": len(self._in_flight),
            "scheduler": asdict(self._stats),
            "config": self.config.to_dict(),
        }

    async def __aenter__(self) -> BufferQueue:
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
