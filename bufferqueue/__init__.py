"""
bufferqueue: priority download queue with bounded concurrency.

bufferqueue schedules the retrieval of many remote resources, each
identified by a unique key, with a limited number of transfers in flight,
multi-level priorities that never fully starve the low levels, and per-key
or bulk cancellation.

Basic Usage:
    >>> import asyncio
    >>> from bufferqueue import BufferQueue, SchedulerConfig, TransportSettings
    >>>
    >>> async def main():
    ...     config = SchedulerConfig(
    ...         priority_levels=3,
    ...         concurrent_downloads=4,
    ...         transport_settings=TransportSettings(base_url="https://tiles.example.com"),
    ...     )
    ...     async with BufferQueue(config) as queue:
    ...         queue.on("success", lambda key, payload, ms: print(key, len(payload), ms))
    ...         queue.on("failed", lambda key, error: print(key, error))
    ...         queue.add("/4/2/7.bin", 0)   # highest priority
    ...         queue.add("/4/2/8.bin", 2)   # served less often
    ...         await asyncio.sleep(2.0)
    >>>
    >>> asyncio.run(main())
"""

__version__ = "0.1.0"

from bufferqueue.events import (
    ALL_EVENTS,
    EVENT_ABORTED,
    EVENT_ADDED,
    EVENT_DOWNLOADING,
    EVENT_FAILED,
    EVENT_REMOVED,
    EVENT_RESETED,
    EVENT_SUCCESS,
    EventManager,
)
from bufferqueue.exceptions import (
    BufferQueueError,
    CancelledByCaller,
    ProtocolFailure,
    TransportError,
)
from bufferqueue.scheduling import (
    BufferQueue,
    LevelQueue,
    PriorityQueue,
    SchedulerConfig,
    SchedulerState,
)
from bufferqueue.transport import (
    CancellationToken,
    HttpTransport,
    TransferResult,
    Transport,
    TransportSettings,
)

__all__ = [
    "__version__",
    # Scheduling
    "BufferQueue",
    "LevelQueue",
    "PriorityQueue",
    "SchedulerConfig",
    "SchedulerState",
    # Events
    "EventManager",
    "ALL_EVENTS",
    "EVENT_ADDED",
    "EVENT_REMOVED",
    "EVENT_RESETED",
    "EVENT_DOWNLOADING",
    "EVENT_SUCCESS",
    "EVENT_FAILED",
    "EVENT_ABORTED",
    # Transport
    "Transport",
    "HttpTransport",
    "TransportSettings",
    "TransferResult",
    "CancellationToken",
    # Exceptions
    "BufferQueueError",
    "ProtocolFailure",
    "TransportError",
    "CancelledByCaller",
]
