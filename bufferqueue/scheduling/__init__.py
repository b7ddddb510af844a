"""
Download scheduling for bufferqueue.

This module provides the multi-level priority queue and the scheduler that
dispatches queued keys to a transport with bounded concurrency. Low priority
keys are protected from starvation by drawing the level to serve at random,
each level weighing half as much as the one above it.

Example:
    >>> from bufferqueue.scheduling import BufferQueue, PriorityQueue, SchedulerConfig
    >>>
    >>> # Weighted-random priority queue
    >>> queue = PriorityQueue(levels=3)
    >>> queue.add("https://example.com/low.bin", 2)
    >>> queue.add("https://example.com/high.bin", 0)
    >>> queue.pop()  # usually the level 0 key, sometimes the level 2 one
    >>>
    >>> # Scheduler downloading up to 4 keys at once
    >>> async with BufferQueue(SchedulerConfig(concurrent_downloads=4)) as scheduler:
    ...     scheduler.on("success", handle_payload)
    ...     scheduler.add("https://example.com/high.bin", 0)
"""

from bufferqueue.scheduling.level_queue import (
    LevelQueue,
    QueuedItem,
)
from bufferqueue.scheduling.priority_queue import (
    PriorityQueue,
    build_probability_table,
)
from bufferqueue.scheduling.scheduler import (
    BufferQueue,
    InFlightTransfer,
    SchedulerConfig,
    SchedulerState,
    SchedulerStats,
)

__all__ = [
    # Priority queue
    "QueuedItem",
    "LevelQueue",
    "PriorityQueue",
    "build_probability_table",
    # Scheduler
    "BufferQueue",
    "InFlightTransfer",
    "SchedulerConfig",
    "SchedulerState",
    "SchedulerStats",
]
