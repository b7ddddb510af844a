"""
Multi-level priority queue with weighted random level selection.

Level 0 is the highest priority. Instead of always serving the highest
non-empty level (which would starve the lower ones while new high priority
keys keep arriving), pop() draws a level at random, where each level weighs
half as much as the one above it. With three levels, level 0 is picked about
57% of the time, level 1 about 29% and level 2 about 14%.
"""

from __future__ import annotations

import logging
import math
import random

from bufferqueue.scheduling.level_queue import LevelQueue

logger = logging.getLogger(__name__)


def build_probability_table(levels: int) -> tuple[float, ...]:
    """
    Build the cumulative probability cutoffs for a number of levels.

    Level ``i`` weighs ``2 ** -i``; the returned cutoffs are the normalized
    running sums of those weights, so they are strictly increasing and the
    last one is exactly 1.0.

    Args:
        levels: Number of priority levels.

    Returns:
        Tuple of ``levels`` cutoffs.

    Example:
        >>> build_probability_table(3)
        (0.5714285714285714, 0.8571428571428571, 1.0)
    """
    weights = [2.0**-i for i in range(levels)]
    total = sum(weights)

    cutoffs: list[float] = []
    running = 0.0
    for weight in weights:
        running += weight
        cutoffs.append(running / total)

    # Float sums may land a hair under 1.0
    if cutoffs:
        cutoffs[-1] = 1.0
    return tuple(cutoffs)


class PriorityQueue:
    """
    Fixed set of LevelQueues, one per priority level.

    A key lives in at most one level at a time. Not thread-safe: every
    mutating call must come from the same control path (the scheduler's
    event loop).

    Attributes:
        levels: Number of priority levels, fixed at construction.

    Example:
        >>> queue = PriorityQueue(levels=3)
        >>> queue.add("tile-1", 2)
        True
        >>> queue.get_priority("tile-1")
        2
        >>> queue.pop()  # only level 2 is populated
        'tile-1'
    """

    def __init__(self, levels: int = 3, rng: random.Random | None = None) -> None:
        """
        Initialize the priority queue.

        Args:
            levels: Number of priority levels.
            rng: Random source used to pick a level on pop().
                Defaults to a new, unseeded generator.
        """
        self.levels = levels
        self._queues = [LevelQueue() for _ in range(levels)]
        self._probabilities = build_probability_table(levels)
        self._rng = rng or random.Random()

    @property
    def probability_table(self) -> tuple[float, ...]:
        """Cumulative probability cutoffs, one per level."""
        return self._probabilities

    def get_priority(self, key: str) -> int:
        """
        Get the level holding a key.

        Returns:
            The level (0 is the highest priority), or -1 if not queued.
        """
        for level, queue in enumerate(self._queues):
            if queue.has(key):
                return level
        return -1

    def has(self, key: str, level: int = -1) -> bool:
        """
        Check if a key is queued, optionally at a specific level only.

        Args:
            key: The key to look up.
            level: Level to check, or -1 for any level.
        """
        if level >= 0:
            return self._queues[level].has(key)
        return any(queue.has(key) for queue in self._queues)

    def add(self, key: str, level: int, score: float = math.inf) -> bool:
        """
        Queue a key at a given level.

        A key that is already queued is left untouched when its current
        level is the same as, or numerically above, the requested one.
        When the current level is numerically below the requested one
        (``existing < level``), the key is moved to the requested level.

        Args:
            key: The key to add.
            level: Target level in ``[0, levels - 1]``.
            score: Optional tie-break score within the level.

        Returns:
            True if the key was added or moved, False otherwise.
        """
        existing = self.get_priority(key)

        if existing >= 0:
            if existing >= level:
                return False
            self._queues[existing].remove(key)
            logger.debug(f"Moving '{key}' from level {existing} to level {level}")

        return self._queues[level].add(key, score)

    def pop(self) -> str | None:
        """
        Remove and return a key, picking the level at random.

        The draw is restricted to the probability mass at and below the
        first non-empty level, so empty high priority levels never waste a
        draw. If the drawn level is empty, the nearest non-empty level above
        it is used, and failing that the nearest one below it.

        Returns:
            A key, or None if every level is empty.
        """
        first = self._first_non_empty_level()
        if first < 0:
            return None

        padding = self._probabilities[first - 1] if first > 0 else 0.0
        seed = padding + (1.0 - padding) * self._rng.random()

        selected = self.levels - 1
        for level, cutoff in enumerate(self._probabilities):
            if seed < cutoff:
                selected = level
                break

        resolved = self._resolve_level(selected)
        return self._queues[resolved].pop()

    def _first_non_empty_level(self) -> int:
        """Get the highest priority level holding a key, or -1."""
        for level, queue in enumerate(self._queues):
            if not queue.is_empty():
                return level
        return -1

    def _resolve_level(self, selected: int) -> int:
        """Find the nearest non-empty level, looking upward first."""
        for level in range(selected, -1, -1):
            if not self._queues[level].is_empty():
                return level
        for level in range(selected + 1, self.levels):
            if not self._queues[level].is_empty():
                return level
        # pop() checked that at least one level is populated
        raise RuntimeError("No non-empty level to pop from")

    def remove(self, key: str) -> str | None:
        """
        Remove a key from whichever level holds it.

        Returns:
            The removed key, or None if it was not queued.
        """
        level = self.get_priority(key)
        if level < 0:
            return None
        return self._queues[level].remove(key)

    def sort_by_score(self, level: int = -1) -> None:
        """
        Re-order one level, or every level, by ascending tie-break score.

        Args:
            level: Level to sort, or -1 for all levels.
        """
        if level >= 0:
            self._queues[level].sort_by_score()
            return
        for queue in self._queues:
            queue.sort_by_score()

    def keys(self, level: int) -> list[str]:
        """Get the keys of one level in pop order."""
        return self._queues[level].keys()

    def reset(self) -> None:
        """Empty every level."""
        for queue in self._queues:
            queue.clear()

    def size(self, level: int = -1) -> int:
        """
        Get the number of queued keys.

        Args:
            level: Level to count, or -1 for all levels.
        """
        if level >= 0:
            return self._queues[level].size()
        return sum(queue.size() for queue in self._queues)

    def size_per_priority(self) -> list[int]:
        """Get the number of queued keys for each level."""
        return [queue.size() for queue in self._queues]

    def is_empty(self) -> bool:
        """Check if every level is empty."""
        return all(queue.is_empty() for queue in self._queues)

    def get_status(self) -> str:
        """
        Describe the queue content.

        Returns:
            Per-level counts, e.g. ``"level 0: 2 | level 1: 0 | level 2: 1"``.
        """
        return " | ".join(
            f"level {level}: {count}"
            for level, count in enumerate(self.size_per_priority())
        )

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)
