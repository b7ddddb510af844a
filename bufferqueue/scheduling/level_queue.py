"""
FIFO queue of keys for a single priority level.
"""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field


@dataclass
class QueuedItem:
    """
    A key waiting in a LevelQueue.

    Attributes:
        key: Unique identifier of the requested resource.
        score: Tie-break value used by LevelQueue.sort_by_score().
            Lower scores come first; defaults to +inf (sorted last).
        sequence: Arrival counter within the owning queue.
    """

    key: str
    score: float = math.inf
    sequence: int = field(default=0, compare=False)


class LevelQueue:
    """
    First-in-first-out queue of unique keys with constant-time membership.

    Adding a key that is already queued does nothing. The optional score of
    each item is only taken into account when sort_by_score() is called
    explicitly; otherwise arrival order is kept.

    Example:
        >>> queue = LevelQueue()
        >>> queue.add("a")
        True
        >>> queue.add("b", score=1.0)
        True
        >>> queue.add("a")
        False
        >>> queue.pop()
        'a'
    """

    def __init__(self) -> None:
        self._items: deque[QueuedItem] = deque()
        self._keys: set[str] = set()
        self._counter = 0

    def add(self, key: str, score: float = math.inf) -> bool:
        """
        Append a key at the tail of the queue.

        Args:
            key: The key to add.
            score: Optional tie-break score.

        Returns:
            True if added, False if the key was already queued.
        """
        if key in self._keys:
            return False

        self._items.append(QueuedItem(key=key, score=score, sequence=self._counter))
        self._keys.add(key)
        self._counter += 1
        return True

    def has(self, key: str) -> bool:
        """Check if the key is queued."""
        return key in self._keys

    def pop(self) -> str | None:
        """
        Remove and return the oldest key.

        Returns:
            The key at the head of the queue, or None if empty.
        """
        if not self._items:
            return None
        item = self._items.popleft()
        self._keys.discard(item.key)
        return item.key

    def remove(self, key: str) -> str | None:
        """
        Remove an arbitrary key from the queue.

        Returns:
            The removed key, or None if it was not queued.
        """
        if key not in self._keys:
            return None

        for index, item in enumerate(self._items):
            if item.key == key:
                del self._items[index]
                break
        self._keys.discard(key)
        return key

    def sort_by_score(self) -> None:
        """Stable re-order of the queue by ascending score."""
        self._items = deque(sorted(self._items, key=lambda item: (item.score, item.sequence)))

    def first(self) -> str | None:
        """Peek at the key that pop() would return."""
        return self._items[0].key if self._items else None

    def last(self) -> str | None:
        """Peek at the most recently added key."""
        return self._items[-1].key if self._items else None

    def keys(self) -> list[str]:
        """Get the queued keys in pop order."""
        return [item.key for item in self._items]

    def clear(self) -> None:
        """Remove every key."""
        self._items.clear()
        self._keys.clear()

    def size(self) -> int:
        """Get the number of queued keys."""
        return len(self._items)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())
