"""
glassbox/cdp/bounded_store.py

Memory-bounded, insertion-ordered collections for captured events.

Contains:
- limit_item_count(): Keep the newest N items of a sequence
- estimate_size(): Cheap byte-size proxy for one item
- limit_memory_usage(): Keep the newest items that fit a byte budget
- BoundedStore: Append-only store enforcing one of the two caps on every insertion

NOTE: estimate_size() is serialized length x 2. It undercounts binary payloads (e.g. base64
image data) and is meant as an approximation, not an accounting.
"""

import json
from collections import deque
from typing import Any, Callable, Generic, Iterable, Iterator, Sequence, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_MAX_ITEMS = 1000
DEFAULT_MAX_SIZE_MB = 50
BYTES_PER_CHAR = 2


def limit_item_count(items: Sequence[T], max_items: int = DEFAULT_MAX_ITEMS) -> Sequence[T]:
    """
    Keep only the newest max_items elements.
    Args:
        items: Sequence ordered oldest to newest.
        max_items: Maximum number of elements to keep.
    Returns:
        The input itself if it is already within the cap, otherwise its newest max_items elements.
    """
    if len(items) <= max_items:
        return items
    if max_items <= 0:
        return items[:0]
    return items[-max_items:]


def estimate_size(obj: Any) -> int:
    """
    Estimate the in-memory size of an object in bytes.
    Args:
        obj: A pydantic model or any JSON-serializable value.
    Returns:
        Serialized length times BYTES_PER_CHAR.
    """
    if isinstance(obj, BaseModel):
        serialized = obj.model_dump_json()
    else:
        try:
            serialized = json.dumps(obj, default=str)
        except (TypeError, ValueError):
            serialized = str(obj)
    return len(serialized) * BYTES_PER_CHAR


def limit_memory_usage(items: Sequence[T], max_bytes: int) -> list[T]:
    """
    Keep the newest elements whose cumulative estimated size fits max_bytes.
    The newest element is always kept, even if it alone exceeds the budget.
    Args:
        items: Sequence ordered oldest to newest.
        max_bytes: Byte budget.
    Returns:
        A new list ordered oldest to newest.
    """
    total_size = 0
    kept: list[T] = []

    # walk newest to oldest
    for item in reversed(items):
        item_size = estimate_size(item)
        if total_size + item_size > max_bytes and kept:
            break
        total_size += item_size
        kept.append(item)

    kept.reverse()
    return kept


class BoundedStore(Generic[T]):
    """
    Append-only, insertion-ordered collection with oldest-first eviction.
    Capped either by item count (max_items) or by estimated byte size (max_bytes).
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, max_items: int | None = None, max_bytes: int | None = None) -> None:
        """
        Initialize BoundedStore.
        Args:
            max_items: Maximum number of items kept (count-capped policy).
            max_bytes: Maximum cumulative estimated size kept (size-capped policy).
        Exactly one of max_items / max_bytes must be given.
        """
        if (max_items is None) == (max_bytes is None):
            raise ValueError("BoundedStore needs exactly one of max_items or max_bytes")
        if (max_items is not None and max_items < 1) or (max_bytes is not None and max_bytes < 0):
            raise ValueError("BoundedStore caps must be positive")

        self.max_items = max_items
        self.max_bytes = max_bytes

        self._items: deque[T] = deque()
        self._sizes: deque[int] = deque()  # parallel to _items, only used by the size policy
        self._total_bytes: int = 0

        # counters, reset by clear()
        self.total_appended: int = 0
        self.evicted_count: int = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        cap = f"max_items={self.max_items}" if self.max_items is not None else f"max_bytes={self.max_bytes}"
        return f"BoundedStore({cap}, len={len(self)})"


    # Private methods ______________________________________________________________________________________________________

    def _evict_oldest(self) -> None:
        self._items.popleft()
        if self.max_bytes is not None:
            self._total_bytes -= self._sizes.popleft()
        self.evicted_count += 1

    def _enforce_cap(self) -> None:
        if self.max_items is not None:
            while len(self._items) > self.max_items:
                self._evict_oldest()
        else:
            while self._total_bytes > self.max_bytes and len(self._items) > 1:
                self._evict_oldest()


    # Public methods _______________________________________________________________________________________________________

    @property
    def estimated_bytes(self) -> int:
        """Cumulative estimated size of the stored items."""
        if self.max_bytes is not None:
            return self._total_bytes
        return sum(estimate_size(item) for item in self._items)

    def append(self, item: T) -> None:
        """Append one item, then evict the oldest items until the cap holds."""
        self._items.append(item)
        if self.max_bytes is not None:
            item_size = estimate_size(item)
            self._sizes.append(item_size)
            self._total_bytes += item_size
        self.total_appended += 1
        self._enforce_cap()

    def extend(self, items: Iterable[T]) -> None:
        """Append many items in order."""
        for item in items:
            self.append(item)

    def clear(self) -> int:
        """
        Empty the store and reset its counters.
        Returns:
            Number of items that were removed.
        """
        removed = len(self._items)
        self._items.clear()
        self._sizes.clear()
        self._total_bytes = 0
        self.total_appended = 0
        self.evicted_count = 0
        return removed

    def snapshot(self) -> list[T]:
        """Return a copy of the items, oldest first."""
        return list(self._items)

    def latest(self, n: int) -> list[T]:
        """Return the newest n items, oldest first."""
        if n <= 0:
            return []
        return list(self._items)[-n:]

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        """Return the newest item matching predicate, or None."""
        for item in reversed(self._items):
            if predicate(item):
                return item
        return None

    def get_summary(self) -> dict[str, Any]:
        """
        Get a summary of the store's occupancy.
        Returns:
            Dictionary with item count, cap and eviction counters.
        """
        return {
            "total_items": len(self._items),
            "max_items": self.max_items,
            "max_bytes": self.max_bytes,
            "estimated_bytes": self.estimated_bytes,
            "total_appended": self.total_appended,
            "evicted_count": self.evicted_count,
        }
