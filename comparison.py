"""
Comparison set: up to five location names, kept in insertion order.

The only state that outlives a single analysis.  Mutations are serialized
with a lock so concurrent request threads cannot push the set past its
capacity.
"""

import threading
from typing import Iterator, List

from errors import InvalidLocationError

DEFAULT_CAPACITY = 5


class ComparisonSet:
    """Ordered, deduplicated, bounded set of location names.

    Names are compared exactly (after trimming surrounding whitespace), so
    "Billings, MT" and "billings, mt" are distinct entries.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._items: List[str] = []
        self._lock = threading.Lock()

    @staticmethod
    def _clean(name: str) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InvalidLocationError("Comparison location name is blank")
        return name.strip()

    def add(self, name: str) -> bool:
        """Add *name*.  False when it is already present or the set is full."""
        name = self._clean(name)
        with self._lock:
            if name in self._items or len(self._items) >= self.capacity:
                return False
            self._items.append(name)
            return True

    def remove(self, name: str) -> bool:
        """Remove *name*.  False when it was not present."""
        name = self._clean(name)
        with self._lock:
            try:
                self._items.remove(name)
            except ValueError:
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def is_full(self) -> bool:
        with self._lock:
            return len(self._items) >= self.capacity

    def items(self) -> List[str]:
        """Snapshot of the current names, oldest first."""
        with self._lock:
            return list(self._items)

    def __contains__(self, name) -> bool:
        if not isinstance(name, str):
            return False
        with self._lock:
            return name.strip() in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
