"""A bounded key/value cache that evicts the least recently used entry."""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """Holds at most ``max_size`` entries; reads and writes refresh an entry."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        self._items: OrderedDict[K, V] = OrderedDict()

    def put(self, key: K, value: V) -> None:
        """Store a value, evicting the least recently used entry when full."""
        self._items[key] = value
        self._items.move_to_end(key, last=False)
        while len(self._items) > self.max_size:
            self._items.popitem(last=True)

    def get(self, key: K) -> V:
        """Return the value for ``key`` and mark it most recently used.

        Raises ``KeyError`` when the key is not cached.
        """
        try:
            value = self._items[key]
        except KeyError:
            raise KeyError(key) from None
        self._items.move_to_end(key, last=False)
        return value

    def exists(self, key: K) -> bool:
        """Tell whether ``key`` is cached, without refreshing it."""
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items