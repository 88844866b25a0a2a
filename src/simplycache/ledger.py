"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Recency ledger over implicitly cached paths.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator


class LRULedger:
    """
    Ordered set of paths, least recently used first.

    Backed by `OrderedDict` (hash index over a doubly linked list), so insert,
    move-to-most-recent, removal and pop-oldest are all O(1). Removing a path
    keeps the relative order of the remaining ones.
    """

    def __init__(self) -> None:
        self._order: OrderedDict[str, None] = OrderedDict()

    def add(self, path: str) -> None:
        """Record `path` as the most recently used entry."""
        self._order[path] = None
        self._order.move_to_end(path)

    def touch(self, path: str) -> bool:
        """Move `path` to most recent. Returns False if it is not tracked."""
        if path not in self._order:
            return False
        self._order.move_to_end(path)
        return True

    def discard(self, path: str) -> bool:
        """Stop tracking `path`. Returns False if it was not tracked."""
        return self._order.pop(path, _MISSING) is not _MISSING

    def pop_oldest(self) -> str:
        """Remove and return the least recently used path."""
        if not self._order:
            raise KeyError("pop_oldest(): ledger is empty")
        path, _ = self._order.popitem(last=False)
        return path

    def overflow(self, limit: int) -> Iterator[str]:
        """Pop oldest paths while more than `limit` are tracked, yielding each."""
        while len(self._order) > limit:
            yield self.pop_oldest()

    def clear(self) -> None:
        self._order.clear()

    def snapshot(self) -> list[str]:
        """Paths oldest first."""
        return list(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, path: object) -> bool:
        return path in self._order

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._order))

    def __repr__(self) -> str:
        return f"LRULedger({self.snapshot()!r})"


_MISSING = object()
