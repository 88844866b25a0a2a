"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

`SimplyCache`: the public façade over the entry table and LRU ledger.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from typing import Any

from .config import CacheOptions
from .entry import CacheEntry, CacheHandle
from .errors import EvictionError, PurgeError
from .ledger import LRULedger
from .metrics import CacheMetrics, NoOpCacheMetrics
from .sources import FileSourceOpener
from .types import CacheStats, EntryState, SourceOpener

logger = logging.getLogger("simplycache.cache")


def _key(path: str | os.PathLike[str]) -> str:
    key = os.fspath(path)
    if not isinstance(key, str):
        raise TypeError(f"Cache paths must be str or PathLike[str], got {type(key).__name__}")
    return key


class SimplyCache:
    """
    In-memory cache of file content exposed as streams.

    Entries created by `stream` are implicit and subject to LRU eviction once
    more than `max_files` of them exist. Entries created by `cache` are pinned
    and only leave through `purge`. Every path has at most one fill in flight;
    later requests attach new readers to the existing entry.

    `stream` and `cache` return immediately and must be called from within a
    running event loop. Fill errors are delivered through the returned handle.

    Example::

        cache = SimplyCache(max_files=32)
        async with cache.stream("index.html") as handle:
            body = await handle.read()
    """

    def __init__(
        self,
        options: CacheOptions | None = None,
        *,
        opener: SourceOpener | None = None,
        metrics: CacheMetrics | None = None,
        **overrides: Any,
    ) -> None:
        if options is None:
            options = CacheOptions(**overrides)
        elif overrides:
            current = {name: getattr(options, name) for name in CacheOptions.model_fields}
            options = CacheOptions(**{**current, **overrides})

        self._options = options
        self._opener: SourceOpener = opener or FileSourceOpener()
        self._metrics: CacheMetrics = metrics or NoOpCacheMetrics()
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._ledger = LRULedger()
        self._teardowns: set[asyncio.Task[None]] = set()

        if options.high_water_mark is None:
            logger.warning(
                "Read-ahead bound disabled: unread entries will be filled into memory "
                "regardless of reader demand"
            )

    @property
    def options(self) -> CacheOptions:
        return self._options

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def stream(self, path: str | os.PathLike[str]) -> CacheHandle:
        """Return a reader for `path`, caching it implicitly if needed."""
        return self._open(_key(path), pin=False)

    def cache(self, path: str | os.PathLike[str]) -> CacheHandle:
        """Return a reader for `path` and pin its entry against eviction."""
        return self._open(_key(path), pin=True)

    async def preload(self, path: str | os.PathLike[str]) -> int:
        """
        Pin `path` and drive its fill to completion.

        Returns the number of cached bytes. Raises the entry's fill error if
        the source or pipeline failed.
        """
        handle = self.cache(path)
        try:
            size = 0
            async for chunk in handle:
                size += len(chunk)
            return size
        finally:
            handle.close()

    async def purge(self, path: str | os.PathLike[str] | None = None) -> None:
        """
        Remove one entry, or every entry when `path` is None.

        Entries leave the table before any cleanup is attempted, so a fill that
        fails to stop never keeps its path cached. Cleanup failures are raised
        together as `PurgeError` once every removed fill has been awaited.
        """
        with self._lock:
            if path is None:
                removed = list(self._entries.values())
                self._entries.clear()
                self._ledger.clear()
            else:
                key = _key(path)
                entry = self._entries.pop(key, None)
                self._ledger.discard(key)
                removed = [entry] if entry is not None else []
            for entry in removed:
                entry.close("purged")

        if not removed:
            return
        logger.info("Purged %d entries", len(removed))
        self._metrics.incr("cache_purges", len(removed))

        results = await asyncio.gather(
            *(entry.wait_closed(timeout=self._options.cancel_timeout_s) for entry in removed),
            return_exceptions=True,
        )
        failures = {
            entry.path: result
            for entry, result in zip(removed, results)
            if isinstance(result, Exception)
        }
        if failures:
            self._metrics.incr("teardown_failures", len(failures), tags={"op": "purge"})
            raise PurgeError(failures)

    async def aclose(self) -> None:
        """Purge everything and wait for pending eviction cleanup."""
        try:
            await self.purge()
        finally:
            if self._teardowns:
                await asyncio.gather(*self._teardowns, return_exceptions=True)

    async def __aenter__(self) -> SimplyCache:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def contains(self, path: str | os.PathLike[str]) -> bool:
        with self._lock:
            return _key(path) in self._entries

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        return self.contains(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def paths(self) -> list[str]:
        """Cached paths in insertion order."""
        with self._lock:
            return list(self._entries)

    def lru_order(self) -> list[str]:
        """Implicit paths, least recently used first."""
        with self._lock:
            return self._ledger.snapshot()

    def state_of(self, path: str | os.PathLike[str]) -> EntryState | None:
        with self._lock:
            entry = self._entries.get(_key(path))
        return entry.state if entry is not None else None

    def is_pinned(self, path: str | os.PathLike[str]) -> bool:
        with self._lock:
            entry = self._entries.get(_key(path))
        return entry is not None and entry.pinned

    def stats(self) -> CacheStats:
        with self._lock:
            entries = list(self._entries.values())
            ledger = self._ledger.snapshot()
        items = [entry.info() for entry in entries]
        pinned = sum(1 for item in items if item.pinned)
        return CacheStats(
            max_files=self._options.max_files,
            entries=len(items),
            implicit=len(items) - pinned,
            pinned=pinned,
            buffered_bytes=sum(item.size for item in items),
            ledger=ledger,
            items=items,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open(self, path: str, *, pin: bool) -> CacheHandle:
        asyncio.get_running_loop()
        with self._lock:
            entry = self._entries.get(path)
            if entry is not None:
                self._metrics.incr("cache_hits")
                if pin:
                    if not entry.pinned:
                        entry.pinned = True
                        self._ledger.discard(path)
                        logger.debug("Pinned existing entry %s", path)
                elif not entry.pinned:
                    self._ledger.touch(path)
                return entry.attach()

            self._metrics.incr("cache_misses")
            entry = CacheEntry(
                path,
                opener=self._opener,
                chunk_size=self._options.chunk_size,
                pipeline=self._options.transform_pipeline,
                high_water_mark=self._options.high_water_mark,
                pinned=pin,
                on_settled=self._entry_settled,
            )
            self._entries[path] = entry
            entry.start()
            logger.debug("Caching %s (%s)", path, "pinned" if pin else "implicit")
            if not pin:
                self._ledger.add(path)
                self._evict()
            return entry.attach()

    def _evict(self) -> None:
        for victim in self._ledger.overflow(self._options.max_files):
            entry = self._entries.pop(victim, None)
            if entry is None:
                continue
            logger.info(
                "Evicting %s (max_files=%d)", victim, self._options.max_files
            )
            self._metrics.incr("cache_evictions")
            entry.close("evicted")
            task = asyncio.get_running_loop().create_task(
                self._teardown_evicted(entry), name=f"simplycache-evict:{victim}"
            )
            self._teardowns.add(task)
            task.add_done_callback(self._teardowns.discard)

    async def _teardown_evicted(self, entry: CacheEntry) -> None:
        try:
            await entry.wait_closed(timeout=self._options.cancel_timeout_s)
        except Exception as exc:
            error = EvictionError(entry.path, exc)
            self._metrics.incr("teardown_failures", tags={"op": "evict"})
            logger.warning("%s", error, exc_info=exc)

    def _entry_settled(self, entry: CacheEntry) -> None:
        if entry.state == "ready":
            self._metrics.incr("fill_completed")
        else:
            self._metrics.incr("fill_failed")
