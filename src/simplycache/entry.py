"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Cache entries and their reader handles.

An entry is an append-only chunk log filled by one background task. Readers
are independent cursors over that log: each replays what is already buffered
and then follows the live fill until the entry is ready, failed or destroyed.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable

from .errors import (
    CacheEntryClosedError,
    CacheError,
    CacheEvictedError,
    CachePurgedError,
    OpenError,
    ProtocolMisuseError,
)
from .sources import aclose_iterator, guard_source
from .transforms import TransformPipeline
from .types import CloseReason, EntryInfo, EntryState, SourceOpener

logger = logging.getLogger("simplycache.entry")

EntryListener = Callable[["CacheEntry"], None]


class CacheEntry:
    """
    One path's cached content plus its fill state machine.

    States move `filling -> ready` or `filling -> failed` and never leave a
    terminal state. Destruction (`close`) is orthogonal: it cancels the fill,
    discards the buffer and makes every reader's next read raise.
    """

    def __init__(
        self,
        path: str,
        *,
        opener: SourceOpener,
        chunk_size: int,
        pipeline: TransformPipeline | None = None,
        high_water_mark: int | None = None,
        pinned: bool = False,
        on_settled: EntryListener | None = None,
    ) -> None:
        self.path = path
        self.pinned = pinned
        self._opener = opener
        self._chunk_size = chunk_size
        self._pipeline = pipeline
        self._high_water_mark = high_water_mark
        self._on_settled = on_settled

        self._state: EntryState = "filling"
        self._chunks: list[bytes] = []
        self._size = 0
        self._error: BaseException | None = None
        self._closed_reason: CloseReason | None = None
        self._readers: weakref.WeakSet[CacheHandle] = weakref.WeakSet()
        self._task: asyncio.Task[None] | None = None

        self._changed = asyncio.Event()
        self._progress = asyncio.Event()
        self._settled = asyncio.Event()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> EntryState:
        return self._state

    @property
    def size(self) -> int:
        return self._size

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def closed_reason(self) -> CloseReason | None:
        return self._closed_reason

    @property
    def is_closed(self) -> bool:
        return self._closed_reason is not None

    @property
    def reader_count(self) -> int:
        return len(self._readers)

    def info(self) -> EntryInfo:
        return EntryInfo(
            path=self.path,
            state=self._state,
            pinned=self.pinned,
            size=self._size,
            chunks=len(self._chunks),
            readers=len(self._readers),
            error=str(self._error) if self._error is not None else None,
        )

    def __repr__(self) -> str:
        closed = f", closed={self._closed_reason}" if self._closed_reason else ""
        return (
            f"CacheEntry(path={self.path!r}, state={self._state}, "
            f"size={self._size}, pinned={self.pinned}{closed})"
        )

    # ------------------------------------------------------------------
    # Fill
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the fill task on the running event loop."""
        if self._task is not None:
            raise ProtocolMisuseError(f"Fill for '{self.path}' already started")
        if self._closed_reason is not None:
            raise ProtocolMisuseError(f"Cannot start fill for destroyed entry '{self.path}'")
        self._task = asyncio.get_running_loop().create_task(
            self._fill(), name=f"simplycache-fill:{self.path}"
        )

    async def _fill(self) -> None:
        chunks = None
        try:
            try:
                raw = self._opener.open(self.path, chunk_size=self._chunk_size)
            except CacheError:
                raise
            except Exception as exc:
                raise OpenError(self.path, f"Cannot open source '{self.path}': {exc}") from exc
            chunks = guard_source(self.path, raw)
            if self._pipeline is not None:
                chunks = self._pipeline.apply(chunks)
            async for chunk in chunks:
                if chunk:
                    self.append(chunk)
                await self._wait_for_demand()
        except Exception as exc:
            if self._closed_reason is not None:
                # Raised while unwinding a cancelled fill: a cleanup failure.
                raise
            self.fail(exc)
        else:
            if self._closed_reason is None:
                self.finish()
        finally:
            if chunks is not None:
                await aclose_iterator(chunks)

    def _lag(self) -> int:
        offsets = [reader.offset for reader in self._readers]
        return self._size - (min(offsets) if offsets else 0)

    async def _wait_for_demand(self) -> None:
        if self._high_water_mark is None:
            return
        while self._closed_reason is None and self._lag() >= self._high_water_mark:
            await self._progress.wait()

    # ------------------------------------------------------------------
    # Writable side, driven by the fill task
    # ------------------------------------------------------------------

    def _ensure_writable(self) -> None:
        if self._closed_reason is not None:
            raise ProtocolMisuseError(f"Entry '{self.path}' was {self._closed_reason}")
        if self._state != "filling":
            raise ProtocolMisuseError(f"Entry '{self.path}' is already {self._state}")

    def append(self, chunk: bytes) -> None:
        """Append one immutable chunk and wake waiting readers."""
        self._ensure_writable()
        self._chunks.append(chunk)
        self._size += len(chunk)
        self._notify()

    def finish(self) -> None:
        """Mark the fill complete."""
        self._ensure_writable()
        self._state = "ready"
        logger.debug("Entry ready: %s (%d bytes)", self.path, self._size)
        self._settle()

    def fail(self, error: BaseException) -> None:
        """Record a fill failure; readers get it after the buffered prefix."""
        self._ensure_writable()
        self._state = "failed"
        self._error = error
        logger.warning("Fill failed for %s after %d bytes: %s", self.path, self._size, error)
        self._settle()

    def _settle(self) -> None:
        self._settled.set()
        self._notify()
        if self._on_settled is None:
            return
        try:
            self._on_settled(self)
        except Exception:  # noqa: BLE001
            logger.exception("Settle listener failed for %s", self.path)

    def _notify(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()

    def _notify_progress(self) -> None:
        self._progress.set()
        self._progress = asyncio.Event()

    async def wait_changed(self) -> None:
        await self._changed.wait()

    async def wait_settled(self) -> None:
        """Wait until the entry is ready, failed or destroyed."""
        await self._settled.wait()

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def attach(self) -> CacheHandle:
        """Attach a new reader cursor at offset 0."""
        if self._closed_reason is not None:
            raise ProtocolMisuseError(
                f"Cannot attach reader to {self._closed_reason} entry '{self.path}'"
            )
        handle = CacheHandle(self)
        self._readers.add(handle)
        return handle

    def detach(self, handle: CacheHandle) -> None:
        self._readers.discard(handle)
        self._notify_progress()

    def reader_advanced(self) -> None:
        if self._high_water_mark is not None:
            self._notify_progress()

    def chunk_at(self, index: int) -> bytes:
        return self._chunks[index]

    def closed_error(self) -> CacheEntryClosedError:
        if self._closed_reason == "evicted":
            return CacheEvictedError(self.path)
        return CachePurgedError(self.path)

    # ------------------------------------------------------------------
    # Destruction
    # ------------------------------------------------------------------

    def close(self, reason: CloseReason) -> None:
        """
        Destroy the entry: cancel the fill, drop the buffer, terminate readers.

        Idempotent. Does not wait for the fill task; see `wait_closed`.
        """
        if self._closed_reason is not None:
            return
        self._closed_reason = reason
        self._chunks = []
        self._size = 0
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._settled.set()
        self._notify()
        self._notify_progress()

    async def wait_closed(self, timeout: float | None = None) -> None:
        """
        Wait for the fill task to stop after `close`.

        Re-raises any exception that escaped the task while releasing its
        source or pipeline. Raises `TimeoutError` if it does not stop in time.
        """
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            raise TimeoutError(f"Fill for '{self.path}' did not stop within {timeout}s")
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            raise error


class CacheHandle:
    """
    Reader cursor over one cache entry.

    Each handle keeps its own offset, so any number of handles on the same
    entry read independently. Bytes are only ever appended by the entry's fill
    task; writing through a handle is not supported.
    """

    def __init__(self, entry: CacheEntry) -> None:
        self._entry = entry
        self._index = 0
        self._pos = 0
        self._offset = 0
        self._closed = False
        # A handle dropped without close() must not hold back the fill.
        self._finalizer = weakref.finalize(self, entry._notify_progress)
        self._finalizer.atexit = False

    @property
    def path(self) -> str:
        return self._entry.path

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def state(self) -> EntryState:
        return self._entry.state

    @property
    def pinned(self) -> bool:
        return self._entry.pinned

    @property
    def closed(self) -> bool:
        return self._closed

    def at_eof(self) -> bool:
        entry = self._entry
        return (
            not entry.is_closed
            and entry.state == "ready"
            and self._offset >= entry.size
        )

    def __repr__(self) -> str:
        return f"CacheHandle(path={self.path!r}, offset={self._offset}, state={self.state})"

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def _wait_readable(self) -> bool:
        """True when bytes are available, False at end of stream; raises otherwise."""
        while True:
            if self._closed:
                raise ProtocolMisuseError(f"Read on closed handle for '{self.path}'")
            entry = self._entry
            if entry.is_closed:
                raise entry.closed_error()
            if self._offset < entry.size:
                return True
            if entry.state == "ready":
                return False
            if entry.state == "failed":
                error = entry.error
                if error is None:
                    raise ProtocolMisuseError(f"Entry for '{self.path}' failed without an error")
                # Shared across readers; drop frames left by earlier raises.
                raise error.with_traceback(None)
            await entry.wait_changed()

    def _take(self, limit: int) -> bytes:
        entry = self._entry
        parts: list[bytes] = []
        remaining = limit
        while self._index < entry.chunk_count and remaining != 0:
            chunk = entry.chunk_at(self._index)
            start = self._pos
            if remaining < 0 or len(chunk) - start <= remaining:
                piece = chunk[start:] if start else chunk
                self._index += 1
                self._pos = 0
            else:
                piece = chunk[start : start + remaining]
                self._pos = start + remaining
            parts.append(piece)
            if remaining > 0:
                remaining -= len(piece)
        data = parts[0] if len(parts) == 1 else b"".join(parts)
        self._offset += len(data)
        entry.reader_advanced()
        return data

    async def read(self, n: int = -1) -> bytes:
        """
        Read up to `n` bytes.

        `n < 0` reads until end of stream. Otherwise returns as soon as at
        least one byte is available. Returns `b""` at end of stream.
        """
        if n == 0:
            if self._closed:
                raise ProtocolMisuseError(f"Read on closed handle for '{self.path}'")
            return b""
        if n < 0:
            parts: list[bytes] = []
            while await self._wait_readable():
                parts.append(self._take(-1))
            return b"".join(parts)
        if not await self._wait_readable():
            return b""
        return self._take(n)

    async def readexactly(self, n: int) -> bytes:
        """Read exactly `n` bytes or raise `asyncio.IncompleteReadError`."""
        if n < 0:
            raise ValueError("readexactly size can not be less than zero")
        parts: list[bytes] = []
        received = 0
        while received < n:
            if not await self._wait_readable():
                raise asyncio.IncompleteReadError(b"".join(parts), n)
            piece = self._take(n - received)
            parts.append(piece)
            received += len(piece)
        return b"".join(parts)

    def __aiter__(self) -> CacheHandle:
        return self

    async def __anext__(self) -> bytes:
        if not await self._wait_readable():
            raise StopAsyncIteration
        chunk = self._entry.chunk_at(self._index)
        return self._take(len(chunk) - self._pos)

    def write(self, data: bytes) -> None:
        _ = data
        raise ProtocolMisuseError(
            f"Handle for '{self.path}' is read-only; entries are filled from their source"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Detach from the entry. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._finalizer.detach()
        self._entry.detach(self)

    async def __aenter__(self) -> CacheHandle:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
