"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Source openers: the default local-file reader and the guard applied to any
opener's output before it reaches a cache entry.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass

from .errors import CacheError, OpenError


async def aclose_iterator(chunks: AsyncIterator[bytes]) -> None:
    """Close an async iterator if it supports `aclose()`."""
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


@dataclass(frozen=True, slots=True)
class FileSourceOpener:
    """
    Read local files in binary mode.

    Every blocking `open`/`read` call runs in a worker thread so that a slow
    disk never stalls the event loop. The file handle is closed when the
    iterator is exhausted, fails or is closed early.
    """

    def open(self, path: str, *, chunk_size: int) -> AsyncIterator[bytes]:
        return self._read_chunks(path, chunk_size)

    async def _read_chunks(self, path: str, chunk_size: int) -> AsyncIterator[bytes]:
        try:
            handle = await asyncio.to_thread(open, path, "rb")
        except OSError as exc:
            raise OpenError(
                path, f"Cannot open source '{path}': {exc.strerror or exc}"
            ) from exc

        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(handle.read, chunk_size)
                except OSError as exc:
                    raise OpenError(
                        path, f"Cannot read source '{path}': {exc.strerror or exc}"
                    ) from exc
                if not chunk:
                    return
                yield chunk
        finally:
            handle.close()


async def guard_source(path: str, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """
    Normalize an opener's output.

    Foreign exceptions are reported as `OpenError`; bytes-like chunks are frozen
    into `bytes` so nothing downstream can mutate buffered data in place.
    """
    try:
        async for chunk in chunks:
            if isinstance(chunk, bytes):
                yield chunk
            elif isinstance(chunk, (bytearray, memoryview)):
                yield bytes(chunk)
            else:
                raise OpenError(
                    path,
                    f"Source for '{path}' yielded {type(chunk).__name__}, expected bytes",
                )
    except CacheError:
        raise
    except Exception as exc:
        raise OpenError(path, f"Source for '{path}' failed: {exc}") from exc
    finally:
        await aclose_iterator(chunks)
