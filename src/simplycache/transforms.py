"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Transform pipeline applied between a source and its cache entry.

A stage is any callable that takes an async chunk iterator and returns one.
Stages are chained in order and pulled lazily, so a slow consumer of the
pipeline output slows the source down as well.
"""

from __future__ import annotations

import zlib
from collections.abc import AsyncIterator, Callable, Iterable

from .errors import CacheError, TransformError
from .sources import aclose_iterator
from .types import TransformStage


def stage_name(stage: TransformStage) -> str:
    """Human-readable stage name used in errors and logs."""
    name = getattr(stage, "stage_name", None) or getattr(stage, "__name__", None)
    return str(name or type(stage).__name__)


async def _guard_stage(
    name: str,
    output: AsyncIterator[bytes],
    upstream: AsyncIterator[bytes],
) -> AsyncIterator[bytes]:
    try:
        async for chunk in output:
            if not isinstance(chunk, (bytes, bytearray, memoryview)):
                raise TransformError(
                    name, f"yielded {type(chunk).__name__}, expected bytes"
                )
            yield bytes(chunk) if not isinstance(chunk, bytes) else chunk
    except CacheError:
        raise
    except Exception as exc:
        raise TransformError(name, str(exc) or type(exc).__name__) from exc
    finally:
        # `async for` inside a stage does not close its upstream on exit.
        await aclose_iterator(output)
        await aclose_iterator(upstream)


class TransformPipeline:
    """Ordered chain of transform stages."""

    def __init__(self, stages: Iterable[TransformStage] = ()) -> None:
        self._stages: tuple[TransformStage, ...] = tuple(stages)
        for stage in self._stages:
            if not callable(stage):
                raise TypeError(f"Transform stage must be callable, got {stage!r}")

    @property
    def stages(self) -> tuple[TransformStage, ...]:
        return self._stages

    def __len__(self) -> int:
        return len(self._stages)

    def __repr__(self) -> str:
        names = ", ".join(stage_name(stage) for stage in self._stages)
        return f"TransformPipeline([{names}])"

    def then(self, stage: TransformStage) -> TransformPipeline:
        """Return a new pipeline with `stage` appended."""
        return TransformPipeline((*self._stages, stage))

    def apply(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Compose every stage over `chunks`; the empty pipeline is the identity."""
        for stage in self._stages:
            name = stage_name(stage)
            try:
                output = stage(chunks)
            except Exception as exc:
                raise TransformError(name, str(exc) or type(exc).__name__) from exc
            chunks = _guard_stage(name, output, chunks)
        return chunks


# ---------------------------------------------------------------------------
# Stock stages
# ---------------------------------------------------------------------------


def gzip_stage(level: int = 6) -> TransformStage:
    """Streaming gzip compression."""

    async def gzip(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        compressor = zlib.compressobj(level, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
        async for chunk in chunks:
            out = compressor.compress(chunk)
            if out:
                yield out
        tail = compressor.flush()
        if tail:
            yield tail

    return gzip


def map_stage(fn: Callable[[bytes], bytes]) -> TransformStage:
    """Apply a synchronous bytes -> bytes function to every chunk."""

    async def mapped(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            yield fn(chunk)

    mapped.stage_name = getattr(fn, "__name__", "map")  # type: ignore[attr-defined]
    return mapped


def rechunk_stage(size: int) -> TransformStage:
    """Re-slice the stream into chunks of exactly `size` bytes (last may be short)."""
    if size < 1:
        raise ValueError("rechunk size must be >= 1")

    async def rechunk(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        pending = bytearray()
        async for chunk in chunks:
            pending += chunk
            while len(pending) >= size:
                yield bytes(pending[:size])
                del pending[:size]
        if pending:
            yield bytes(pending)

    return rechunk
