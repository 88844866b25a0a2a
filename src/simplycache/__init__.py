"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

In-memory stream cache for file content.

Each path is read from its source at most once while cached; every caller
gets an independent reader that replays buffered bytes and then follows the
live fill.

Quick start::

    from simplycache import SimplyCache, gzip_stage

    cache = SimplyCache(max_files=16, transform_pipeline=[gzip_stage()])

    handle = cache.stream("static/app.js")
    async for chunk in handle:
        await send(chunk)

    await cache.preload("static/index.html")   # pinned, never evicted
    await cache.purge("static/app.js")
"""

from .cache import SimplyCache
from .config import CacheOptions
from .entry import CacheEntry, CacheHandle
from .errors import (
    CacheEntryClosedError,
    CacheError,
    CacheEvictedError,
    CachePurgedError,
    EvictionError,
    OpenError,
    ProtocolMisuseError,
    PurgeError,
    TransformError,
)
from .ledger import LRULedger
from .metrics import (
    CACHE_COUNTERS,
    CacheMetrics,
    InMemoryCacheMetrics,
    NoOpCacheMetrics,
    PrometheusCacheMetrics,
)
from .sources import FileSourceOpener, guard_source
from .transforms import TransformPipeline, gzip_stage, map_stage, rechunk_stage
from .types import (
    CacheStats,
    CloseReason,
    EntryInfo,
    EntryState,
    SourceOpener,
    TransformStage,
)

__all__ = [
    "SimplyCache",
    "CacheOptions",
    "CacheEntry",
    "CacheHandle",
    "LRULedger",
    "SourceOpener",
    "FileSourceOpener",
    "guard_source",
    "TransformStage",
    "TransformPipeline",
    "gzip_stage",
    "map_stage",
    "rechunk_stage",
    "CACHE_COUNTERS",
    "CacheMetrics",
    "NoOpCacheMetrics",
    "InMemoryCacheMetrics",
    "PrometheusCacheMetrics",
    "CacheStats",
    "EntryInfo",
    "EntryState",
    "CloseReason",
    "CacheError",
    "OpenError",
    "TransformError",
    "EvictionError",
    "PurgeError",
    "ProtocolMisuseError",
    "CacheEntryClosedError",
    "CachePurgedError",
    "CacheEvictedError",
]
