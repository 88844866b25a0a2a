"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error hierarchy for the stream cache.
"""

from __future__ import annotations

from collections.abc import Mapping


class CacheError(RuntimeError):
    """Base stream cache error."""


class OpenError(CacheError):
    """Raised when a source path cannot be opened or read."""

    def __init__(self, path: str, message: str | None = None) -> None:
        self.path = path
        super().__init__(message or f"Cannot open source '{path}'")


class TransformError(CacheError):
    """Raised when a transform pipeline stage fails."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"Transform stage '{stage}' failed: {message}")


class EvictionError(CacheError):
    """Raised (and logged) when an evicted fill cannot be torn down cleanly."""

    def __init__(self, path: str, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to cancel fill for evicted entry '{path}': {cause!r}")


class PurgeError(CacheError):
    """
    Raised by `purge` when one or more fills could not be released cleanly.

    The affected entries are already removed from the cache when this is raised.
    """

    def __init__(self, failures: Mapping[str, BaseException]) -> None:
        self.failures = dict(failures)
        paths = ", ".join(sorted(self.failures))
        super().__init__(f"Failed to release {len(self.failures)} entries: {paths}")


class ProtocolMisuseError(CacheError):
    """Raised when an entry or handle is used outside its lifecycle."""


class CacheEntryClosedError(CacheError):
    """Base error delivered to readers of a destroyed entry."""

    reason = "closed"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Cache entry '{path}' was {self.reason}")


class CachePurgedError(CacheEntryClosedError):
    """Delivered to readers whose entry was purged."""

    reason = "purged"


class CacheEvictedError(CacheEntryClosedError):
    """Delivered to readers whose entry was evicted by the LRU policy."""

    reason = "evicted"
