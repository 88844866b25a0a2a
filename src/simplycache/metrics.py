"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Metrics adapters for cache observability.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol


class CacheMetrics(Protocol):
    """Minimal metrics interface for cache instrumentation."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        """Increment a counter metric."""


class NoOpCacheMetrics:
    """Default metrics sink when no metrics backend is provided."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = name
        _ = value
        _ = tags


class InMemoryCacheMetrics:
    """Counter totals kept in a dict; handy for tests and debugging."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        _ = tags
        self.counts[name] = self.counts.get(name, 0) + value

    def get(self, name: str) -> int:
        return self.counts.get(name, 0)


# Counters emitted by `SimplyCache`: name -> (help text, label names).
CACHE_COUNTERS: dict[str, tuple[str, tuple[str, ...]]] = {
    "cache_hits": ("Streams served by an existing entry", ()),
    "cache_misses": ("Streams that started a new fill", ()),
    "cache_evictions": ("Implicit entries evicted by the LRU bound", ()),
    "cache_purges": ("Entries removed by purge", ()),
    "fill_completed": ("Fills that reached the ready state", ()),
    "fill_failed": ("Fills that ended with an error", ()),
    "teardown_failures": ("Fill cleanups that raised during purge or eviction", ("op",)),
}


class PrometheusCacheMetrics:
    """
    Prometheus-backed cache metrics adapter.

    Every counter in `CACHE_COUNTERS` is registered up front, so scrapes see
    zero-valued series before the first event. Names outside that table are
    rejected rather than registered with guessed labels.

    Requires `prometheus_client` package.
    """

    def __init__(self, *, namespace: str = "simplycache", registry: object | None = None) -> None:
        try:
            from prometheus_client import Counter
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "PrometheusCacheMetrics requires `prometheus_client` to be installed."
            ) from exc

        extra: dict[str, object] = {} if registry is None else {"registry": registry}
        self._counters = {
            name: Counter(
                name=name,
                documentation=help_text,
                namespace=namespace,
                labelnames=labels,
                **extra,
            )
            for name, (help_text, labels) in CACHE_COUNTERS.items()
        }

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        counter = self._counters.get(name)
        if counter is None:
            raise KeyError(f"Unknown cache counter '{name}'")
        labels = CACHE_COUNTERS[name][1]
        if labels:
            tags = tags or {}
            counter.labels(*(str(tags.get(label, "")) for label in labels)).inc(value)
        else:
            counter.inc(value)
