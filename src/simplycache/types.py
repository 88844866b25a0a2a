"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Shared types: entry states, collaborator protocols and stats snapshots.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Entry lifecycle
# ---------------------------------------------------------------------------

EntryState = Literal["filling", "ready", "failed"]
CloseReason = Literal["purged", "evicted"]


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class SourceOpener(Protocol):
    """Capability that turns a path into a lazy sequence of byte chunks."""

    def open(self, path: str, *, chunk_size: int) -> AsyncIterator[bytes]:
        """
        Return an async iterator over the content of `path`.

        Failures to open or read are raised from the iterator, not from this
        call, so the caller can start consuming without awaiting anything.
        """
        ...


class TransformStage(Protocol):
    """One pipeline stage: consumes a chunk sequence, produces another."""

    def __call__(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]: ...


# ---------------------------------------------------------------------------
# Stats snapshots
# ---------------------------------------------------------------------------


class EntryInfo(BaseModel):
    """Point-in-time view of one cache entry."""

    model_config = ConfigDict(frozen=True)

    path: str
    state: EntryState
    pinned: bool
    size: int = Field(ge=0)
    chunks: int = Field(ge=0)
    readers: int = Field(ge=0)
    error: str | None = None


class CacheStats(BaseModel):
    """Point-in-time view of the whole cache."""

    model_config = ConfigDict(frozen=True)

    max_files: int
    entries: int = 0
    implicit: int = 0
    pinned: int = 0
    buffered_bytes: int = 0
    ledger: list[str] = Field(default_factory=list)
    items: list[EntryInfo] = Field(default_factory=list)
