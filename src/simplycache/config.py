"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Cache options and explicit config loading.
"""

from __future__ import annotations

import os
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .transforms import TransformPipeline

DEFAULT_MAX_FILES = 10
DEFAULT_CHUNK_SIZE = 256
DEFAULT_HIGH_WATER_MARK = 64 * 1024
DEFAULT_CANCEL_TIMEOUT_S = 5.0


class CacheOptions(BaseModel):
    """
    Options recognized by `SimplyCache`.

    Attributes:
        transform_pipeline: Stages the raw source is run through before it is
            cached. A plain list of stages is accepted and wrapped.
        max_files: Ceiling on implicitly cached entries (pinned entries excluded).
        chunk_size: Read granularity hint passed to the source opener.
        high_water_mark: Maximum bytes a fill may run ahead of its slowest
            reader. `None` disables the bound.
        cancel_timeout_s: How long purge waits for a cancelled fill to release
            its source before reporting a failure.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    transform_pipeline: TransformPipeline | None = None
    max_files: int = Field(default=DEFAULT_MAX_FILES, ge=1)
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1)
    high_water_mark: Annotated[int, Field(ge=1)] | None = DEFAULT_HIGH_WATER_MARK
    cancel_timeout_s: float = Field(default=DEFAULT_CANCEL_TIMEOUT_S, gt=0)

    @field_validator("transform_pipeline", mode="before")
    @classmethod
    def coerce_pipeline(cls, value: Any) -> Any:
        if value is None or isinstance(value, TransformPipeline):
            return value
        if isinstance(value, (list, tuple)):
            return TransformPipeline(value)
        if callable(value):
            return TransformPipeline([value])
        raise ValueError("transform_pipeline must be a TransformPipeline or list of stages")

    @staticmethod
    def from_env(**overrides: Any) -> "CacheOptions":
        """Load options from `SIMPLYCACHE_*` environment variables."""
        values: dict[str, Any] = {
            "max_files": os.getenv("SIMPLYCACHE_MAX_FILES", str(DEFAULT_MAX_FILES)),
            "chunk_size": os.getenv("SIMPLYCACHE_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE)),
            "cancel_timeout_s": os.getenv(
                "SIMPLYCACHE_CANCEL_TIMEOUT_S", str(DEFAULT_CANCEL_TIMEOUT_S)
            ),
        }
        raw_hwm = os.getenv("SIMPLYCACHE_HIGH_WATER_MARK")
        if raw_hwm is not None:
            raw_hwm = raw_hwm.strip()
            values["high_water_mark"] = (
                None if raw_hwm.lower() in ("", "0", "none", "off") else raw_hwm
            )
        values.update(overrides)
        return CacheOptions(**values)
