"""
Configuration Management for the Metric Mesh

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after validation
- Fail-fast on invalid configuration (ValidationError before any I/O)
- Type-safe with dataclasses
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from metricmesh.core import constants as C
from metricmesh.core.errors import ValidationError
from metricmesh.core.types import DEFAULT_SPANS, Err, Ok, Result, SpanSet
from metricmesh.observability.logging import LogSetting
from metricmesh.reliability.retry import RetryPolicy


@dataclass(frozen=True, slots=True)
class BufferPolicy:
    """
    When buffered observations are written through to the store.

    Any one threshold reached triggers a write: accumulated `sum`,
    accumulated `count`, or `elapsed` seconds since the entry's last write.
    `force` writes on every call. A policy with nothing set disables
    buffering.
    """

    sum: Optional[float] = None
    count: Optional[int] = None
    elapsed: Optional[float] = None
    force: bool = False

    def __post_init__(self) -> None:
        for name in ("sum", "count", "elapsed"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError.invalid_option(f"buffer.{name}", value, "must be a finite number")
            if value < 0:
                raise ValidationError.invalid_option(f"buffer.{name}", value, "must be >= 0")

    @property
    def is_active(self) -> bool:
        return bool(self.sum or self.count or self.elapsed or self.force)

    @classmethod
    def coerce(cls, value: Any) -> Optional[BufferPolicy]:
        """Accept a BufferPolicy, a mapping of its fields, or None."""
        if value is None or isinstance(value, BufferPolicy):
            return value
        if isinstance(value, dict):
            unknown = set(value) - {"sum", "count", "elapsed", "force"}
            if unknown:
                raise ValidationError.invalid_option("buffer", value, f"unknown keys {sorted(unknown)}")
            return cls(**value)
        raise ValidationError.invalid_option("buffer", value, "must be a BufferPolicy or mapping")


@dataclass(frozen=True, slots=True)
class MetricsConfig:
    """
    Root configuration for a metrics handle.

    Attributes:
        owner: Default owner partition for records.
        spans: Resolution tiers for new records.
        ttl: Record lifetime in seconds; defaults to the coarsest span period.
        p_resolution: Percentile reservoir size per bucket (0 disables).
        source: Optional tag written into every record.
        prefix: Key prefix for partition and sort keys.
        buffer: Default buffering policy for emits.
        log: Core log setting.
        consistent: Request strongly consistent reads where the store offers them.
        retry: Backoff policy for conditional-write collisions.
    """

    owner: str = C.DEFAULT_OWNER
    spans: SpanSet = DEFAULT_SPANS
    ttl: Optional[int] = None
    p_resolution: int = C.DEFAULT_P_RESOLUTION
    source: Optional[str] = None
    prefix: str = C.DEFAULT_PREFIX
    buffer: Optional[BufferPolicy] = None
    log: LogSetting = LogSetting.OFF
    consistent: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy.default)

    def __post_init__(self) -> None:
        result = self.validate()
        if result.is_err():
            raise ValidationError.invalid_option("config", self, result.error)

    @property
    def effective_ttl(self) -> int:
        return self.ttl if self.ttl else self.spans.coarsest.period

    @classmethod
    def create(
        cls,
        spans: Optional[Sequence[Sequence[int]]] = None,
        buffer: Any = None,
        log: Any = LogSetting.OFF,
        **kwargs: Any,
    ) -> MetricsConfig:
        """
        Build from loosely typed options: span pairs, a buffer mapping and
        a log flag are normalized before validation.
        """
        try:
            span_set = DEFAULT_SPANS if spans is None else (
                spans if isinstance(spans, SpanSet) else SpanSet.of(*spans)
            )
            setting = LogSetting.parse(log)
        except (TypeError, ValueError) as e:
            raise ValidationError.invalid_option("spans/log", spans, str(e)) from e
        return cls(spans=span_set, buffer=BufferPolicy.coerce(buffer), log=setting, **kwargs)

    @classmethod
    def from_env(cls) -> Result[MetricsConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with METRICMESH_.
        Example: METRICMESH_OWNER, METRICMESH_TTL, METRICMESH_P_RESOLUTION,
        METRICMESH_SOURCE, METRICMESH_PREFIX, METRICMESH_LOG
        """
        try:
            ttl = os.getenv("METRICMESH_TTL")
            config = cls(
                owner=os.getenv("METRICMESH_OWNER", C.DEFAULT_OWNER),
                ttl=int(ttl) if ttl else None,
                p_resolution=int(os.getenv("METRICMESH_P_RESOLUTION", str(C.DEFAULT_P_RESOLUTION))),
                source=os.getenv("METRICMESH_SOURCE") or None,
                prefix=os.getenv("METRICMESH_PREFIX", C.DEFAULT_PREFIX),
                log=LogSetting.parse(os.getenv("METRICMESH_LOG", "off")),
                consistent=os.getenv("METRICMESH_CONSISTENT", "").lower() in ("true", "1", "yes"),
            )
            return Ok(config)
        except (ValueError, TypeError, ValidationError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if not isinstance(self.owner, str) or not self.owner:
            return Err("owner must be a non-empty string")
        if not isinstance(self.spans, SpanSet):
            return Err("spans must be a SpanSet")
        if self.ttl is not None and (
            isinstance(self.ttl, bool) or not isinstance(self.ttl, int) or self.ttl <= 0
        ):
            return Err(f"ttl must be a positive integer number of seconds, got {self.ttl!r}")
        if not (0 <= self.p_resolution <= C.MAX_P_RESOLUTION):
            return Err(f"p_resolution must be between 0 and {C.MAX_P_RESOLUTION}")
        if self.source is not None and not isinstance(self.source, str):
            return Err("source must be a string")
        if not self.prefix or C.KEY_SEPARATOR in self.prefix:
            return Err(f"prefix must be non-empty and free of {C.KEY_SEPARATOR!r}")
        if not isinstance(self.consistent, bool):
            return Err("consistent must be a bool")
        return Ok(None)
