"""
Core Type Definitions for the Metric Mesh

Implements the Result/Either monad used across storage boundaries and the
record model shared by the rollup, buffer, writer and query layers.

Design Principles:
- Never use null for absence at storage seams (use Optional or Result)
- Span tiers are immutable configuration; record spans are mutable rings
- Validate closed variants (statistics, span sets) at construction

Complexity: O(1) for all type operations except SpanSet validation (O(n))
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Generic,
    Iterator,
    Literal,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

from metricmesh.core import constants as C

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# SPAN CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class SpanDef:
    """
    One resolution tier: `period` seconds split into `samples` buckets.

    Raises:
        ValueError: If period or samples is not a positive integer.
    """

    period: int
    samples: int

    def __post_init__(self) -> None:
        if not isinstance(self.period, int) or isinstance(self.period, bool) or self.period <= 0:
            raise ValueError(f"span period must be a positive integer, got {self.period!r}")
        if not isinstance(self.samples, int) or isinstance(self.samples, bool) or self.samples <= 0:
            raise ValueError(f"span samples must be a positive integer, got {self.samples!r}")

    @property
    def interval(self) -> Union[int, float]:
        return _interval(self.period, self.samples)


@dataclass(frozen=True, slots=True)
class SpanSet:
    """
    Non-empty ordered set of span tiers, strictly ascending by period.

    Span 0 is the finest resolution, the last span the coarsest and its
    period bounds the retention of every record built from the set.

    Example:
        >>> spans = SpanSet.of((300, 10), (3600, 12))
        >>> spans.coarsest.period
        3600
    """

    spans: tuple[SpanDef, ...]

    def __post_init__(self) -> None:
        if len(self.spans) == 0:
            raise ValueError("span set must contain at least one span")
        for prev, cur in zip(self.spans, self.spans[1:]):
            if cur.period <= prev.period:
                raise ValueError(
                    f"span periods must be strictly ascending: {prev.period} then {cur.period}"
                )

    @classmethod
    def of(cls, *pairs: Union[SpanDef, Sequence[int]]) -> SpanSet:
        """Build from SpanDef instances or (period, samples) pairs."""
        defs = []
        for pair in pairs:
            if isinstance(pair, SpanDef):
                defs.append(pair)
            else:
                try:
                    period, samples = pair
                except (TypeError, ValueError) as e:
                    raise ValueError(f"malformed span definition {pair!r}: {e}") from e
                defs.append(SpanDef(period=period, samples=samples))
        return cls(spans=tuple(defs))

    @property
    def coarsest(self) -> SpanDef:
        return self.spans[-1]

    @property
    def finest(self) -> SpanDef:
        return self.spans[0]

    def matches(self, spans: Sequence[Span]) -> bool:
        """True if a record's spans have exactly these periods and sample counts."""
        if len(spans) != len(self.spans):
            return False
        return all(
            s.period == d.period and s.samples == d.samples
            for s, d in zip(spans, self.spans)
        )

    def __len__(self) -> int:
        return len(self.spans)

    def __iter__(self) -> Iterator[SpanDef]:
        return iter(self.spans)

    def __getitem__(self, index: int) -> SpanDef:
        return self.spans[index]


# 5 min / 30 s ... 1 yr / 1 mo
DEFAULT_SPANS: SpanSet = SpanSet.of(
    (5 * C.MINUTE, 10),
    (C.HOUR, 12),
    (C.DAY, 12),
    (C.WEEK, 14),
    (4 * C.WEEK, 14),
    (C.YEAR, 12),
)


def _interval(period: int, samples: int) -> Union[int, float]:
    # Keep integral intervals integral so bucket boundaries stay ints
    if period % samples == 0:
        return period // samples
    return period / samples


# =============================================================================
# RECORD MODEL
# =============================================================================
@dataclass(slots=True)
class Point:
    """
    One bucket of aggregated observations.

    `timestamp` is transient: it marks a point's true time while it is being
    moved between spans and is never persisted.
    """

    count: int = 0
    sum: float = 0
    min: Optional[float] = None
    max: Optional[float] = None
    pvalues: Optional[list[float]] = None
    timestamp: Optional[Union[int, float]] = None


@dataclass(slots=True)
class Span:
    """
    A ring of at most `samples` buckets, oldest first.

    Bucket i covers [end - (len-i)*interval, end - (len-i-1)*interval).
    """

    period: int
    samples: int
    end: Union[int, float]
    points: list[Point] = field(default_factory=list)

    @property
    def interval(self) -> Union[int, float]:
        return _interval(self.period, self.samples)

    @property
    def start(self) -> Union[int, float]:
        """Start of the oldest bucket currently held."""
        return self.end - len(self.points) * self.interval


@dataclass(frozen=True, slots=True, order=True)
class MetricKey:
    """Identity of one metric stream: (owner, namespace, metric, dimensions)."""

    owner: str
    namespace: str
    metric: str
    dimensions: str = ""

    def __str__(self) -> str:
        return f"{self.owner}/{self.namespace}/{self.metric}/{self.dimensions}"


@dataclass(slots=True)
class MetricRecord:
    """
    Persisted multi-resolution history for one metric stream.

    `seq` is None until the record has been written once; after that it is
    the optimistic-concurrency token compared by conditional writes.
    """

    owner: str
    namespace: str
    metric: str
    dimensions: str
    spans: list[Span]
    seq: Optional[int] = None
    expires: Optional[int] = None
    source: Optional[str] = None
    version: int = C.SCHEMA_VERSION

    @property
    def key(self) -> MetricKey:
        return MetricKey(self.owner, self.namespace, self.metric, self.dimensions)

    def total_count(self) -> int:
        """Observations held across every bucket of every span."""
        return sum(p.count for s in self.spans for p in s.points)


# =============================================================================
# STATISTICS
# =============================================================================
class StatKind(Enum):
    """Closed set of statistics a query can compute."""
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    CURRENT = "current"
    PERCENTILE = "p"


_PERCENTILE_RE = re.compile(r"^p(\d{1,3})$")


@dataclass(frozen=True, slots=True)
class Statistic:
    """
    Tagged statistic variant. `percentile` is set only for PERCENTILE.

    Example:
        >>> Statistic.parse("p90").unwrap().percentile
        90
    """

    kind: StatKind
    percentile: Optional[int] = None

    @classmethod
    def parse(cls, text: Union[str, Statistic]) -> Result[Statistic, str]:
        """
        Parse a statistic name such as "avg" or "p95".

        Returns:
            Ok[Statistic]: Valid statistic
            Err[str]: Unknown name or percentile outside 0..100
        """
        if isinstance(text, Statistic):
            return Ok(text)
        if not isinstance(text, str):
            return Err(f"Statistic must be a string, got {type(text).__name__}")
        name = text.strip().lower()
        match = _PERCENTILE_RE.match(name)
        if match:
            n = int(match.group(1))
            if n > 100:
                return Err(f"Percentile out of range: {text}")
            return Ok(cls(StatKind.PERCENTILE, n))
        for kind in StatKind:
            if kind is not StatKind.PERCENTILE and kind.value == name:
                return Ok(cls(kind))
        return Err(f"Unknown statistic: {text!r}")

    @classmethod
    def p(cls, n: int) -> Statistic:
        return cls(StatKind.PERCENTILE, n)

    def __str__(self) -> str:
        if self.kind is StatKind.PERCENTILE:
            return f"p{self.percentile}"
        return self.kind.value


SUM = Statistic(StatKind.SUM)
AVG = Statistic(StatKind.AVG)
MIN = Statistic(StatKind.MIN)
MAX = Statistic(StatKind.MAX)
COUNT = Statistic(StatKind.COUNT)
CURRENT = Statistic(StatKind.CURRENT)


# =============================================================================
# QUERY RESULTS
# =============================================================================
@dataclass(slots=True)
class QueryPoint:
    """One output point: statistic value, observation count, closing time."""
    value: float
    count: int
    timestamp: Union[int, float]


@dataclass(slots=True)
class QueryResult:
    """
    Result of a metric query.

    `samples` is 0 and `points` empty when no record exists.
    """

    namespace: str
    metric: str
    owner: str
    dimensions: dict[str, str]
    period: int
    samples: int
    points: list[QueryPoint] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def value(self) -> Optional[float]:
        """Value of the single point of an accumulated result."""
        return self.points[0].value if self.points else None

    @property
    def count(self) -> int:
        return sum(p.count for p in self.points)


@dataclass(slots=True)
class MetricList:
    """Grouped listing of stored metric keys."""
    namespaces: list[str] = field(default_factory=list)
    metrics: Optional[list[str]] = None
    dimensions: Optional[list[dict[str, str]]] = None


def is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)
