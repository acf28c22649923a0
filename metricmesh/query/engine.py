"""
Query Engine
============

Turns a stored record into a query result for one statistic.

Processing a query:
1. Pick the span to read: the finest span at least as long as the
   requested period, or the span whose window holds an explicit start
2. Reconcile the record in memory so finer buckets are rolled into it
3. Reduce that span to one point (accumulate) or to a bucket series

Percentiles are nearest-rank approximations over the bucket reservoirs.
Reconciliation never writes back; the next emit persists it naturally.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Union

from metricmesh.core.dimensions import decode_dimensions
from metricmesh.core.types import (
    MetricRecord,
    Point,
    QueryPoint,
    QueryResult,
    Span,
    StatKind,
    Statistic,
)
from metricmesh.rollup.engine import RollupEngine, align_time

Number = Union[int, float]


def percentile_rank(values: Sequence[float], percentile: int) -> Optional[float]:
    """
    Nearest-rank percentile: sorted index round(n * p / 100 + 1), clamped
    to the last index. None for no values.
    """
    if not values:
        return None
    ordered = sorted(values)
    nth = min(math.floor(len(ordered) * percentile / 100 + 1 + 0.5), len(ordered) - 1)
    return ordered[nth]


def _bucket_average(point: Point) -> float:
    return point.sum / (point.count or 1)


class QueryEngine:
    """
    Stateless query evaluation over MetricRecord instances.

    Example:
        >>> engine = QueryEngine(RollupEngine())
        >>> result = engine.process_metric(record, 3600, SUM, now, accumulate=True)
        >>> result.value
        40
    """

    __slots__ = ("_engine",)

    def __init__(self, engine: RollupEngine) -> None:
        self._engine = engine

    def process_metric(
        self,
        record: MetricRecord,
        period: int,
        statistic: Statistic,
        timestamp: Number,
        *,
        accumulate: bool = False,
        start: Optional[Number] = None,
        id: Optional[str] = None,
    ) -> QueryResult:
        """
        Select, reconcile and reduce. Mutates `record` spans in memory.

        Args:
            record: Record to read; its spans are reconciled in place.
            period: Query window in seconds.
            statistic: Statistic to compute.
            timestamp: "Now" in epoch seconds.
            accumulate: One summarized point instead of a series.
            start: Window start in epoch seconds; defaults to now - period.
            id: Caller correlation id echoed in the result.
        """
        spans = record.spans
        if start is not None:
            si = next(
                (
                    i for i, s in enumerate(spans)
                    if period <= s.period and s.end - s.period <= start < s.end
                ),
                -1,
            )
            end = start + period
        else:
            finest = spans[0]
            # Include the bucket still filling when now falls inside it
            if finest.end - finest.interval <= timestamp < finest.end:
                end = finest.end
            else:
                end = timestamp
            si = next((i for i, s in enumerate(spans) if period <= s.period), -1)

        if si < 0:
            si = len(spans) - 1
        if accumulate and statistic.kind is StatKind.CURRENT:
            si = 0

        self._engine.reconcile(record, timestamp, si)

        span = spans[si]
        if accumulate:
            result = self.accumulate_metric(record, span, statistic, end, period)
        else:
            result = self.calculate_series(record, span, statistic, end, period)
        result.id = id
        return result

    # -------------------------------------------------------------------------
    # ACCUMULATE
    # -------------------------------------------------------------------------

    def accumulate_metric(
        self,
        record: MetricRecord,
        span: Span,
        statistic: Statistic,
        end: Number,
        period: int,
    ) -> QueryResult:
        """Reduce every bucket of `span` inside the window to one point."""
        start = align_time(span, end - period)
        kind = statistic.kind
        interval = span.interval

        value: Optional[float] = None
        count = 0
        pvalues: list[float] = []

        if kind is StatKind.CURRENT:
            value, count = self._current(record)
        else:
            total = 0
            t = span.end - len(span.points) * interval
            for point in span.points:
                if start <= t < start + period:
                    if kind is StatKind.MAX and point.count:
                        candidate = point.max if point.max is not None else _bucket_average(point)
                        value = candidate if value is None else max(value, candidate)
                    elif kind is StatKind.MIN and point.count:
                        candidate = point.min if point.min is not None else _bucket_average(point)
                        value = candidate if value is None else min(value, candidate)
                    elif kind is StatKind.COUNT:
                        total += point.count
                    elif kind is StatKind.PERCENTILE:
                        pvalues.extend(point.pvalues or ())
                    elif kind in (StatKind.SUM, StatKind.AVG):
                        total += point.sum
                    count += point.count
                t += interval

            if kind is StatKind.PERCENTILE:
                value = percentile_rank(pvalues, statistic.percentile)
            elif kind is StatKind.AVG:
                value = total / max(count, 1)
            elif kind in (StatKind.SUM, StatKind.COUNT):
                value = total

        return QueryResult(
            namespace=record.namespace,
            metric=record.metric,
            owner=record.owner,
            dimensions=decode_dimensions(record.dimensions),
            period=span.period,
            samples=span.samples,
            points=[QueryPoint(value=value or 0, count=count, timestamp=start + period)],
        )

    @staticmethod
    def _current(record: MetricRecord) -> tuple[float, int]:
        """Average of the most recent non-empty bucket, finest span first."""
        for span in record.spans:
            for point in reversed(span.points):
                if point.count > 0:
                    return point.sum / point.count, point.count
        return 0, 0

    # -------------------------------------------------------------------------
    # SERIES
    # -------------------------------------------------------------------------

    def calculate_series(
        self,
        record: MetricRecord,
        span: Span,
        statistic: Statistic,
        end: Number,
        period: int,
    ) -> QueryResult:
        """
        One point per bucket of `span` in the window, zero-filled before the
        first stored bucket and padded out to ceil(period / interval) points.
        Each point is stamped with its bucket's closing time, never past `end`.
        """
        interval = span.interval
        start = align_time(span, end - period)
        first = span.end - len(span.points) * interval
        points: list[QueryPoint] = []

        t = start
        while t < first and len(points) < span.samples:
            points.append(QueryPoint(value=0, count=0, timestamp=min(t + interval, end)))
            t += interval

        t = first
        for point in span.points:
            if start <= t < end:
                points.append(QueryPoint(
                    value=self._bucket_value(point, statistic),
                    count=point.count,
                    timestamp=min(t + interval, end),
                ))
            t += interval

        wanted = min(math.ceil(period / interval), span.samples)
        while len(points) < wanted:
            points.append(QueryPoint(value=0, count=0, timestamp=min(t + interval, end)))
            t += interval

        return QueryResult(
            namespace=record.namespace,
            metric=record.metric,
            owner=record.owner,
            dimensions=decode_dimensions(record.dimensions),
            period=span.period,
            samples=span.samples,
            points=points,
        )

    @staticmethod
    def _bucket_value(point: Point, statistic: Statistic) -> float:
        if not point.count:
            return 0
        kind = statistic.kind
        if kind is StatKind.MAX:
            return point.max if point.max is not None else _bucket_average(point)
        if kind is StatKind.MIN:
            return point.min if point.min is not None else _bucket_average(point)
        if kind is StatKind.SUM:
            return point.sum
        if kind is StatKind.COUNT:
            return point.count
        if kind is StatKind.PERCENTILE:
            value = percentile_rank(point.pvalues or (), statistic.percentile)
            return value if value is not None else _bucket_average(point)
        # avg and current read the same per bucket
        return point.sum / point.count
