"""
Rollup Engine
=============

Recursive ring-buffer insertion and cross-span aging for metric records.

Each span is a ring of at most `samples` buckets ending at `span.end`.
Inserting a point may age the oldest buckets out of a span; aged buckets
that carry data are merged into the next coarser span at the time they
started, so history degrades in resolution instead of disappearing. During
queries the same routine runs in reconciliation mode and pulls every finer
bucket up into the span being read.

Design Principles:
------------------
1. **Forward-only**: propagation walks span indices upward, never back
2. **Lazy**: rollups happen on the next emit or read, never on a timer
3. **Bounded**: `len(points) <= samples` holds after every call

Complexity:
-----------
| Operation    | Time          | Notes                                 |
|--------------|---------------|---------------------------------------|
| add_value    | O(S * B)      | S = spans, B = samples per span       |
| update_span  | O(B)          | ring growth is bounded by samples     |
| set_point    | O(R)          | R = percentile reservoir size         |
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Union

from metricmesh.core import constants as C
from metricmesh.core.types import MetricKey, MetricRecord, Point, Span, SpanSet
from metricmesh.observability.logging import MetricLog

Number = Union[int, float]


def align_time(span: Span, timestamp: Number) -> Number:
    """Round `timestamp` up to the span's interval grid. May be in the future."""
    interval = span.interval
    if isinstance(timestamp, int) and isinstance(interval, int):
        return -(-timestamp // interval) * interval
    return math.ceil(timestamp / interval) * interval


def round_sum(n: Number) -> Number:
    """Round to 16 significant digits to stop floating drift accumulating."""
    if isinstance(n, int) or not math.isfinite(n):
        return n
    whole = len(str(int(abs(n))))
    return round(n, max(0, C.SUM_PRECISION_DIGITS - whole))


def _floor_div(a: Number, b: Number) -> int:
    if isinstance(a, int) and isinstance(b, int):
        return a // b
    return math.floor(a / b)


class RollupEngine:
    """
    Mutates record spans in place.

    Example:
        >>> engine = RollupEngine()
        >>> record = engine.init_record(key, DEFAULT_SPANS, now)
        >>> engine.add_value(record.spans, Point(count=1, sum=10), now)
    """

    __slots__ = ("_p_resolution", "_log")

    def __init__(
        self,
        p_resolution: int = C.DEFAULT_P_RESOLUTION,
        log: Optional[MetricLog] = None,
    ) -> None:
        self._p_resolution = p_resolution
        self._log = log or MetricLog()

    @property
    def p_resolution(self) -> int:
        return self._p_resolution

    # -------------------------------------------------------------------------
    # RECORD CONSTRUCTION
    # -------------------------------------------------------------------------

    def init_record(
        self,
        key: MetricKey,
        spans: SpanSet,
        timestamp: Number,
        source: Optional[str] = None,
    ) -> MetricRecord:
        """Fresh record whose span ends sit on the bucket boundary after `timestamp`."""
        record_spans = []
        for definition in spans:
            span = Span(period=definition.period, samples=definition.samples, end=0)
            span.end = align_time(span, timestamp + 1)
            record_spans.append(span)
        return MetricRecord(
            owner=key.owner,
            namespace=key.namespace,
            metric=key.metric,
            dimensions=key.dimensions,
            spans=record_spans,
            source=source,
        )

    # -------------------------------------------------------------------------
    # INSERTION AND AGING
    # -------------------------------------------------------------------------

    def add_value(
        self,
        spans: Sequence[Span],
        point: Point,
        timestamp: Number,
        span_index: int = 0,
        query_index: int = -1,
    ) -> None:
        """
        Merge `point` into `spans[span_index]` as of `timestamp`.

        With `query_index >= 0` this reconciles instead: every bucket of every
        span below `query_index` is pushed up into the coarser spans.

        Args:
            spans: Record spans, finest first. Mutated in place.
            point: Observation aggregate. A set `point.timestamp` places the
                point at that time rather than at `timestamp`.
            timestamp: Current time in epoch seconds.
            span_index: Span to insert into.
            query_index: Reconciliation boundary, or -1 for the emit path.
        """
        span = spans[span_index]
        interval = span.interval
        points = span.points
        last = len(spans) - 1

        if len(points) > span.samples:
            self._log.error(
                "Span holds more points than samples",
                span=span_index, points=len(points), samples=span.samples,
            )
            del points[: len(points) - span.samples]

        start = span.end - len(points) * interval
        # A point tagged ahead of now (buffer deadline) ages the ring as of its tag
        effective = timestamp if point.timestamp is None else max(timestamp, point.timestamp)
        shift = 0
        if points:
            if span_index < query_index and span_index < last:
                shift = len(points)
            elif effective >= start:
                shift = _floor_div(effective - start, interval) - span.samples
                if point.count and effective >= span.end:
                    shift += 1
                shift = max(0, min(shift, len(points)))

        if shift:
            aged = points[:shift]
            del points[:shift]
            when = start
            for old in aged:
                if old.count and span_index < last:
                    old.timestamp = when
                    self.add_value(spans, old, timestamp, span_index + 1, query_index)
                when += interval

        if 0 <= query_index and span_index < query_index:
            self.add_value(spans, point, timestamp, span_index + 1, query_index)
            return

        if span_index < last:
            if point.timestamp is not None:
                # Send old points straight to the first span wide enough to hold them
                elapsed = timestamp - point.timestamp
                target = next(
                    (i for i, s in enumerate(spans) if s.period >= elapsed), -1
                )
                if target > span_index:
                    self.add_value(spans, point, timestamp, span_index + 1, query_index)
                    return
            self.add_value(spans, Point(), timestamp, span_index + 1, query_index)

        index = self.update_span(span, point, timestamp)
        if point.count and index >= 0:
            self.set_point(span, index, point)

    def update_span(self, span: Span, point: Point, timestamp: Number) -> int:
        """
        Grow the ring to cover the point's time and return its bucket index.

        Returns -1 when the point is too old for this span or carries no
        data; nothing is mutated for a stale point.
        """
        when = point.timestamp if point.timestamp is not None else timestamp
        interval = span.interval
        points = span.points

        if not points:
            aligned = align_time(span, when + 1)
            if not point.count:
                span.end = max(span.end, aligned)
                return -1
            if aligned >= span.end:
                span.end = aligned
                points.append(Point())
                return 0

        if when < span.end - span.period:
            self._log.trace(
                "Drop stale point",
                when=when, end=span.end, period=span.period,
            )
            return -1

        start = span.end - len(points) * interval
        while when < start:
            points.insert(0, Point())
            start -= interval

        while when >= span.end and len(points) < span.samples:
            points.append(Point())
            span.end += interval

        if not point.count:
            return -1

        index = _floor_div(when - start, interval)
        if len(points) > span.samples:
            drop = len(points) - span.samples
            del points[:drop]
            index -= drop

        if index < 0 or index >= len(points):
            self._log.error(
                "Bucket index out of range",
                index=index, points=len(points), when=when, end=span.end,
            )
            index = len(points) - 1
        return index

    def set_point(self, span: Span, index: int, add: Point) -> None:
        """Merge `add` into bucket `index`."""
        point = span.points[index]
        if add.count:
            value = round_sum(add.sum / add.count)
            point.min = value if point.min is None else min(point.min, value)
            point.max = value if point.max is None else max(point.max, value)
            if self._p_resolution > 0:
                reservoir = list(point.pvalues or [])
                if add.pvalues:
                    reservoir.extend(add.pvalues)
                else:
                    reservoir.append(value)
                point.pvalues = reservoir[-self._p_resolution:]
        point.sum = round_sum(point.sum + add.sum)
        point.count += add.count

    def reconcile(self, record: MetricRecord, timestamp: Number, span_index: int) -> None:
        """Pull all finer data into `span_index` as of `timestamp`. In memory only."""
        self.add_value(record.spans, Point(), timestamp, 0, span_index)
