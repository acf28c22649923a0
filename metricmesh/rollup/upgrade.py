"""
Span-set migration for stored records.

A record written under one span configuration is resampled into another
by replaying its buckets, oldest first, through the rollup engine. Buckets
that fall outside the new coarsest span's window are dropped by the
engine's staleness rule, so migration is best-effort, not lossless.
"""

from __future__ import annotations

from typing import Union

from metricmesh.core.types import MetricRecord, Point, SpanSet
from metricmesh.rollup.engine import RollupEngine


class UpgradeMigrator:
    """Resamples records into a target SpanSet."""

    __slots__ = ("_engine", "_spans")

    def __init__(self, engine: RollupEngine, spans: SpanSet) -> None:
        self._engine = engine
        self._spans = spans

    @property
    def spans(self) -> SpanSet:
        return self._spans

    def is_required(self, record: MetricRecord) -> bool:
        return not self._spans.matches(record.spans)

    def upgrade(self, record: MetricRecord) -> MetricRecord:
        """
        Return `record` unchanged when it already uses the target spans,
        otherwise a new record carrying the replayed history.

        The new record keeps the old seq so it can replace the old one with
        a conditional write.
        """
        if not self.is_required(record):
            return record

        replay: list[tuple[Union[int, float], Point]] = []
        for span in record.spans:
            interval = span.interval
            when = span.end - len(span.points) * interval
            for point in span.points:
                if point.count:
                    replay.append((when, point))
                when += interval
        replay.sort(key=lambda item: item[0])

        if replay:
            origin = replay[0][0]
        else:
            origin = min(span.end - span.period for span in record.spans)

        upgraded = self._engine.init_record(record.key, self._spans, origin, record.source)
        upgraded.seq = record.seq
        upgraded.expires = record.expires

        for when, point in replay:
            moved = Point(
                count=point.count,
                sum=point.sum,
                min=point.min,
                max=point.max,
                pvalues=list(point.pvalues) if point.pvalues else None,
            )
            self._engine.add_value(upgraded.spans, moved, when)
        return upgraded
