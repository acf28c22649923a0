"""
Metric Buffer: Process-Local Write Coalescing

Accumulates observations per metric key and hands them to the writer as a
single aggregate point once a policy threshold trips:

    force  ->  sum >= policy.sum  ->  count >= policy.count  ->  now >= deadline

The flushed point is tagged with the entry's nominal deadline rather than
the triggering call's timestamp, which bounds how far a buffered value can
drift from the bucket it lands in.

Buffered tallies live only in this process. Anything not flushed before
exit is lost; `flush()` runs before queries and on shutdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from metricmesh.core.config import BufferPolicy
from metricmesh.core.types import MetricKey, MetricRecord, Point, SpanSet
from metricmesh.pipeline.writer import MetricWriter
from metricmesh.rollup.engine import RollupEngine
from metricmesh.storage.protocols import MetricStoreProtocol

logger = logging.getLogger(__name__)

Number = Union[int, float]


@dataclass(slots=True)
class BufferEntry:
    """Pending tallies for one metric key plus the caller's view of its record."""
    key: MetricKey
    record: MetricRecord
    deadline: Number
    elapsed: Number
    count: int = 0
    sum: float = 0
    ttl: Optional[int] = None
    source: Optional[str] = None
    upgrade: bool = False

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def take(self, timestamp: Number) -> Point:
        """Drain the tallies into a point tagged `timestamp`."""
        point = Point(count=self.count, sum=self.sum, timestamp=timestamp)
        self.count = 0
        self.sum = 0
        return point


class MetricBuffer:
    """
    Per-handle buffer of pending emits, keyed by MetricKey.

    Usage:
        buffer = MetricBuffer(writer, store, engine, spans)
        record = await buffer.add(key, Point(count=1, sum=5), now, BufferPolicy(count=10))
        await buffer.flush(now)
    """

    __slots__ = ("_writer", "_store", "_engine", "_spans", "_consistent", "_entries")

    def __init__(
        self,
        writer: MetricWriter,
        store: MetricStoreProtocol,
        engine: RollupEngine,
        spans: SpanSet,
        consistent: bool = False,
    ) -> None:
        self._writer = writer
        self._store = store
        self._engine = engine
        self._spans = spans
        self._consistent = consistent
        self._entries: dict[MetricKey, BufferEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: MetricKey) -> bool:
        return key in self._entries

    def pending(self, key: MetricKey) -> Optional[BufferEntry]:
        return self._entries.get(key)

    async def add(
        self,
        key: MetricKey,
        point: Point,
        timestamp: Number,
        policy: BufferPolicy,
        *,
        ttl: Optional[int] = None,
        source: Optional[str] = None,
        upgrade: bool = False,
        log: bool = False,
    ) -> MetricRecord:
        """
        Buffer `point`, writing through when a threshold trips.

        Returns the persisted record after a write, otherwise the local
        view: the last persisted record plus this process's buffered points.

        Raises:
            StorageError: If the initial read or a triggered write fails fatally.
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = await self._load(key, timestamp, policy)
        entry.ttl = ttl
        entry.source = source
        # Held until the next write
        entry.upgrade = entry.upgrade or upgrade

        entry.count += point.count
        entry.sum += point.sum

        if (
            policy.force
            or (policy.sum and entry.sum >= policy.sum)
            or (policy.count and entry.count >= policy.count)
            or timestamp >= entry.deadline
        ):
            record = await self._write(entry, entry.deadline, timestamp, log)
            if record is not None:
                entry.record = record
            entry.deadline = timestamp + entry.elapsed
            return entry.record

        self._engine.add_value(entry.record.spans, Point(count=point.count, sum=point.sum), timestamp)
        return entry.record

    async def flush_key(self, key: MetricKey, timestamp: Number) -> Optional[MetricRecord]:
        """Write and drop the entry for `key`. None if nothing was pending."""
        entry = self._entries.pop(key, None)
        if entry is None or entry.is_empty:
            return None
        return await self._write(entry, min(timestamp, entry.deadline), timestamp)

    async def flush(self, timestamp: Number) -> list[MetricRecord]:
        """
        Write every pending entry regardless of thresholds and clear the buffer.

        Entries are dropped before writing, so a failing write does not
        leave the buffer half-flushed on retry.
        """
        entries = list(self._entries.values())
        self._entries.clear()

        written: list[MetricRecord] = []
        for entry in entries:
            if entry.is_empty:
                continue
            record = await self._write(entry, min(timestamp, entry.deadline), timestamp)
            if record is not None:
                written.append(record)
        if entries:
            logger.debug(f"Flushed {len(written)} of {len(entries)} buffered metrics")
        return written

    async def _load(self, key: MetricKey, timestamp: Number, policy: BufferPolicy) -> BufferEntry:
        """First touch of a key: seed the local view from the store."""
        result = await self._store.get(key, self._consistent)
        if result.is_err():
            raise result.error
        record = result.value
        if record is None:
            record = self._engine.init_record(key, self._spans, timestamp)

        elapsed = policy.elapsed or self._spans.finest.interval
        entry = BufferEntry(key=key, record=record, deadline=timestamp + elapsed, elapsed=elapsed)
        # Another coroutine may have loaded the same key while we awaited
        return self._entries.setdefault(key, entry)

    async def _write(
        self,
        entry: BufferEntry,
        tag: Number,
        timestamp: Number,
        log: bool = False,
    ) -> Optional[MetricRecord]:
        point = entry.take(tag)
        upgrade, entry.upgrade = entry.upgrade, False
        return await self._writer.write(
            entry.key,
            point,
            timestamp,
            ttl=entry.ttl,
            source=entry.source,
            upgrade=upgrade,
            log=log,
        )
