"""
Metric Writer: Optimistic-Concurrency Read-Merge-Write

Orchestrates the persisted write path for one metric key:
1. Read the record (or initialize one from the configured spans)
2. Optionally resample it onto the configured spans
3. Merge the point through the rollup engine
4. Conditionally write it back, guarded by the seq just read

Collisions are retried with jittered exponential backoff. When the retry
budget runs out the in-memory record is returned without raising, so a
return value never proves the write landed.
"""

from __future__ import annotations

from typing import Optional, Union

from metricmesh.core import constants as C
from metricmesh.core.errors import ReliabilityError, StorageError
from metricmesh.core.types import MetricKey, MetricRecord, Point
from metricmesh.observability.logging import MetricLog
from metricmesh.reliability.retry import RetryPolicy, RetryStats
from metricmesh.rollup.engine import RollupEngine
from metricmesh.rollup.upgrade import UpgradeMigrator
from metricmesh.storage.protocols import MetricStoreProtocol

Number = Union[int, float]


def next_seq(seq: Optional[int]) -> int:
    """Sequence number to write after `seq`; wraps past the safe-integer bound."""
    if seq is None:
        return 0
    return 0 if seq >= C.MAX_SEQ else seq + 1


class MetricWriter:
    """
    CAS write loop over a MetricStoreProtocol.

    Usage:
        writer = MetricWriter(store, engine, migrator, RetryPolicy.default())
        record = await writer.write(key, Point(count=1, sum=10), now, ttl=3600)
    """

    __slots__ = ("_store", "_engine", "_migrator", "_retry", "_log", "_consistent", "_stats")

    def __init__(
        self,
        store: MetricStoreProtocol,
        engine: RollupEngine,
        migrator: UpgradeMigrator,
        retry: RetryPolicy,
        log: Optional[MetricLog] = None,
        consistent: bool = False,
    ) -> None:
        self._store = store
        self._engine = engine
        self._migrator = migrator
        self._retry = retry
        self._log = log or MetricLog()
        self._consistent = consistent
        self._stats = RetryStats()

    @property
    def stats(self) -> RetryStats:
        """Cumulative retry statistics across every write of this writer."""
        return self._stats

    async def write(
        self,
        key: MetricKey,
        point: Optional[Point],
        timestamp: Number,
        *,
        ttl: Optional[int] = None,
        source: Optional[str] = None,
        upgrade: bool = False,
        log: bool = False,
    ) -> Optional[MetricRecord]:
        """
        Merge `point` into the stored record for `key`.

        With `point=None` nothing is merged; combined with `upgrade=True`
        this rewrites an existing record onto the configured spans and
        returns None when there is no record.

        Raises:
            StorageError: Any store failure other than a CAS collision or
                throttling.
        """
        record: Optional[MetricRecord] = None

        for attempt in range(self._retry.max_retries):
            self._stats.total_attempts += 1

            result = await self._store.get(key, self._consistent)
            if result.is_err():
                if result.error.is_throughput_exceeded:
                    await self._throttled(key, attempt, result.error)
                    continue
                raise result.error

            record = result.value
            expected_seq = record.seq if record is not None else None
            if record is None:
                if point is None:
                    return None
                record = self._engine.init_record(key, self._migrator.spans, timestamp, source)
            elif upgrade:
                record = self._migrator.upgrade(record)

            if point is not None:
                self._engine.add_value(record.spans, point, timestamp)
                if source:
                    record.source = source
                if ttl:
                    record.expires = int(timestamp + ttl)

            record.seq = next_seq(expected_seq)
            put = await self._store.put(record, expected_seq)
            if put.is_ok():
                self._log.trace(
                    "Metric written",
                    force=log,
                    key=str(key), seq=record.seq, attempts=attempt + 1,
                )
                return record

            record.seq = expected_seq
            error = put.error
            if error.is_condition_failed:
                self._stats.conflicts += 1
                self._stats.last_error = error.message
                self._log.trace(
                    f"Retry {attempt + 1} metric update",
                    force=log,
                    key=str(key), expected_seq=expected_seq,
                )
                await self._retry.sleep(attempt, self._stats)
                continue
            if error.is_throughput_exceeded:
                await self._throttled(key, attempt, error)
                continue
            raise error

        exhausted = ReliabilityError.retry_exhausted(
            self._retry.max_retries, self._stats.last_error
        )
        self._log.error("Metric update has too many retries", key=str(key), error=exhausted.to_dict())
        return record

    async def _throttled(self, key: MetricKey, attempt: int, error: StorageError) -> None:
        self._stats.throttled += 1
        self._stats.last_error = error.message
        self._log.info("Store throughput exceeded", key=str(key), error=error.message)
        await self._retry.sleep(attempt, self._stats)
