"""
Metrics Database Layer: Multi-Resolution Rollup Metrics over a KV Store

Public handle for emitting and querying custom metrics:
- emit: merge an observation into every requested dimension set
- query: reconcile a stored record and compute one statistic
- query_metrics / get_metric_list: prefix reads across an owner's records
- upgrade: resample stored records onto the configured spans
- flush: write through everything buffered in this process

Design Principles:
    - Validation raises before any I/O
    - Store failures other than CAS collisions propagate as StorageError
    - All times are epoch seconds; the clock is injectable

Example:
    db = MetricsDatabaseLayer(MetricsConfig.create(p_resolution=100))
    await db.emit("myapp/launcher", "Launches", 1, [{"Rocket": "SaturnV"}])
    result = await db.query("myapp/launcher", "Launches", {"Rocket": "SaturnV"}, 3600, "sum")
"""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from metricmesh.core import constants as C
from metricmesh.core.config import BufferPolicy, MetricsConfig
from metricmesh.core.dimensions import decode_dimensions, encode_dimensions
from metricmesh.core.errors import QueryError, StorageError, ValidationError
from metricmesh.core.types import (
    Err,
    MetricKey,
    MetricList,
    MetricRecord,
    Ok,
    Point,
    QueryResult,
    Result,
    Statistic,
    is_finite_number,
)
from metricmesh.observability.logging import MetricLog, StructuredLogger
from metricmesh.pipeline.buffer import MetricBuffer
from metricmesh.pipeline.writer import MetricWriter
from metricmesh.query.engine import QueryEngine
from metricmesh.query.listing import group_metric_list
from metricmesh.registry import InstanceRegistry
from metricmesh.rollup.engine import RollupEngine
from metricmesh.rollup.upgrade import UpgradeMigrator
from metricmesh.storage import StorageConfig, create_store
from metricmesh.storage.protocols import MetricStoreProtocol

Number = Union[int, float]
DimensionsList = Optional[Sequence[Mapping[str, Any]]]


class MetricsDatabaseLayer:
    """
    Metrics handle bound to one store and one configuration.

    Architecture:
        - RollupEngine: span rings and cross-span aging
        - MetricWriter: CAS read-merge-write with backoff
        - MetricBuffer: optional process-local coalescing of emits
        - QueryEngine: reconciliation and statistics

    Example:
        db = MetricsDatabaseLayer()

        await db.emit("app", "Requests", 1, timestamp=now)
        result = await db.query("app", "Requests", {}, 300, "sum", accumulate=True)
        result.value
    """

    __slots__ = (
        "_config",
        "_store",
        "_registry",
        "_clock",
        "_log",
        "_engine",
        "_migrator",
        "_writer",
        "_buffer",
        "_query",
    )

    def __init__(
        self,
        config: Optional[MetricsConfig] = None,
        store: Optional[MetricStoreProtocol] = None,
        registry: Optional[InstanceRegistry] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Initialize the metrics layer.

        Args:
            config: Metrics configuration (defaults apply when omitted)
            store: Record store (in-memory under `config.prefix` when omitted)
            registry: Registry this handle joins while it holds buffered values
            clock: Epoch-seconds clock used when a call gives no timestamp
            logger: Structured logger behind the core's log setting
        """
        self._config = config or MetricsConfig()
        self._store = store or create_store(StorageConfig(key_prefix=self._config.prefix))
        self._registry = registry
        self._clock = clock
        self._log = MetricLog(self._config.log, logger)

        self._engine = RollupEngine(self._config.p_resolution, self._log)
        self._migrator = UpgradeMigrator(self._engine, self._config.spans)
        self._writer = MetricWriter(
            self._store,
            self._engine,
            self._migrator,
            self._config.retry,
            self._log,
            self._config.consistent,
        )
        self._buffer = MetricBuffer(
            self._writer,
            self._store,
            self._engine,
            self._config.spans,
            self._config.consistent,
        )
        self._query = QueryEngine(self._engine)

    @classmethod
    async def create(
        cls,
        config: Optional[MetricsConfig] = None,
        storage: Optional[StorageConfig] = None,
        registry: Optional[InstanceRegistry] = None,
    ) -> Result[MetricsDatabaseLayer, StorageError]:
        """Build the configured store, connect it and wrap it in a handle."""
        config = config or MetricsConfig()
        store = create_store(storage or StorageConfig(key_prefix=config.prefix))
        connected = await store.connect()
        if connected.is_err():
            return Err(connected.error)
        return Ok(cls(config, store, registry))

    @property
    def config(self) -> MetricsConfig:
        return self._config

    @property
    def store(self) -> MetricStoreProtocol:
        return self._store

    @property
    def buffer(self) -> MetricBuffer:
        return self._buffer

    @property
    def writer(self) -> MetricWriter:
        return self._writer

    async def close(self) -> None:
        """Flush buffered values, then release the store."""
        await self.flush()
        await self._store.close()

    # -------------------------------------------------------------------------
    # EMIT
    # -------------------------------------------------------------------------

    async def emit(
        self,
        namespace: str,
        metric: str,
        value: Any,
        dimensions_list: DimensionsList = None,
        *,
        timestamp: Optional[Number] = None,
        owner: Optional[str] = None,
        ttl: Optional[int] = None,
        buffer: Any = None,
        upgrade: bool = False,
        log: bool = False,
    ) -> MetricRecord:
        """
        Record one observation of `value` under each dimension set.

        Args:
            namespace: Metric namespace, e.g. "myapp/launcher"
            metric: Metric name
            value: Finite number (numeric strings are accepted)
            dimensions_list: Dimension maps; None or empty means one
                undimensioned emit
            timestamp: Observation time in epoch seconds (default: now)
            owner: Owner partition (default: config.owner)
            ttl: Record lifetime in seconds (default: coarsest span period)
            buffer: BufferPolicy or mapping overriding config.buffer
            upgrade: Resample the stored record onto config.spans first
            log: Log this call at info level

        Returns:
            The record for the last dimension set: persisted, or the local
            buffered view when buffering did not trigger a write.

        Raises:
            ValidationError: Bad names, value, dimensions or options.
            StorageError: Fatal store failure.
        """
        self._check_name("namespace", namespace)
        self._check_name("metric", metric)
        number = self._check_value(value)
        encoded = [encode_dimensions(d) for d in self._dimensions_list(dimensions_list)]
        if ttl is not None and (isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0):
            raise ValidationError.invalid_option("ttl", ttl, "must be a positive integer")
        policy = BufferPolicy.coerce(buffer) or self._config.buffer

        owner = owner or self._config.owner
        now = self._now(timestamp)
        ttl = ttl or self._config.effective_ttl
        source = self._config.source

        record: Optional[MetricRecord] = None
        for dimensions in encoded:
            key = MetricKey(owner, namespace, metric, dimensions)
            point = Point(count=1, sum=number)
            if policy is not None and policy.is_active:
                record = await self._buffer.add(
                    key, point, now, policy, ttl=ttl, source=source, upgrade=upgrade, log=log,
                )
                if self._registry is not None:
                    self._registry.save({"key": str(key)}, self)
            else:
                record = await self._writer.write(
                    key, point, now, ttl=ttl, source=source, upgrade=upgrade, log=log,
                )
        self._log.trace(f"Emit metric {namespace}/{metric}", force=log, value=number, timestamp=now)
        return record

    # -------------------------------------------------------------------------
    # QUERY
    # -------------------------------------------------------------------------

    async def query(
        self,
        namespace: str,
        metric: str,
        dimensions: Optional[Mapping[str, Any]],
        period: Number,
        statistic: Union[str, Statistic],
        *,
        accumulate: bool = False,
        start: Optional[Number] = None,
        timestamp: Optional[Number] = None,
        owner: Optional[str] = None,
        id: Optional[str] = None,
        log: bool = False,
    ) -> QueryResult:
        """
        Compute `statistic` over the last `period` seconds (or from `start`).

        Buffered values for this key are flushed first. A missing record
        yields an empty result with zero samples.

        Raises:
            QueryError: Bad period or statistic.
            ValidationError: Bad names or dimensions.
            StorageError: Fatal store failure.
        """
        self._check_name("namespace", namespace)
        self._check_name("metric", metric)
        period = self._check_period(period)
        stat = self._check_statistic(statistic)
        encoded = encode_dimensions(dimensions)
        if start is not None and not is_finite_number(start):
            raise ValidationError.invalid_option("start", start, "must be epoch seconds")

        owner = owner or self._config.owner
        now = self._now(timestamp)
        period = min(period, self._config.spans.coarsest.period)
        key = MetricKey(owner, namespace, metric, encoded)

        await self._buffer.flush_key(key, now)

        fetched = await self._store.get(key, self._config.consistent)
        if fetched.is_err():
            raise fetched.error
        record = fetched.value
        if record is None:
            return QueryResult(
                namespace=namespace,
                metric=metric,
                owner=owner,
                dimensions=decode_dimensions(encoded),
                period=period,
                samples=0,
                points=[],
                id=id,
            )

        result = self._query.process_metric(
            record, period, stat, now, accumulate=accumulate, start=start, id=id,
        )
        self._log.trace(
            f"Query metrics {namespace}, {metric}",
            force=log,
            dimensions=encoded, period=period, statistic=str(stat), points=len(result.points),
        )
        return result

    async def query_metrics(
        self,
        namespace: str,
        metric: Optional[str],
        period: Number,
        statistic: Union[str, Statistic],
        *,
        limit: int = C.METRIC_LIST_LIMIT,
        owner: Optional[str] = None,
        timestamp: Optional[Number] = None,
        log: bool = False,
    ) -> list[QueryResult]:
        """
        Accumulated `statistic` for every record whose namespace (and
        metric) start with the given prefixes, at most `limit` records.
        """
        self._check_name("namespace", namespace)
        if metric is not None:
            self._check_name("metric", metric)
        period = min(self._check_period(period), self._config.spans.coarsest.period)
        stat = self._check_statistic(statistic)

        owner = owner or self._config.owner
        now = self._now(timestamp)
        await self._buffer.flush(now)

        records: list[MetricRecord] = []
        cursor: Optional[str] = None
        while len(records) < limit:
            page = await self._store.query(
                owner, namespace, metric, limit=limit - len(records), cursor=cursor,
            )
            if page.is_err():
                raise page.error
            records.extend(page.value.items)
            self._log.trace(f"Find metrics {namespace}, {metric}", force=log, items=len(page.value.items))
            cursor = page.value.cursor
            if cursor is None:
                break

        return [
            self._query.process_metric(record, period, stat, now, accumulate=True)
            for record in records[:limit]
        ]

    async def get_metric_list(
        self,
        namespace: Optional[str] = None,
        metric: Optional[str] = None,
        *,
        owner: Optional[str] = None,
        limit: int = C.METRIC_LIST_LIMIT,
        log: bool = False,
    ) -> MetricList:
        """
        Namespaces under `namespace` (a prefix); the metrics of `namespace`
        when it names one exactly; the dimension sets of `metric` likewise.
        """
        if namespace is not None:
            self._check_name("namespace", namespace)
        if metric is not None:
            self._check_name("metric", metric)
        owner = owner or self._config.owner

        keys: list[MetricKey] = []
        cursor: Optional[str] = None
        while len(keys) < limit:
            page = await self._store.list_keys(
                owner, namespace, metric, limit=limit - len(keys), cursor=cursor,
            )
            if page.is_err():
                raise page.error
            keys.extend(page.value.items)
            self._log.trace(
                f"Find metrics namespace: {namespace}, metric: {metric}",
                force=log, items=len(page.value.items),
            )
            cursor = page.value.cursor
            if cursor is None:
                break
        return group_metric_list(keys, namespace, metric)

    # -------------------------------------------------------------------------
    # MAINTENANCE
    # -------------------------------------------------------------------------

    async def upgrade(
        self,
        namespace: str,
        metric: str,
        dimensions_list: DimensionsList = None,
        *,
        owner: Optional[str] = None,
        timestamp: Optional[Number] = None,
        log: bool = False,
    ) -> Optional[MetricRecord]:
        """
        Resample stored records onto config.spans.

        Returns the last upgraded record, or None if none of the requested
        records exist.
        """
        self._check_name("namespace", namespace)
        self._check_name("metric", metric)
        encoded = [encode_dimensions(d) for d in self._dimensions_list(dimensions_list)]
        owner = owner or self._config.owner
        now = self._now(timestamp)

        result: Optional[MetricRecord] = None
        for dimensions in encoded:
            key = MetricKey(owner, namespace, metric, dimensions)
            record = await self._writer.write(key, None, now, upgrade=True, log=log)
            if record is not None:
                result = record
        return result

    async def flush(self, timestamp: Optional[Number] = None) -> list[MetricRecord]:
        """Write through every buffered entry of this handle."""
        return await self._buffer.flush(self._now(timestamp))

    # -------------------------------------------------------------------------
    # VALIDATION
    # -------------------------------------------------------------------------

    def _now(self, timestamp: Optional[Number]) -> int:
        if timestamp is None:
            return math.floor(self._clock())
        if not is_finite_number(timestamp):
            raise ValidationError.invalid_option("timestamp", timestamp, "must be epoch seconds")
        return math.floor(timestamp)

    @staticmethod
    def _check_name(field: str, name: Any) -> None:
        if not isinstance(name, str) or not name:
            raise ValidationError.invalid_argument(field, name, f"{field} must be a non-empty string")
        if C.KEY_SEPARATOR in name:
            raise ValidationError.invalid_argument(
                field, name, f"{field} must not contain {C.KEY_SEPARATOR!r}"
            )

    @staticmethod
    def _check_value(value: Any) -> Number:
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError:
                raise ValidationError.invalid_argument("value", value, "not a number") from None
        if not is_finite_number(value):
            raise ValidationError.invalid_argument("value", value, "value must be a finite number")
        return value

    @staticmethod
    def _check_period(period: Any) -> Number:
        if not is_finite_number(period) or period <= 0:
            raise QueryError.invalid_period(period)
        return period

    @staticmethod
    def _check_statistic(statistic: Union[str, Statistic]) -> Statistic:
        parsed = Statistic.parse(statistic)
        if parsed.is_err():
            raise QueryError.invalid_statistic(statistic, parsed.error)
        return parsed.value

    @staticmethod
    def _dimensions_list(dimensions_list: DimensionsList) -> Sequence[Mapping[str, Any]]:
        if dimensions_list is None:
            return [{}]
        if isinstance(dimensions_list, Mapping) or not isinstance(dimensions_list, (list, tuple)):
            raise ValidationError.invalid_argument(
                "dimensions_list", dimensions_list, "dimensions must be a list of mappings"
            )
        return dimensions_list or [{}]
