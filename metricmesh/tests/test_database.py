"""
Comprehensive Test Suite for MetricsDatabaseLayer

Tests for:
- emit: validation, dimension fan-out, owners, TTL, buffering
- query: statistics end to end, missing records, period clamping
- query_metrics / get_metric_list: prefix reads
- upgrade, flush and close

Run: python -m pytest metricmesh/tests/test_database.py -v
"""

from __future__ import annotations

import pytest

from metricmesh.core.config import MetricsConfig
from metricmesh.core.errors import QueryError, ValidationError
from metricmesh.core.types import MetricKey, SpanSet
from metricmesh.database import MetricsDatabaseLayer
from metricmesh.registry import InstanceRegistry
from metricmesh.reliability.retry import RetryPolicy
from metricmesh.storage import InMemoryMetricStore
from metricmesh.tests.conftest import T0

NS = "myapp/launcher"


# =============================================================================
# EMIT
# =============================================================================
class TestEmit:
    """Emit path and argument validation."""

    @pytest.mark.asyncio
    async def test_emit_creates_record(self, db: MetricsDatabaseLayer, store: InMemoryMetricStore) -> None:
        record = await db.emit(NS, "Launches", 5)

        assert record.seq == 0
        assert record.expires == T0 + 600
        assert record.total_count() == 1
        stored = (await store.get(MetricKey("default", NS, "Launches"))).unwrap()
        assert stored.spans[0].points[0].sum == 5

    @pytest.mark.asyncio
    async def test_unaligned_emit_fills_one_bucket(self, db: MetricsDatabaseLayer) -> None:
        record = await db.emit(NS, "Launches", 10, timestamp=T0 + 5)

        span = record.spans[0]
        assert span.end == T0 + 10
        assert [(p.count, p.sum) for p in span.points] == [(1, 10)]

    @pytest.mark.asyncio
    async def test_numeric_string(self, db: MetricsDatabaseLayer) -> None:
        record = await db.emit(NS, "Launches", "2.5")
        assert record.spans[0].points[0].sum == 2.5

    @pytest.mark.asyncio
    async def test_fans_out_dimensions(self, db: MetricsDatabaseLayer, store: InMemoryMetricStore) -> None:
        record = await db.emit(NS, "Launches", 1, [{}, {"Rocket": "SaturnV"}, {"Rocket": "Falcon"}])

        assert record.dimensions == "Rocket=Falcon"
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_empty_dimension_list(self, db: MetricsDatabaseLayer) -> None:
        record = await db.emit(NS, "Launches", 1, [])
        assert record.dimensions == ""

    @pytest.mark.asyncio
    async def test_owner_partition(self, db: MetricsDatabaseLayer) -> None:
        await db.emit(NS, "Launches", 3, owner="acct-1")

        other = await db.query(NS, "Launches", {}, 60, "sum", accumulate=True)
        mine = await db.query(NS, "Launches", {}, 60, "sum", accumulate=True, owner="acct-1")

        assert other.samples == 0
        assert mine.value == 3
        assert mine.owner == "acct-1"

    @pytest.mark.asyncio
    async def test_explicit_ttl_and_source(self, store: InMemoryMetricStore, spans: SpanSet) -> None:
        config = MetricsConfig(spans=spans, source="worker-7", retry=RetryPolicy.immediate())
        db = MetricsDatabaseLayer(config, store, clock=lambda: T0)

        record = await db.emit(NS, "Launches", 1, ttl=30)

        assert record.expires == T0 + 30
        assert record.source == "worker-7"

    @pytest.mark.parametrize("namespace,metric,value", [
        ("", "Launches", 1),
        ("a#b", "Launches", 1),
        (NS, None, 1),
        (NS, "Launches", "abc"),
        (NS, "Launches", float("nan")),
        (NS, "Launches", float("inf")),
        (NS, "Launches", None),
        (NS, "Launches", True),
    ])
    @pytest.mark.asyncio
    async def test_rejects_bad_arguments(
        self, db: MetricsDatabaseLayer, store: InMemoryMetricStore, namespace, metric, value,
    ) -> None:
        with pytest.raises(ValidationError):
            await db.emit(namespace, metric, value)
        assert await store.count() == 0

    @pytest.mark.parametrize("options", [
        {"dimensions_list": {"Rocket": "SaturnV"}},
        {"dimensions_list": [{"a=b": 1}]},
        {"ttl": -1},
        {"ttl": 1.5},
        {"buffer": {"bogus": 1}},
        {"timestamp": "yesterday"},
    ])
    @pytest.mark.asyncio
    async def test_rejects_bad_options(self, db: MetricsDatabaseLayer, store: InMemoryMetricStore, options) -> None:
        with pytest.raises(ValidationError):
            await db.emit(NS, "Launches", 1, **options)
        assert await store.count() == 0


# =============================================================================
# QUERY
# =============================================================================
class TestQuery:
    """Query path through the facade."""

    async def emit_series(self, db: MetricsDatabaseLayer) -> None:
        for i, value in enumerate([1, 2, 3, 4]):
            await db.emit(NS, "Launches", value, [{"Rocket": "SaturnV"}], timestamp=T0 + i * 10)

    @pytest.mark.parametrize("statistic,value", [
        ("sum", 10), ("avg", 2.5), ("min", 1), ("max", 4), ("count", 4), ("current", 4),
    ])
    @pytest.mark.asyncio
    async def test_accumulated(self, db: MetricsDatabaseLayer, statistic: str, value: float) -> None:
        await self.emit_series(db)
        result = await db.query(
            NS, "Launches", {"Rocket": "SaturnV"}, 60, statistic, accumulate=True, timestamp=T0 + 35,
        )
        assert result.value == value
        assert result.dimensions == {"Rocket": "SaturnV"}

    @pytest.mark.asyncio
    async def test_series(self, db: MetricsDatabaseLayer) -> None:
        await self.emit_series(db)
        result = await db.query(NS, "Launches", {"Rocket": "SaturnV"}, 60, "sum", timestamp=T0 + 35, id="q-7")
        assert [p.value for p in result.points] == [0, 0, 1, 2, 3, 4]
        assert result.id == "q-7"

    @pytest.mark.asyncio
    async def test_missing_record(self, db: MetricsDatabaseLayer) -> None:
        result = await db.query(NS, "Nothing", {"Rocket": "SaturnV"}, 60, "avg", id="q-1")
        assert result.samples == 0
        assert result.points == []
        assert result.value is None
        assert result.period == 60
        assert result.dimensions == {"Rocket": "SaturnV"}
        assert result.id == "q-1"

    @pytest.mark.asyncio
    async def test_period_clamped_to_coarsest(self, db: MetricsDatabaseLayer) -> None:
        await self.emit_series(db)
        result = await db.query(
            NS, "Launches", {"Rocket": "SaturnV"}, 86400 * 365, "sum", accumulate=True, timestamp=T0 + 35,
        )
        assert result.period == 600
        assert result.value == 10

    @pytest.mark.parametrize("period", [0, -60, float("nan"), "hour"])
    @pytest.mark.asyncio
    async def test_invalid_period(self, db: MetricsDatabaseLayer, period) -> None:
        with pytest.raises(QueryError):
            await db.query(NS, "Launches", {}, period, "avg")

    @pytest.mark.asyncio
    async def test_invalid_statistic(self, db: MetricsDatabaseLayer) -> None:
        with pytest.raises(QueryError):
            await db.query(NS, "Launches", {}, 60, "median")

    @pytest.mark.asyncio
    async def test_query_flushes_buffer(self, db: MetricsDatabaseLayer, store: InMemoryMetricStore) -> None:
        await db.emit(NS, "Launches", 3, buffer={"count": 100}, timestamp=T0)
        await db.emit(NS, "Launches", 4, buffer={"count": 100}, timestamp=T0)
        assert await store.count() == 0

        result = await db.query(NS, "Launches", {}, 60, "sum", accumulate=True, timestamp=T0 + 5)

        assert result.value == 7
        assert result.count == 2
        assert len(db.buffer) == 0

    @pytest.mark.asyncio
    async def test_default_spans_roll_into_hour(self, store: InMemoryMetricStore) -> None:
        db = MetricsDatabaseLayer(MetricsConfig(retry=RetryPolicy.immediate()), store, clock=lambda: T0)
        for i in range(4):
            await db.emit(NS, "Launches", 10, timestamp=T0 + i * 30)

        result = await db.query(NS, "Launches", {}, 3600, "sum", accumulate=True, timestamp=T0 + 90)

        assert result.value == 40
        assert result.count == 4

    @pytest.mark.asyncio
    async def test_buffered_invisible_to_other_handles(
        self, db: MetricsDatabaseLayer, config: MetricsConfig, store: InMemoryMetricStore,
    ) -> None:
        reader = MetricsDatabaseLayer(config, store, clock=lambda: T0)
        for _ in range(9):
            await db.emit(NS, "Launches", 1, buffer={"count": 10})

        assert (await reader.query(NS, "Launches", {}, 60, "count", accumulate=True)).samples == 0

        await db.flush()
        assert (await reader.query(NS, "Launches", {}, 60, "count", accumulate=True)).value == 9


# =============================================================================
# LISTINGS
# =============================================================================
class TestListings:
    """Prefix reads over an owner's records."""

    async def populate(self, db: MetricsDatabaseLayer) -> None:
        await db.emit("app", "A", 1, [{}, {"Rocket": "SaturnV"}])
        await db.emit("app", "B", 1)
        await db.emit("app2", "C", 1)

    @pytest.mark.asyncio
    async def test_namespaces(self, db: MetricsDatabaseLayer) -> None:
        await self.populate(db)
        listing = await db.get_metric_list()
        assert listing.namespaces == ["app", "app2"]
        assert listing.metrics is None
        assert listing.dimensions is None

    @pytest.mark.asyncio
    async def test_metrics_of_namespace(self, db: MetricsDatabaseLayer) -> None:
        await self.populate(db)
        listing = await db.get_metric_list("app")
        assert listing.metrics == ["A", "B"]
        assert listing.dimensions is None

    @pytest.mark.asyncio
    async def test_dimensions_of_metric(self, db: MetricsDatabaseLayer) -> None:
        await self.populate(db)
        listing = await db.get_metric_list("app", "A")
        assert listing.dimensions == [{}, {"Rocket": "SaturnV"}]

    @pytest.mark.asyncio
    async def test_unknown_namespace(self, db: MetricsDatabaseLayer) -> None:
        await self.populate(db)
        listing = await db.get_metric_list("zzz")
        assert listing.namespaces == []
        assert listing.metrics is None

    @pytest.mark.asyncio
    async def test_query_metrics(self, db: MetricsDatabaseLayer) -> None:
        await self.populate(db)

        results = await db.query_metrics("app", None, 60, "sum", timestamp=T0 + 5)

        assert [(r.namespace, r.metric) for r in results] == [
            ("app", "A"), ("app", "A"), ("app", "B"), ("app2", "C"),
        ]
        assert all(r.value == 1 for r in results)

    @pytest.mark.asyncio
    async def test_query_metrics_narrowed_and_limited(self, db: MetricsDatabaseLayer) -> None:
        await self.populate(db)
        assert len(await db.query_metrics("app", "A", 60, "count", timestamp=T0 + 5)) == 2
        assert len(await db.query_metrics("app", None, 60, "count", limit=3, timestamp=T0 + 5)) == 3


# =============================================================================
# MAINTENANCE
# =============================================================================
class TestMaintenance:
    """Upgrade, flush, close and handle construction."""

    @pytest.mark.asyncio
    async def test_upgrade(self, db: MetricsDatabaseLayer, store: InMemoryMetricStore) -> None:
        await db.emit(NS, "Launches", 1)

        target = SpanSet.of((120, 12), (1200, 12))
        upgraded_db = MetricsDatabaseLayer(
            MetricsConfig(spans=target, retry=RetryPolicy.immediate()), store, clock=lambda: T0 + 10,
        )
        record = await upgraded_db.upgrade(NS, "Launches")

        assert target.matches(record.spans)
        assert record.total_count() == 1
        assert target.matches((await store.get(record.key)).unwrap().spans)

    @pytest.mark.asyncio
    async def test_buffered_upgrade(self, db: MetricsDatabaseLayer, store: InMemoryMetricStore) -> None:
        await db.emit(NS, "Launches", 1)

        target = SpanSet.of((120, 12), (1200, 12))
        upgraded_db = MetricsDatabaseLayer(
            MetricsConfig(spans=target, retry=RetryPolicy.immediate()), store, clock=lambda: T0 + 10,
        )
        await upgraded_db.emit(NS, "Launches", 1, buffer={"count": 100}, upgrade=True)
        await upgraded_db.flush()

        stored = (await store.get(MetricKey("default", NS, "Launches"))).unwrap()
        assert target.matches(stored.spans)
        assert stored.total_count() == 2

    @pytest.mark.asyncio
    async def test_upgrade_missing(self, db: MetricsDatabaseLayer) -> None:
        assert await db.upgrade(NS, "Nothing") is None

    @pytest.mark.asyncio
    async def test_close_flushes(self, db: MetricsDatabaseLayer, store: InMemoryMetricStore) -> None:
        await db.emit(NS, "Launches", 1, buffer={"count": 100})
        assert await store.count() == 0
        await db.close()
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_registered_when_buffering(self, config: MetricsConfig, store: InMemoryMetricStore) -> None:
        registry = InstanceRegistry()
        db = MetricsDatabaseLayer(config, store, registry=registry, clock=lambda: T0)

        await db.emit(NS, "Launches", 1)
        assert len(registry) == 0

        await db.emit(NS, "Launches", 1, buffer={"count": 100})
        assert len(registry) == 1

        assert await registry.flush_all() == 1
        assert (await store.get(MetricKey("default", NS, "Launches"))).unwrap().total_count() == 2

    @pytest.mark.asyncio
    async def test_create(self) -> None:
        db = (await MetricsDatabaseLayer.create(MetricsConfig(prefix="stats"))).unwrap()
        assert db.store.prefix == "stats"
        await db.close()
