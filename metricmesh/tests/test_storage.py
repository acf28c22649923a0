"""
Storage Test Suite: Codec, In-Memory Store and Configuration

Tests:
- Key layout and sort-key parsing
- Payload encoding with and without LZ4 compression, corruption handling
- Conditional writes (create-only and seq compare-and-swap)
- Prefix reads with pagination
- TTL enforcement
- Storage configuration and factory dispatch

Run: python -m pytest metricmesh/tests/test_storage.py -v
"""

from __future__ import annotations

import pytest

from metricmesh.core.errors import ErrorCode
from metricmesh.core.types import MetricKey, MetricRecord, Point, SpanSet
from metricmesh.rollup.engine import RollupEngine
from metricmesh.storage import (
    BackendType,
    InMemoryMetricStore,
    MetricStoreProtocol,
    RedisConfig,
    RedisMode,
    StorageConfig,
    create_store,
)
from metricmesh.storage import codec
from metricmesh.tests.conftest import T0


def make_record(
    engine: RollupEngine,
    spans: SpanSet,
    namespace: str = "myapp/launcher",
    metric: str = "Launches",
    dimensions: str = "",
    values=(1, 2, 3),
) -> MetricRecord:
    record = engine.init_record(MetricKey("default", namespace, metric, dimensions), spans, T0)
    for i, value in enumerate(values):
        engine.add_value(record.spans, Point(count=1, sum=value), T0 + i * 10)
    record.seq = 0
    return record


# =============================================================================
# CODEC
# =============================================================================
class TestKeys:
    """Partition and sort key layout."""

    def test_partition_key(self) -> None:
        assert codec.partition_key("metric", "acct") == "metric#1#acct"

    def test_sort_key(self) -> None:
        key = MetricKey("acct", "app", "Launches", "Rocket=SaturnV")
        assert codec.sort_key("metric", key) == "metric#app#Launches#Rocket=SaturnV"

    def test_sort_key_prefix(self) -> None:
        assert codec.sort_key_prefix("metric") == "metric#"
        assert codec.sort_key_prefix("metric", "app") == "metric#app"
        assert codec.sort_key_prefix("metric", "app", "Launches") == "metric#app#Launches"

    def test_parse_sort_key(self) -> None:
        key = codec.parse_sort_key("metric", "acct", "metric#app#Launches#a=1,b=2")
        assert key == MetricKey("acct", "app", "Launches", "a=1,b=2")

    @pytest.mark.parametrize("sk", ["other#app#Launches#", "metric#app"])
    def test_parse_sort_key_malformed(self, sk: str) -> None:
        with pytest.raises(ValueError):
            codec.parse_sort_key("metric", "acct", sk)


class TestPayloads:
    """Record serialization."""

    def test_round_trip(self, engine: RollupEngine, spans: SpanSet) -> None:
        record = make_record(engine, spans)
        record.expires = T0 + 600
        record.source = "worker-1"

        payload = codec.encode_record(record)
        assert payload[:1] == b"\x00"
        decoded = codec.decode_record(payload).unwrap()

        assert decoded.key == record.key
        assert decoded.seq == 0
        assert decoded.expires == T0 + 600
        assert decoded.source == "worker-1"
        assert [s.end for s in decoded.spans] == [s.end for s in record.spans]
        assert [p.sum for p in decoded.spans[0].points] == [1, 2, 3]
        assert decoded.spans[0].points[0].pvalues == [1]

    def test_compressed_above_threshold(self, engine: RollupEngine, spans: SpanSet) -> None:
        record = make_record(engine, spans)
        payload = codec.encode_record(record, threshold=16)
        assert payload[:1] == b"\x01"
        assert codec.decode_record(payload).unwrap().total_count() == 3

    def test_compression_disabled(self, engine: RollupEngine, spans: SpanSet) -> None:
        record = make_record(engine, spans)
        assert codec.encode_record(record, compress=False, threshold=0)[:1] == b"\x00"

    @pytest.mark.parametrize("payload", [b"", b"\x00{not json", b"\x02abc", b"\x01garbage", b"\x00{}"])
    def test_corruption(self, payload: bytes) -> None:
        result = codec.decode_record(payload, "k")
        assert result.is_err()
        assert result.error.code is ErrorCode.STORAGE_CORRUPTION


# =============================================================================
# IN-MEMORY STORE
# =============================================================================
class TestInMemoryStore:
    """Conditional writes and prefix reads."""

    def test_satisfies_protocol(self, store: InMemoryMetricStore) -> None:
        assert isinstance(store, MetricStoreProtocol)

    @pytest.mark.asyncio
    async def test_get_missing(self, store: InMemoryMetricStore) -> None:
        result = await store.get(MetricKey("default", "app", "Nope"))
        assert result.unwrap() is None

    @pytest.mark.asyncio
    async def test_create_only(self, store: InMemoryMetricStore, engine: RollupEngine, spans: SpanSet) -> None:
        record = make_record(engine, spans)
        assert (await store.put(record, None)).unwrap() == 0

        again = await store.put(record, None)
        assert again.is_err()
        assert again.error.is_condition_failed
        assert store.metrics.cas_failures == 1

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, store: InMemoryMetricStore, engine: RollupEngine, spans: SpanSet) -> None:
        record = make_record(engine, spans)
        await store.put(record, None)

        record.seq = 1
        assert (await store.put(record, 0)).unwrap() == 1

        record.seq = 2
        stale = await store.put(record, 0)
        assert stale.error.is_condition_failed
        assert stale.error.context["current_seq"] == 1

        stored = (await store.get(record.key)).unwrap()
        assert stored.seq == 1

    @pytest.mark.asyncio
    async def test_query_by_prefix(self, store: InMemoryMetricStore, engine: RollupEngine, spans: SpanSet) -> None:
        for namespace, metric in [("app", "A"), ("app", "B"), ("app2", "A"), ("other", "A")]:
            await store.put(make_record(engine, spans, namespace, metric), None)

        page = (await store.query("default", "app")).unwrap()
        assert [(r.namespace, r.metric) for r in page.items] == [("app", "A"), ("app", "B"), ("app2", "A")]
        assert not page.has_more

        page = (await store.query("default", "app", "B")).unwrap()
        assert [r.metric for r in page.items] == ["B"]

        page = (await store.query("someone-else")).unwrap()
        assert page.items == []

    @pytest.mark.asyncio
    async def test_pagination(self, store: InMemoryMetricStore, engine: RollupEngine, spans: SpanSet) -> None:
        for i in range(5):
            await store.put(make_record(engine, spans, "app", f"M{i}"), None)

        seen: list[str] = []
        cursor = None
        pages = 0
        while True:
            page = (await store.list_keys("default", "app", limit=2, cursor=cursor)).unwrap()
            seen.extend(k.metric for k in page.items)
            pages += 1
            cursor = page.cursor
            if cursor is None:
                break

        assert seen == ["M0", "M1", "M2", "M3", "M4"]
        assert pages == 3

    @pytest.mark.asyncio
    async def test_list_keys(self, store: InMemoryMetricStore, engine: RollupEngine, spans: SpanSet) -> None:
        await store.put(make_record(engine, spans, "app", "A", "Rocket=SaturnV"), None)
        keys = (await store.list_keys("default")).unwrap().items
        assert keys == [MetricKey("default", "app", "A", "Rocket=SaturnV")]

    @pytest.mark.asyncio
    async def test_ttl_enforced(self, engine: RollupEngine, spans: SpanSet) -> None:
        now = [T0]
        store = InMemoryMetricStore(enforce_ttl=True, clock=lambda: now[0])
        record = make_record(engine, spans)
        record.expires = T0 + 60
        await store.put(record, None)

        assert (await store.get(record.key)).unwrap() is not None
        now[0] = T0 + 60
        assert (await store.get(record.key)).unwrap() is None
        assert await store.count() == 0

        # An expired record no longer blocks create-only writes
        await store.put(record, None)
        now[0] = T0 + 120
        assert (await store.put(record, None)).is_ok()

    @pytest.mark.asyncio
    async def test_ttl_ignored_by_default(self, store: InMemoryMetricStore, engine: RollupEngine, spans: SpanSet) -> None:
        record = make_record(engine, spans)
        record.expires = 1
        await store.put(record, None)
        assert (await store.get(record.key)).unwrap() is not None

    @pytest.mark.asyncio
    async def test_corrupt_payload_reported(self, store: InMemoryMetricStore, engine: RollupEngine, spans: SpanSet) -> None:
        record = make_record(engine, spans)
        await store.put(record, None)
        for item in store._data.values():
            item.payload = b"\x00garbage"

        result = await store.get(record.key)
        assert result.error.code is ErrorCode.STORAGE_CORRUPTION
        assert store.metrics.corrupt_records == 1


# =============================================================================
# CONFIGURATION
# =============================================================================
class TestStorageConfig:
    def test_development_default(self) -> None:
        store = create_store()
        assert isinstance(store, InMemoryMetricStore)
        assert store.prefix == "metric"

    def test_redis_requires_config(self) -> None:
        with pytest.raises(ValueError):
            StorageConfig(backend=BackendType.REDIS)

    def test_rejects_bad_prefix(self) -> None:
        with pytest.raises(ValueError):
            StorageConfig(key_prefix="a#b")

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STORAGE_BACKEND", "valkey")
        monkeypatch.setenv("STORAGE_KEY_PREFIX", "stats")
        monkeypatch.setenv("REDIS_HOST", "redis.internal")
        monkeypatch.setenv("REDIS_PORT", "6380")
        config = StorageConfig.from_env()
        assert config.backend is BackendType.REDIS
        assert config.key_prefix == "stats"
        assert config.redis_config.host == "redis.internal"
        assert config.redis_config.port == 6380

    def test_redis_kwargs(self) -> None:
        kwargs = RedisConfig(password="secret").get_connection_kwargs()
        assert kwargs["decode_responses"] is False
        assert kwargs["password"] == "secret"
        assert kwargs["db"] == 0

    def test_cluster_kwargs_omit_db(self) -> None:
        kwargs = RedisConfig(mode=RedisMode.CLUSTER).get_connection_kwargs()
        assert "db" not in kwargs

    def test_sentinel_requires_hosts(self) -> None:
        with pytest.raises(ValueError):
            RedisConfig(mode=RedisMode.SENTINEL)
