"""
Redis Metric Store
==================

Redis/Valkey implementation of MetricStoreProtocol.

Memory Model:
-------------
Each record is a Redis Hash at ``{pk}:{sk}`` with fields:
- 'd':   encoded record payload (see codec)
- 'seq': sequence number compared by conditional writes

Each owner partition keeps a sorted set at ``{pk}:index`` whose members
are sort keys, all scored 0, so prefix listings are ZRANGEBYLEX range
reads. The braces make both keys share a hash tag and land on one
cluster slot. Data hashes expire through EXPIREAT; index members left
behind by expired hashes are pruned when a read finds them missing.

Design Principles:
------------------
1. **Lock-Free**: CAS via a Lua script, no Python-side locks
2. **Connection Pooling**: redis-py pool, topology from RedisConfig
3. **Result Monad**: No exceptions for control flow

Algorithmic Complexity:
-----------------------
| Operation    | Time          | Notes                          |
|--------------|---------------|--------------------------------|
| get          | O(1)          | HMGET                          |
| put          | O(log N)      | Lua CAS + ZADD on the index    |
| query        | O(log N + k)  | ZRANGEBYLEX + pipelined HMGET  |
| list_keys    | O(log N + k)  | ZRANGEBYLEX + pipelined EXISTS |
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from metricmesh.core import constants as C
from metricmesh.core.errors import ErrorCode, StorageError
from metricmesh.core.types import Err, MetricKey, MetricRecord, Ok, Result
from metricmesh.storage import codec
from metricmesh.storage.config import RedisConfig, RedisMode
from metricmesh.storage.protocols import Page, StoreMetrics

if TYPE_CHECKING:
    import redis.asyncio as aioredis


# =============================================================================
# CONSTANTS
# =============================================================================

MAX_PAGE_SIZE: int = 10_000

_THROTTLE_PREFIXES = ("BUSY", "LOADING", "TRYAGAIN")

# KEYS: data hash, owner index. ARGV: expected seq ('' = must not exist),
# payload, new seq, expire-at epoch (0 = persist), index member.
LUA_CAS_SCRIPT: str = """
local current = redis.call('HGET', KEYS[1], 'seq')
if ARGV[1] == '' then
    if current then
        return {0, current}
    end
elseif current ~= ARGV[1] then
    return {0, current or ''}
end

redis.call('HSET', KEYS[1], 'd', ARGV[2], 'seq', ARGV[3])

local expire_at = tonumber(ARGV[4])
if expire_at > 0 then
    redis.call('EXPIREAT', KEYS[1], expire_at)
else
    redis.call('PERSIST', KEYS[1])
end

redis.call('ZADD', KEYS[2], 0, ARGV[5])
return {1, ARGV[3]}
"""


def _classify(operation: str, error: BaseException, config: RedisConfig) -> StorageError:
    """Map a redis-py exception onto the StorageError taxonomy."""
    from redis import exceptions as rexc

    if isinstance(error, (rexc.TimeoutError, asyncio.TimeoutError)):
        return StorageError.timeout(operation, config.socket_timeout_ms, error)
    if isinstance(error, rexc.ConnectionError):
        return StorageError.connection_failed(config.host, config.port, error)
    if isinstance(error, rexc.ResponseError) and str(error).startswith(_THROTTLE_PREFIXES):
        return StorageError.throughput_exceeded(operation, error)
    return StorageError.backend(operation, error)


# =============================================================================
# REDIS METRIC STORE
# =============================================================================

class RedisMetricStore:
    """
    Production Redis/Valkey metric store.

    Example:
        >>> store = RedisMetricStore(RedisConfig(host="redis.example.com"))
        >>> await store.connect()
        >>> result = await store.get(MetricKey("default", "app", "Launches"))
        >>> await store.close()
    """

    __slots__ = (
        "_config",
        "_pool",
        "_prefix",
        "_compression_threshold",
        "_metrics",
        "_cas_sha",
        "_connected",
    )

    def __init__(
        self,
        config: RedisConfig,
        prefix: str = C.DEFAULT_PREFIX,
        compression_threshold: int = C.COMPRESSION_THRESHOLD_BYTES,
    ) -> None:
        """
        Args:
            config: Redis connection configuration.
            prefix: Key prefix for partition and sort keys.
            compression_threshold: Payload size above which LZ4 is applied.

        Note:
            Call `connect()` before performing operations.
        """
        self._config = config
        self._pool: Optional["aioredis.Redis"] = None
        self._prefix = prefix
        self._compression_threshold = compression_threshold
        self._metrics = StoreMetrics()
        self._cas_sha: Optional[str] = None
        self._connected = False

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def metrics(self) -> StoreMetrics:
        return self._metrics

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        """
        Create the client for the configured topology, ping it and load
        the CAS script. Must be called before any operations.
        """
        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            return Err(StorageError.backend("connect", e))

        try:
            kwargs = self._config.get_connection_kwargs()

            if self._config.mode == RedisMode.CLUSTER:
                from redis.asyncio.cluster import RedisCluster
                self._pool = RedisCluster(**kwargs)
            elif self._config.mode == RedisMode.SENTINEL:
                from redis.asyncio.sentinel import Sentinel
                kwargs.pop("host")
                kwargs.pop("port")
                sentinel = Sentinel(
                    list(self._config.sentinel_hosts),
                    socket_timeout=self._config.socket_timeout_ms / 1000,
                )
                self._pool = sentinel.master_for(
                    self._config.sentinel_service,
                    redis_class=aioredis.Redis,
                    **kwargs,
                )
            else:
                self._pool = aioredis.Redis(**kwargs)

            await self._pool.ping()
            self._cas_sha = await self._pool.script_load(LUA_CAS_SCRIPT)

            self._connected = True
            return Ok(None)

        except Exception as e:
            self._metrics.connection_errors += 1
            return Err(StorageError.connection_failed(self._config.host, self._config.port, e))

    async def close(self) -> None:
        """Close the connection pool. Safe to call multiple times."""
        if self._pool:
            await self._pool.aclose()
            self._pool = None
        self._connected = False

    async def health_check(self) -> Result[Dict[str, Any], StorageError]:
        if not self._connected or not self._pool:
            return Err(StorageError.not_connected())

        try:
            info = await self._pool.info(section="server")
            return Ok({
                "connected": True,
                "redis_version": info.get("redis_version", "unknown"),
                "metrics": {
                    "get_count": self._metrics.get_count,
                    "put_count": self._metrics.put_count,
                    "cas_failures": self._metrics.cas_failures,
                    "avg_get_latency_ms": self._metrics.get_avg_get_latency_ms(),
                    "avg_put_latency_ms": self._metrics.get_avg_put_latency_ms(),
                },
            })
        except Exception as e:
            return Err(_classify("health_check", e, self._config))

    # -------------------------------------------------------------------------
    # KEYS
    # -------------------------------------------------------------------------

    def _data_key(self, pk: str, sk: str) -> str:
        return f"{{{pk}}}:{sk}"

    def _index_key(self, pk: str) -> str:
        return f"{{{pk}}}:index"

    def _record_error(self, error: StorageError) -> StorageError:
        if error.code is ErrorCode.STORAGE_TIMEOUT:
            self._metrics.timeout_errors += 1
        elif error.code is ErrorCode.STORAGE_CONNECTION_FAILED:
            self._metrics.connection_errors += 1
        return error

    # -------------------------------------------------------------------------
    # MetricStoreProtocol Implementation
    # -------------------------------------------------------------------------

    async def get(
        self,
        key: MetricKey,
        consistent: bool = False,
    ) -> Result[Optional[MetricRecord], StorageError]:
        """Redis reads are served by the master, so `consistent` has no effect."""
        if not self._connected or not self._pool:
            return Err(StorageError.not_connected())

        start_ns = time.perf_counter_ns()
        pk = codec.partition_key(self._prefix, key.owner)
        sk = codec.sort_key(self._prefix, key)

        try:
            payload, seq = await self._pool.hmget(self._data_key(pk, sk), "d", "seq")
        except Exception as e:
            return Err(self._record_error(_classify("get", e, self._config)))

        self._metrics.record_get(time.perf_counter_ns() - start_ns)
        if payload is None:
            return Ok(None)
        return self._decode(payload, seq, sk)

    async def put(
        self,
        record: MetricRecord,
        expected_seq: Optional[int],
    ) -> Result[int, StorageError]:
        if not self._connected or not self._pool:
            return Err(StorageError.not_connected())

        start_ns = time.perf_counter_ns()
        pk = codec.partition_key(self._prefix, record.owner)
        sk = codec.sort_key(self._prefix, record.key)
        new_seq = record.seq if record.seq is not None else 0
        expire_at = record.expires or 0
        payload = codec.encode_record(record, threshold=self._compression_threshold)

        keys = [self._data_key(pk, sk), self._index_key(pk)]
        args = [
            "" if expected_seq is None else str(expected_seq),
            payload,
            str(new_seq),
            str(int(expire_at)),
            sk,
        ]

        try:
            applied, current = await self._eval_cas(keys, args)
        except Exception as e:
            return Err(self._record_error(_classify("put", e, self._config)))

        if not applied:
            self._metrics.cas_failures += 1
            stored = int(current) if current not in (None, b"", "") else None
            return Err(StorageError.condition_failed(sk, expected_seq, stored))

        self._metrics.record_put(time.perf_counter_ns() - start_ns)
        return Ok(new_seq)

    async def _eval_cas(self, keys: List[str], args: List[Any]) -> tuple[int, Any]:
        from redis.exceptions import NoScriptError

        try:
            result = await self._pool.evalsha(self._cas_sha, len(keys), *keys, *args)
        except NoScriptError:
            # Script cache flushed or failover to a fresh node
            self._cas_sha = await self._pool.script_load(LUA_CAS_SCRIPT)
            result = await self._pool.evalsha(self._cas_sha, len(keys), *keys, *args)
        return int(result[0]), result[1]

    async def query(
        self,
        owner: str,
        namespace: Optional[str] = None,
        metric: Optional[str] = None,
        *,
        limit: int = C.DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> Result[Page[MetricRecord], StorageError]:
        if not self._connected or not self._pool:
            return Err(StorageError.not_connected())

        self._metrics.query_count += 1
        pk = codec.partition_key(self._prefix, owner)

        try:
            members, next_cursor = await self._range(pk, namespace, metric, limit, cursor)
            if not members:
                return Ok(Page(items=[], cursor=next_cursor))
            async with self._pool.pipeline(transaction=False) as pipe:
                for sk in members:
                    pipe.hmget(self._data_key(pk, sk), "d", "seq")
                rows = await pipe.execute()
        except Exception as e:
            return Err(self._record_error(_classify("query", e, self._config)))

        records: List[MetricRecord] = []
        missing: List[str] = []
        for sk, (payload, seq) in zip(members, rows):
            if payload is None:
                missing.append(sk)
                continue
            result = self._decode(payload, seq, sk)
            if result.is_err():
                return result
            records.append(result.value)

        await self._prune(pk, missing)
        return Ok(Page(items=records, cursor=next_cursor))

    async def list_keys(
        self,
        owner: str,
        namespace: Optional[str] = None,
        metric: Optional[str] = None,
        *,
        limit: int = C.DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> Result[Page[MetricKey], StorageError]:
        if not self._connected or not self._pool:
            return Err(StorageError.not_connected())

        self._metrics.query_count += 1
        pk = codec.partition_key(self._prefix, owner)

        try:
            members, next_cursor = await self._range(pk, namespace, metric, limit, cursor)
            if not members:
                return Ok(Page(items=[], cursor=next_cursor))
            async with self._pool.pipeline(transaction=False) as pipe:
                for sk in members:
                    pipe.exists(self._data_key(pk, sk))
                present = await pipe.execute()
        except Exception as e:
            return Err(self._record_error(_classify("list_keys", e, self._config)))

        keys: List[MetricKey] = []
        missing: List[str] = []
        try:
            for sk, exists in zip(members, present):
                if exists:
                    keys.append(codec.parse_sort_key(self._prefix, owner, sk))
                else:
                    missing.append(sk)
        except ValueError as e:
            return Err(StorageError.corruption(str(e), cause=e))

        await self._prune(pk, missing)
        return Ok(Page(items=keys, cursor=next_cursor))

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    async def _range(
        self,
        pk: str,
        namespace: Optional[str],
        metric: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[List[str], Optional[str]]:
        """One page of index members; the cursor is the last member, exclusive."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        prefix = codec.sort_key_prefix(self._prefix, namespace, metric).encode("utf-8")
        lo = b"(" + cursor.encode("utf-8") if cursor is not None else b"[" + prefix
        hi = b"[" + prefix + b"\xff"

        raw = await self._pool.zrangebylex(self._index_key(pk), lo, hi, start=0, num=limit + 1)
        members = [m.decode("utf-8") if isinstance(m, bytes) else m for m in raw]
        if len(members) > limit:
            members = members[:limit]
            return members, members[-1]
        return members, None

    async def _prune(self, pk: str, missing: List[str]) -> None:
        if not missing:
            return
        try:
            await self._pool.zrem(self._index_key(pk), *missing)
        except Exception as e:
            self._record_error(_classify("prune", e, self._config))

    def _decode(self, payload: bytes, seq: Any, sk: str) -> Result[MetricRecord, StorageError]:
        result = codec.decode_record(payload, sk)
        if result.is_err():
            self._metrics.corrupt_records += 1
            return result
        record = result.value
        if seq is not None:
            record.seq = int(seq)
        return Ok(record)
