"""
In-Memory Metric Store: Development and Testing Backend

Implements MetricStoreProtocol over a dict of encoded payloads:
- Conditional writes compare stored seq under an asyncio lock
- Prefix reads walk sort keys in order, paginated by last-seen key
- Payloads round-trip through the same codec as the Redis store

Design Principles:
    - Full protocol compliance for seamless production swap
    - Safe for concurrent coroutines via asyncio.Lock
    - Optional TTL enforcement against an injectable clock

Performance Characteristics:
    - get/put: O(1) average case plus codec cost
    - query/list_keys: O(N log N) per page for N keys of the owner
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from metricmesh.core import constants as C
from metricmesh.core.errors import StorageError
from metricmesh.core.types import Err, MetricKey, MetricRecord, Ok, Result
from metricmesh.storage import codec
from metricmesh.storage.protocols import Page, StoreMetrics

MAX_PAGE_SIZE: int = 10_000


@dataclass(slots=True)
class StoredItem:
    """Encoded record plus the fields a conditional write compares."""
    seq: int
    payload: bytes
    expires: Optional[int] = None

    def is_expired(self, now: float) -> bool:
        return self.expires is not None and self.expires <= now


class InMemoryMetricStore:
    """
    In-memory metric store.

    Example:
        store = InMemoryMetricStore()
        await store.put(record, expected_seq=None)
        result = await store.get(record.key)
    """

    __slots__ = (
        "_data",
        "_lock",
        "_prefix",
        "_compression_threshold",
        "_enforce_ttl",
        "_clock",
        "_metrics",
    )

    def __init__(
        self,
        prefix: str = C.DEFAULT_PREFIX,
        compression_threshold: int = C.COMPRESSION_THRESHOLD_BYTES,
        enforce_ttl: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            prefix: Key prefix for partition and sort keys.
            compression_threshold: Payload size above which LZ4 is applied.
            enforce_ttl: Treat records past their expiry as absent.
            clock: Epoch-seconds clock used for TTL checks.
        """
        self._data: dict[tuple[str, str], StoredItem] = {}
        self._lock = asyncio.Lock()
        self._prefix = prefix
        self._compression_threshold = compression_threshold
        self._enforce_ttl = enforce_ttl
        self._clock = clock
        self._metrics = StoreMetrics()

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def metrics(self) -> StoreMetrics:
        return self._metrics

    async def connect(self) -> Result[None, StorageError]:
        return Ok(None)

    async def close(self) -> None:
        return None

    def _keys(self, key: MetricKey) -> tuple[str, str]:
        return codec.partition_key(self._prefix, key.owner), codec.sort_key(self._prefix, key)

    def _live(self, item: StoredItem) -> bool:
        return not (self._enforce_ttl and item.is_expired(self._clock()))

    # -------------------------------------------------------------------------
    # MetricStoreProtocol Implementation
    # -------------------------------------------------------------------------

    async def get(
        self,
        key: MetricKey,
        consistent: bool = False,
    ) -> Result[Optional[MetricRecord], StorageError]:
        """Complexity: O(1) average case (hash lookup)"""
        start_ns = time.perf_counter_ns()
        pk, sk = self._keys(key)

        async with self._lock:
            item = self._data.get((pk, sk))
            if item is not None and not self._live(item):
                del self._data[(pk, sk)]
                item = None

        self._metrics.record_get(time.perf_counter_ns() - start_ns)
        if item is None:
            return Ok(None)

        result = codec.decode_record(item.payload, sk)
        if result.is_err():
            self._metrics.corrupt_records += 1
        return result

    async def put(
        self,
        record: MetricRecord,
        expected_seq: Optional[int],
    ) -> Result[int, StorageError]:
        """
        Compare-and-swap on the stored seq.

        Complexity: O(1) average case plus encoding
        """
        start_ns = time.perf_counter_ns()
        pk, sk = self._keys(record.key)
        new_seq = record.seq if record.seq is not None else 0
        payload = codec.encode_record(record, threshold=self._compression_threshold)

        async with self._lock:
            existing = self._data.get((pk, sk))
            if existing is not None and not self._live(existing):
                del self._data[(pk, sk)]
                existing = None

            current = existing.seq if existing is not None else None
            if current != expected_seq:
                self._metrics.cas_failures += 1
                return Err(StorageError.condition_failed(sk, expected_seq, current))

            self._data[(pk, sk)] = StoredItem(
                seq=new_seq,
                payload=payload,
                expires=record.expires,
            )

        self._metrics.record_put(time.perf_counter_ns() - start_ns)
        return Ok(new_seq)

    async def query(
        self,
        owner: str,
        namespace: Optional[str] = None,
        metric: Optional[str] = None,
        *,
        limit: int = C.DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> Result[Page[MetricRecord], StorageError]:
        self._metrics.query_count += 1
        async with self._lock:
            page = self._scan(owner, namespace, metric, limit, cursor)

        records: list[MetricRecord] = []
        for sk, item in page.items:
            result = codec.decode_record(item.payload, sk)
            if result.is_err():
                self._metrics.corrupt_records += 1
                return Err(result.error)
            records.append(result.value)
        return Ok(Page(items=records, cursor=page.cursor))

    async def list_keys(
        self,
        owner: str,
        namespace: Optional[str] = None,
        metric: Optional[str] = None,
        *,
        limit: int = C.DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> Result[Page[MetricKey], StorageError]:
        self._metrics.query_count += 1
        async with self._lock:
            page = self._scan(owner, namespace, metric, limit, cursor)

        try:
            keys = [codec.parse_sort_key(self._prefix, owner, sk) for sk, _ in page.items]
        except ValueError as e:
            return Err(StorageError.corruption(str(e), cause=e))
        return Ok(Page(items=keys, cursor=page.cursor))

    def _scan(
        self,
        owner: str,
        namespace: Optional[str],
        metric: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> Page[tuple[str, StoredItem]]:
        """Sorted prefix scan; caller holds the lock."""
        pk = codec.partition_key(self._prefix, owner)
        prefix = codec.sort_key_prefix(self._prefix, namespace, metric)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        matches = sorted(
            (
                (sk, item)
                for (p, sk), item in self._data.items()
                if p == pk
                and sk.startswith(prefix)
                and (cursor is None or sk > cursor)
                and self._live(item)
            ),
            key=lambda entry: entry[0],
        )
        items = matches[:limit]
        next_cursor = items[-1][0] if len(matches) > limit else None
        return Page(items=items, cursor=next_cursor)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    async def count(self) -> int:
        async with self._lock:
            return len(self._data)
