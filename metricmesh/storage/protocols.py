"""
Metric Store Protocol: Storage Abstraction for Metric Records

Structural subtyping protocol (PEP 544) for pluggable record stores:
- get: point read by metric key
- put: conditional write guarded by the record's sequence number
- query / list_keys: prefix reads over one owner's partition, paginated

Design Principles:
    - Zero-exception control flow via Result[T, StorageError]
    - `condition_failed` is distinguishable from every other failure
    - Async-first for non-blocking I/O

Complexity Analysis:
    - All protocol methods: O(1) dispatch overhead
    - Actual complexity determined by concrete implementations
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Generic, Optional, Protocol, TypeVar, runtime_checkable

from metricmesh.core import constants as C
from metricmesh.core.errors import StorageError
from metricmesh.core.types import MetricKey, MetricRecord, Result

T = TypeVar("T")


# =============================================================================
# PAGINATION
# =============================================================================
@dataclass(slots=True)
class Page(Generic[T]):
    """
    One page of a prefix read.

    `cursor` is None on the last page; otherwise pass it back to continue
    strictly after the final item of this page.
    """
    items: list[T] = field(default_factory=list)
    cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.cursor is not None


# =============================================================================
# OPERATION METRICS
# =============================================================================
@dataclass(slots=True)
class StoreMetrics:
    """
    Per-store operation counters.

    Counters are plain ints; accumulation is safe under single-threaded
    asyncio.
    """
    get_count: int = 0
    put_count: int = 0
    query_count: int = 0

    get_latency_sum_ns: int = 0
    put_latency_sum_ns: int = 0

    cas_failures: int = 0
    connection_errors: int = 0
    timeout_errors: int = 0
    corrupt_records: int = 0

    def record_get(self, latency_ns: int) -> None:
        self.get_count += 1
        self.get_latency_sum_ns += latency_ns

    def record_put(self, latency_ns: int) -> None:
        self.put_count += 1
        self.put_latency_sum_ns += latency_ns

    def get_avg_get_latency_ms(self) -> float:
        if self.get_count == 0:
            return 0.0
        return (self.get_latency_sum_ns / self.get_count) / 1_000_000

    def get_avg_put_latency_ms(self) -> float:
        if self.put_count == 0:
            return 0.0
        return (self.put_latency_sum_ns / self.put_count) / 1_000_000


# =============================================================================
# METRIC STORE PROTOCOL
# =============================================================================
@runtime_checkable
class MetricStoreProtocol(Protocol):
    """
    Contract every metric record store satisfies.

    Records are partitioned by owner and ordered within a partition by
    (namespace, metric, dimensions), so prefix reads by namespace or by
    namespace and metric are range scans.

    Example:
        >>> result = await store.get(MetricKey("default", "app", "Launches"))
        >>> if result.is_ok() and result.value is not None:
        ...     record = result.value
    """

    @abstractmethod
    async def connect(self) -> Result[None, StorageError]:
        """Open connections. Idempotent for stores that need none."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def get(
        self,
        key: MetricKey,
        consistent: bool = False,
    ) -> Result[Optional[MetricRecord], StorageError]:
        """
        Read one record.

        Returns:
            Ok(record): Record found
            Ok(None): No record under this key
            Err(StorageError): Backend or decode failure
        """
        ...

    @abstractmethod
    async def put(
        self,
        record: MetricRecord,
        expected_seq: Optional[int],
    ) -> Result[int, StorageError]:
        """
        Conditionally write `record`.

        The write succeeds only if the stored seq equals `expected_seq`, or,
        with `expected_seq=None`, only if no record exists yet. `record.seq`
        carries the new sequence number to store.

        Returns:
            Ok(seq): Stored sequence number
            Err(StorageError.condition_failed): Stored seq differs
            Err(StorageError): Any other failure
        """
        ...

    @abstractmethod
    async def query(
        self,
        owner: str,
        namespace: Optional[str] = None,
        metric: Optional[str] = None,
        *,
        limit: int = C.DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> Result[Page[MetricRecord], StorageError]:
        """Records of `owner` whose namespace (and metric) start with the given prefixes."""
        ...

    @abstractmethod
    async def list_keys(
        self,
        owner: str,
        namespace: Optional[str] = None,
        metric: Optional[str] = None,
        *,
        limit: int = C.DEFAULT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> Result[Page[MetricKey], StorageError]:
        """Like query() but yields keys only; no payloads are decoded."""
        ...
