"""
Metric Mesh: Multi-Resolution Rollup Metrics

Custom metrics stored as one compact record per metric stream, each record
holding a fixed set of resolution tiers (spans):
- Rollup Engine: fixed-size bucket rings that age into coarser spans
- Writer: optimistic compare-and-swap on a per-record sequence number
- Buffer: optional process-local coalescing of high-rate emits
- Query Engine: sum/avg/min/max/count/current and nearest-rank percentiles
- Stores: in-memory and Redis, behind one protocol

Default spans: 5 min at 30 s, 1 h at 5 min, 1 day at 2 h, 1 week at 12 h,
4 weeks at 2 days, 1 year at roughly 1 month.

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from metricmesh.core.types import (
    Result,
    Ok,
    Err,
    SpanDef,
    SpanSet,
    DEFAULT_SPANS,
    Point,
    Span,
    MetricKey,
    MetricRecord,
    StatKind,
    Statistic,
    QueryPoint,
    QueryResult,
    MetricList,
)
from metricmesh.core.errors import (
    MetricMeshError,
    StorageError,
    ValidationError,
    QueryError,
    ReliabilityError,
)
from metricmesh.core.config import BufferPolicy, MetricsConfig
from metricmesh.core.dimensions import decode_dimensions, encode_dimensions
from metricmesh.observability.logging import LogSetting
from metricmesh.reliability.retry import RetryPolicy
from metricmesh.storage import (
    InMemoryMetricStore,
    MetricStoreProtocol,
    StorageConfig,
    create_store,
)
from metricmesh.registry import InstanceRegistry, install_signal_handlers
from metricmesh.database import MetricsDatabaseLayer

__all__ = [
    # Version
    "__version__",
    # Types
    "Result",
    "Ok",
    "Err",
    "SpanDef",
    "SpanSet",
    "DEFAULT_SPANS",
    "Point",
    "Span",
    "MetricKey",
    "MetricRecord",
    "StatKind",
    "Statistic",
    "QueryPoint",
    "QueryResult",
    "MetricList",
    # Errors
    "MetricMeshError",
    "StorageError",
    "ValidationError",
    "QueryError",
    "ReliabilityError",
    # Configuration
    "BufferPolicy",
    "MetricsConfig",
    "LogSetting",
    "RetryPolicy",
    "decode_dimensions",
    "encode_dimensions",
    # Storage
    "InMemoryMetricStore",
    "MetricStoreProtocol",
    "StorageConfig",
    "create_store",
    # Handles
    "InstanceRegistry",
    "install_signal_handlers",
    "MetricsDatabaseLayer",
]
