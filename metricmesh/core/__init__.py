"""
Core module: Type definitions, error hierarchy and the dimension codec.

This module provides the foundational abstractions for the metric mesh:
- Result/Either monads for zero-exception control flow at storage seams
- Span configuration, record model and the closed statistic variant
- Exhaustive error hierarchy with stable error codes

Configuration lives in metricmesh.core.config and is imported from there.
"""

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
    ErrorCode,
    MetricMeshError,
    StorageError,
    ValidationError,
    QueryError,
    ReliabilityError,
)
from metricmesh.core.dimensions import decode_dimensions, encode_dimensions

__all__ = [
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
    "ErrorCode",
    "MetricMeshError",
    "StorageError",
    "ValidationError",
    "QueryError",
    "ReliabilityError",
    "decode_dimensions",
    "encode_dimensions",
]
