"""
Observability module: structured logging and the metrics core log front end.
"""

from metricmesh.observability.logging import (
    JsonFormatter,
    LogLevel,
    LogSetting,
    MetricLog,
    StructuredLogger,
    setup_logging,
)

__all__ = [
    "JsonFormatter",
    "LogLevel",
    "LogSetting",
    "MetricLog",
    "StructuredLogger",
    "setup_logging",
]
