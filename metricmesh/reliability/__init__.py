"""
Reliability module: retry policy with exponential backoff.
"""

from metricmesh.reliability.retry import RetryPolicy, RetryStats, calculate_backoff

__all__ = [
    "RetryPolicy",
    "RetryStats",
    "calculate_backoff",
]
