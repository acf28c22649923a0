"""
Query module: statistic evaluation over reconciled records and metric listings.
"""

from metricmesh.query.engine import QueryEngine, percentile_rank
from metricmesh.query.listing import (
    format_date,
    format_query,
    format_record,
    group_metric_list,
)

__all__ = [
    "QueryEngine",
    "percentile_rank",
    "format_date",
    "format_query",
    "format_record",
    "group_metric_list",
]
