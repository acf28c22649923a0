"""
Metric listing and debug rendering.

group_metric_list folds stored keys into the namespace -> metric ->
dimensions hierarchy returned by a metric-list request. The format_*
helpers render records and query results as plain text for logs and the
command line.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional, Union

from metricmesh.core.dimensions import decode_dimensions
from metricmesh.core.types import MetricKey, MetricList, MetricRecord, QueryResult


def group_metric_list(
    keys: Iterable[MetricKey],
    namespace: Optional[str] = None,
    metric: Optional[str] = None,
) -> MetricList:
    """
    Group keys into a MetricList.

    `metrics` is filled only when `namespace` names a namespace that was
    found, and `dimensions` only when `metric` also names a found metric.
    Every level is deduplicated and sorted.
    """
    tree: dict[str, dict[str, set[str]]] = {}
    for key in keys:
        tree.setdefault(key.namespace, {}).setdefault(key.metric, set()).add(key.dimensions)

    result = MetricList(namespaces=sorted(tree))
    if namespace is not None and namespace in tree:
        metrics = tree[namespace]
        result.metrics = sorted(metrics)
        if metric is not None and metric in metrics:
            result.dimensions = [decode_dimensions(d) for d in sorted(metrics[metric])]
    return result


def format_date(epoch: Union[int, float]) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%y-%m-%d %H:%M:%S")


def format_record(record: MetricRecord) -> str:
    """Multi-line dump of every span and bucket."""
    lines = [f"{record.namespace}/{record.metric}/{record.dimensions}"]
    for span in record.spans:
        lines.append(
            f" {span.period} secs {format_date(span.start)} => "
            f"{format_date(span.end)} {len(span.points)} points"
        )
        for point in span.points:
            lines.append(f"     count {point.count} = sum {point.sum}")
    return "\n".join(lines)


def format_query(result: QueryResult) -> str:
    lines = [
        f"{result.namespace}/{result.metric}/{result.dimensions} "
        f"{result.period} {len(result.points)} points"
    ]
    for point in result.points:
        value = point.value if point.count else "-"
        lines.append(f"     {format_date(point.timestamp)} = {value} / {point.count}")
    return "\n".join(lines)
