"""
Record Codec: Keys and Payloads for Persisted Metric Records

Key layout (one partition per owner, sorted within it):

    pk = "{prefix}#{schema_version}#{owner}"
    sk = "{prefix}#{namespace}#{metric}#{dimensions}"

Namespace and metric names never contain the separator, so a sort key
splits back into its parts with at most two splits; the dimension string
may contain anything.

Payloads are JSON with short field names, prefixed by a one-byte marker:
0x00 for raw JSON, 0x01 for an LZ4 frame. Records above the compression
threshold are compressed.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import lz4.frame

from metricmesh.core import constants as C
from metricmesh.core.errors import StorageError
from metricmesh.core.types import Err, MetricKey, MetricRecord, Ok, Point, Result, Span

SEP = C.KEY_SEPARATOR

_RAW = b"\x00"
_LZ4 = b"\x01"


# =============================================================================
# KEYS
# =============================================================================
def partition_key(prefix: str, owner: str) -> str:
    return f"{prefix}{SEP}{C.SCHEMA_VERSION}{SEP}{owner}"


def sort_key(prefix: str, key: MetricKey) -> str:
    return SEP.join((prefix, key.namespace, key.metric, key.dimensions))


def sort_key_prefix(
    prefix: str,
    namespace: Optional[str] = None,
    metric: Optional[str] = None,
) -> str:
    """
    Range prefix for a listing.

    A namespace alone matches every namespace starting with it; adding a
    metric narrows to that namespace exactly and metrics starting with it.
    """
    if namespace is None:
        return prefix + SEP
    if metric is None:
        return SEP.join((prefix, namespace))
    return SEP.join((prefix, namespace, metric))


def parse_sort_key(prefix: str, owner: str, sk: str) -> MetricKey:
    """
    Raises:
        ValueError: If `sk` does not carry `prefix` or has too few parts.
    """
    head = prefix + SEP
    if not sk.startswith(head):
        raise ValueError(f"sort key {sk!r} does not start with {head!r}")
    parts = sk[len(head):].split(SEP, 2)
    if len(parts) != 3:
        raise ValueError(f"malformed sort key {sk!r}")
    namespace, metric, dimensions = parts
    return MetricKey(owner, namespace, metric, dimensions)


# =============================================================================
# PAYLOADS
# =============================================================================
def _point_to_dict(point: Point) -> dict[str, Any]:
    data: dict[str, Any] = {"c": point.count, "s": point.sum}
    if point.max is not None:
        data["x"] = point.max
    if point.min is not None:
        data["m"] = point.min
    if point.pvalues:
        data["v"] = list(point.pvalues)
    return data


def _point_from_dict(data: dict[str, Any]) -> Point:
    pvalues = data.get("v")
    return Point(
        count=int(data["c"]),
        sum=data["s"],
        min=data.get("m"),
        max=data.get("x"),
        pvalues=list(pvalues) if pvalues else None,
    )


def record_to_dict(record: MetricRecord) -> dict[str, Any]:
    return {
        "own": record.owner,
        "ns": record.namespace,
        "met": record.metric,
        "dim": record.dimensions,
        "seq": record.seq,
        "exp": record.expires,
        "src": record.source,
        "ver": record.version,
        "spans": [
            {
                "sp": span.period,
                "ss": span.samples,
                "se": span.end,
                "pt": [_point_to_dict(p) for p in span.points],
            }
            for span in record.spans
        ],
    }


def record_from_dict(data: dict[str, Any]) -> MetricRecord:
    """
    Raises:
        KeyError, TypeError, ValueError: If a required field is missing or mistyped.
    """
    spans = [
        Span(
            period=int(s["sp"]),
            samples=int(s["ss"]),
            end=s["se"],
            points=[_point_from_dict(p) for p in s["pt"]],
        )
        for s in data["spans"]
    ]
    return MetricRecord(
        owner=data["own"],
        namespace=data["ns"],
        metric=data["met"],
        dimensions=data.get("dim") or "",
        spans=spans,
        seq=data.get("seq"),
        expires=data.get("exp"),
        source=data.get("src"),
        version=data.get("ver", C.SCHEMA_VERSION),
    )


def encode_record(
    record: MetricRecord,
    compress: bool = True,
    threshold: int = C.COMPRESSION_THRESHOLD_BYTES,
) -> bytes:
    """Serialize with LZ4 frame compression above `threshold` bytes."""
    data = json.dumps(record_to_dict(record), separators=(",", ":")).encode("utf-8")
    if compress and len(data) > threshold:
        return _LZ4 + lz4.frame.compress(data)
    return _RAW + data


def decode_record(payload: bytes, key: Optional[str] = None) -> Result[MetricRecord, StorageError]:
    """
    Inverse of encode_record.

    Returns:
        Ok(record): Decoded record
        Err(StorageError.corruption): Payload is empty, truncated or malformed
    """
    if not payload:
        return Err(StorageError.corruption("empty payload", key))
    marker, body = payload[:1], payload[1:]
    try:
        if marker == _LZ4:
            body = lz4.frame.decompress(body)
        elif marker != _RAW:
            return Err(StorageError.corruption(f"unknown payload marker {marker!r}", key))
        return Ok(record_from_dict(json.loads(body.decode("utf-8"))))
    except (ValueError, KeyError, TypeError, RuntimeError) as e:
        return Err(StorageError.corruption(f"undecodable record: {e}", key, e))
