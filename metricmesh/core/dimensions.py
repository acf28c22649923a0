"""
Dimension codec: canonical string form of dimension tag maps.

    {"Rocket": "SaturnV", "Stage": 1}  <->  "Rocket=SaturnV,Stage=1"

Keys are sorted so the encoding is independent of map iteration order.
Values always decode as strings.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from metricmesh.core.errors import ValidationError

PAIR_SEPARATOR = ","
KV_SEPARATOR = "="


def encode_dimensions(dimensions: Optional[Mapping[str, Any]]) -> str:
    """
    Encode a dimension map.

    Raises:
        ValidationError: If a key contains "=" or ",", or a value contains ",".
    """
    if not dimensions:
        return ""
    if not isinstance(dimensions, Mapping):
        raise ValidationError.invalid_argument(
            "dimensions", dimensions, "dimensions must be a mapping"
        )
    parts = []
    for key in sorted(dimensions, key=str):
        name = str(key)
        value = str(dimensions[key])
        if not name or KV_SEPARATOR in name or PAIR_SEPARATOR in name:
            raise ValidationError.invalid_argument(
                "dimensions", name, "keys must be non-empty and free of '=' and ','"
            )
        if PAIR_SEPARATOR in value:
            raise ValidationError.invalid_argument(
                "dimensions", value, f"value for {name!r} must not contain ','"
            )
        parts.append(f"{name}{KV_SEPARATOR}{value}")
    return PAIR_SEPARATOR.join(parts)


def decode_dimensions(encoded: Optional[str]) -> dict[str, str]:
    """Inverse of encode_dimensions."""
    result: dict[str, str] = {}
    if not encoded:
        return result
    for pair in encoded.split(PAIR_SEPARATOR):
        name, _, value = pair.partition(KV_SEPARATOR)
        result[name] = value
    return result
