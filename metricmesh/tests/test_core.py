"""
Tests for core types: dimension codec, span sets, statistics, configuration
and the error hierarchy.

Run: python -m pytest metricmesh/tests/test_core.py -v
"""

from __future__ import annotations

import pytest

from metricmesh.core.config import BufferPolicy, MetricsConfig
from metricmesh.core.dimensions import decode_dimensions, encode_dimensions
from metricmesh.core.errors import ErrorCode, StorageError, ValidationError
from metricmesh.core.types import (
    DEFAULT_SPANS,
    Err,
    Ok,
    SpanDef,
    SpanSet,
    StatKind,
    Statistic,
    is_finite_number,
)
from metricmesh.observability.logging import LogSetting


# =============================================================================
# DIMENSIONS
# =============================================================================
class TestDimensions:
    """Canonical encoding of dimension maps."""

    def test_sorted_by_key(self) -> None:
        assert encode_dimensions({"Stage": 1, "Rocket": "SaturnV"}) == "Rocket=SaturnV,Stage=1"

    def test_order_independent(self) -> None:
        a = encode_dimensions({"a": "1", "b": "2"})
        b = encode_dimensions({"b": "2", "a": "1"})
        assert a == b

    def test_empty(self) -> None:
        assert encode_dimensions(None) == ""
        assert encode_dimensions({}) == ""
        assert decode_dimensions("") == {}

    def test_decode_yields_strings(self) -> None:
        assert decode_dimensions(encode_dimensions({"Stage": 1})) == {"Stage": "1"}

    def test_value_may_contain_equals(self) -> None:
        encoded = encode_dimensions({"expr": "a=b"})
        assert decode_dimensions(encoded) == {"expr": "a=b"}

    @pytest.mark.parametrize("dimensions", [
        {"a=b": "x"},
        {"a,b": "x"},
        {"a": "x,y"},
        {"": "x"},
    ])
    def test_rejects_separators(self, dimensions: dict) -> None:
        with pytest.raises(ValidationError):
            encode_dimensions(dimensions)

    def test_rejects_non_mapping(self) -> None:
        with pytest.raises(ValidationError):
            encode_dimensions([("a", "b")])


# =============================================================================
# SPANS
# =============================================================================
class TestSpanSet:
    """Span tier validation and derived intervals."""

    def test_default_spans(self) -> None:
        assert len(DEFAULT_SPANS) == 6
        assert DEFAULT_SPANS.finest.period == 300
        assert DEFAULT_SPANS.finest.interval == 30
        assert DEFAULT_SPANS.coarsest.period == 365 * 86400

    def test_integral_interval_stays_int(self) -> None:
        assert isinstance(SpanDef(3600, 12).interval, int)

    def test_fractional_interval(self) -> None:
        assert SpanDef(60, 7).interval == pytest.approx(60 / 7)

    def test_must_ascend(self) -> None:
        with pytest.raises(ValueError):
            SpanSet.of((600, 6), (60, 6))
        with pytest.raises(ValueError):
            SpanSet.of((60, 6), (60, 12))

    def test_must_not_be_empty(self) -> None:
        with pytest.raises(ValueError):
            SpanSet.of()

    @pytest.mark.parametrize("pair", [(0, 10), (60, 0), (-5, 1), (True, 1)])
    def test_rejects_bad_definitions(self, pair: tuple) -> None:
        with pytest.raises(ValueError):
            SpanSet.of(pair)

    def test_rejects_malformed_pair(self) -> None:
        with pytest.raises(ValueError):
            SpanSet.of((60,))


# =============================================================================
# STATISTICS
# =============================================================================
class TestStatistic:
    """Parsing of the closed statistic variant."""

    @pytest.mark.parametrize("name,kind", [
        ("sum", StatKind.SUM),
        ("avg", StatKind.AVG),
        ("min", StatKind.MIN),
        ("max", StatKind.MAX),
        ("count", StatKind.COUNT),
        ("current", StatKind.CURRENT),
        ("AVG", StatKind.AVG),
    ])
    def test_named(self, name: str, kind: StatKind) -> None:
        assert Statistic.parse(name).unwrap().kind is kind

    def test_percentile(self) -> None:
        stat = Statistic.parse("p95").unwrap()
        assert stat.kind is StatKind.PERCENTILE
        assert stat.percentile == 95
        assert str(stat) == "p95"

    @pytest.mark.parametrize("name", ["p101", "median", "p", "", "p-1"])
    def test_invalid(self, name: str) -> None:
        assert Statistic.parse(name).is_err()

    def test_non_string(self) -> None:
        assert Statistic.parse(42).is_err()

    def test_passthrough(self) -> None:
        stat = Statistic.p(50)
        assert Statistic.parse(stat).unwrap() is stat


# =============================================================================
# CONFIGURATION
# =============================================================================
class TestBufferPolicy:
    """Buffer policy coercion and activity."""

    def test_empty_policy_inactive(self) -> None:
        assert not BufferPolicy().is_active

    def test_any_threshold_activates(self) -> None:
        assert BufferPolicy(count=5).is_active
        assert BufferPolicy(sum=10).is_active
        assert BufferPolicy(elapsed=30).is_active
        assert BufferPolicy(force=True).is_active

    def test_coerce_mapping(self) -> None:
        assert BufferPolicy.coerce({"count": 3}) == BufferPolicy(count=3)
        assert BufferPolicy.coerce(None) is None

    def test_coerce_rejects_unknown_keys(self) -> None:
        with pytest.raises(ValidationError):
            BufferPolicy.coerce({"counts": 3})

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValidationError):
            BufferPolicy(sum=-1)


class TestMetricsConfig:
    """Root configuration validation."""

    def test_defaults(self) -> None:
        config = MetricsConfig()
        assert config.owner == "default"
        assert config.spans is DEFAULT_SPANS
        assert config.effective_ttl == DEFAULT_SPANS.coarsest.period
        assert config.log is LogSetting.OFF

    def test_explicit_ttl(self) -> None:
        assert MetricsConfig(ttl=120).effective_ttl == 120

    def test_create_normalizes(self) -> None:
        config = MetricsConfig.create(spans=[(60, 6), (600, 6)], buffer={"count": 2}, log=True)
        assert config.spans.finest.interval == 10
        assert config.buffer == BufferPolicy(count=2)
        assert config.log is LogSetting.INFO

    @pytest.mark.parametrize("kwargs", [
        {"owner": ""},
        {"ttl": 0},
        {"p_resolution": 5000},
        {"prefix": "a#b"},
    ])
    def test_invalid(self, kwargs: dict) -> None:
        with pytest.raises(ValidationError):
            MetricsConfig(**kwargs)

    def test_create_rejects_bad_spans(self) -> None:
        with pytest.raises(ValidationError):
            MetricsConfig.create(spans=[(600, 6), (60, 6)])

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("METRICMESH_OWNER", "acct-42")
        monkeypatch.setenv("METRICMESH_TTL", "3600")
        monkeypatch.setenv("METRICMESH_LOG", "verbose")
        config = MetricsConfig.from_env().unwrap()
        assert config.owner == "acct-42"
        assert config.ttl == 3600
        assert config.log is LogSetting.VERBOSE

    def test_from_env_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("METRICMESH_TTL", "soon")
        assert MetricsConfig.from_env().is_err()


# =============================================================================
# RESULTS AND ERRORS
# =============================================================================
class TestResultAndErrors:
    """Result monad and error factories."""

    def test_result(self) -> None:
        assert Ok(3).map(lambda v: v + 1).unwrap() == 4
        assert Err("boom").unwrap_or(7) == 7

    def test_condition_failed(self) -> None:
        error = StorageError.condition_failed("k", 1, 2)
        assert error.is_condition_failed
        assert not error.is_throughput_exceeded
        assert error.code is ErrorCode.STORAGE_CONDITION_FAILED

    def test_to_dict(self) -> None:
        data = StorageError.corruption("bad bytes", "k").to_dict()
        assert data["code"] == "STORAGE_CORRUPTION"
        assert "bad bytes" in data["message"]

    def test_finite_number(self) -> None:
        assert is_finite_number(1.5)
        assert not is_finite_number(float("nan"))
        assert not is_finite_number(True)
        assert not is_finite_number("3")
