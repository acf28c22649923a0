"""
Shared fixtures for the metric mesh test suite.

Most tests use a small two-tier span set so bucket arithmetic stays easy
to follow: 60 s at 10 s, then 600 s at 100 s.
"""

from __future__ import annotations

import pytest

from metricmesh.core.config import MetricsConfig
from metricmesh.core.types import MetricKey, SpanSet
from metricmesh.database import MetricsDatabaseLayer
from metricmesh.observability.logging import MetricLog
from metricmesh.reliability.retry import RetryPolicy
from metricmesh.rollup.engine import RollupEngine
from metricmesh.storage import InMemoryMetricStore

# 2000-01-01T00:00:00Z, aligned to every interval used below
T0 = 946684800


@pytest.fixture
def spans() -> SpanSet:
    return SpanSet.of((60, 6), (600, 6))


@pytest.fixture
def key() -> MetricKey:
    return MetricKey("default", "myapp/launcher", "Launches", "")


@pytest.fixture
def engine() -> RollupEngine:
    return RollupEngine(p_resolution=100, log=MetricLog())


@pytest.fixture
def store() -> InMemoryMetricStore:
    return InMemoryMetricStore()


@pytest.fixture
def config(spans: SpanSet) -> MetricsConfig:
    return MetricsConfig(spans=spans, p_resolution=100, retry=RetryPolicy.immediate())


@pytest.fixture
def db(config: MetricsConfig, store: InMemoryMetricStore) -> MetricsDatabaseLayer:
    return MetricsDatabaseLayer(config, store, clock=lambda: T0)
