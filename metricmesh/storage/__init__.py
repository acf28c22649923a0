"""
Metric Mesh Storage Layer
=========================

Pluggable record stores behind MetricStoreProtocol.

Design Principles:
------------------
1. **Protocol-first**: the core depends on MetricStoreProtocol only
2. **Conditional writes**: every put is a compare-and-swap on `seq`
3. **Lazy backends**: redis is imported when a Redis store is built

Example:
--------
    >>> from metricmesh.storage import create_store, StorageConfig
    >>> store = create_store()                       # in-memory
    >>> store = create_store(StorageConfig.from_env())
    >>> await store.connect()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from metricmesh.storage.backends import InMemoryMetricStore, StoredItem
from metricmesh.storage.config import (
    BackendType,
    RedisConfig,
    RedisMode,
    StorageConfig,
)
from metricmesh.storage.protocols import MetricStoreProtocol, Page, StoreMetrics

if TYPE_CHECKING:
    from metricmesh.storage.redis_store import RedisMetricStore


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_store(config: Optional[StorageConfig] = None) -> Any:
    """
    Create a metric store.

    Args:
        config: Storage configuration; None means in-memory defaults.

    Returns:
        InMemoryMetricStore: If config is None or selects IN_MEMORY.
        RedisMetricStore: If config selects REDIS.

    Example:
        >>> store = create_store()
        >>> store = create_store(StorageConfig(
        ...     backend=BackendType.REDIS,
        ...     redis_config=RedisConfig(host="redis.prod"),
        ... ))
    """
    config = config or StorageConfig.for_development()

    if config.backend == BackendType.REDIS:
        from metricmesh.storage.redis_store import RedisMetricStore
        return RedisMetricStore(
            config.redis_config,
            prefix=config.key_prefix,
            compression_threshold=config.compression_threshold,
        )

    return InMemoryMetricStore(
        prefix=config.key_prefix,
        compression_threshold=config.compression_threshold,
        enforce_ttl=config.enforce_ttl,
    )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    # Protocols
    "MetricStoreProtocol",
    "Page",
    "StoreMetrics",
    # Configuration
    "BackendType",
    "RedisMode",
    "RedisConfig",
    "StorageConfig",
    # Backends
    "InMemoryMetricStore",
    "StoredItem",
    # Factory functions
    "create_store",
]
