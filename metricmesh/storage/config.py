"""
Storage Backend Configuration
=============================

Immutable configuration dataclasses for metric store backends.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time
3. **Defaults**: In-memory for development; explicit Redis for production
4. **Environment**: Supports loading from environment variables
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

from metricmesh.core import constants as C


# =============================================================================
# ENUMERATIONS
# =============================================================================

class BackendType(Enum):
    """Metric store backend, used for factory dispatch."""
    IN_MEMORY = auto()  # Development/testing only
    REDIS = auto()      # Redis or Valkey


class RedisMode(Enum):
    """
    Redis deployment topology.

    Determines connection pooling and failover strategy.
    """
    STANDALONE = auto()  # Single node - development
    SENTINEL = auto()    # HA via Redis Sentinel
    CLUSTER = auto()     # Sharded cluster mode


# =============================================================================
# REDIS CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class RedisConfig:
    """
    Redis/Valkey connection configuration.

    Responses are always read as bytes since record payloads are binary.

    Attributes:
        host: Redis server hostname or IP address.
        port: Redis server port (1-65535).
        password: Optional authentication password.
        db: Logical database index (0-15 for single node).
        mode: Deployment topology (standalone/sentinel/cluster).
        sentinel_hosts: (host, port) pairs for Sentinel mode.
        sentinel_service: Monitored master name for Sentinel mode.
        max_connections: Connection pool size. Must be > 0.
        connect_timeout_ms: TCP connection timeout in milliseconds.
        socket_timeout_ms: Socket read/write timeout in milliseconds.
        ssl: Enable TLS encryption for connections.

    Example:
        >>> config = RedisConfig.from_env()
        >>> config = RedisConfig(host="redis.example.com", password="secret")
    """
    sentinel_hosts: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)
    sentinel_service: str = "mymaster"
    password: Optional[str] = None
    host: str = "localhost"

    socket_timeout_ms: int = 5000
    connect_timeout_ms: int = 2000
    max_connections: int = 50
    port: int = 6379
    db: int = 0
    mode: RedisMode = RedisMode.STANDALONE

    ssl: bool = False

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not (1 <= self.port <= 65535):
            raise ValueError(f"port must be in [1, 65535], got {self.port}")

        if self.mode == RedisMode.STANDALONE and not (0 <= self.db <= 15):
            raise ValueError(f"db must be in [0, 15] for standalone, got {self.db}")

        if self.max_connections <= 0:
            raise ValueError(f"max_connections must be > 0, got {self.max_connections}")

        if self.connect_timeout_ms <= 0:
            raise ValueError(f"connect_timeout_ms must be > 0, got {self.connect_timeout_ms}")
        if self.socket_timeout_ms <= 0:
            raise ValueError(f"socket_timeout_ms must be > 0, got {self.socket_timeout_ms}")

        if self.mode == RedisMode.SENTINEL and len(self.sentinel_hosts) == 0:
            raise ValueError("sentinel_hosts required when mode == SENTINEL")

    @classmethod
    def from_env(cls, prefix: str = "REDIS") -> "RedisConfig":
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_HOST: Server hostname (default: localhost)
        - {prefix}_PORT: Server port (default: 6379)
        - {prefix}_PASSWORD: Authentication password
        - {prefix}_DB: Database index (default: 0)
        - {prefix}_SSL: Enable TLS (default: false)
        - {prefix}_MAX_CONNECTIONS: Pool size (default: 50)
        - {prefix}_MODE: standalone|sentinel|cluster
        - {prefix}_SENTINEL_HOSTS: Comma-separated host:port pairs
        - {prefix}_SENTINEL_SERVICE: Master name (default: mymaster)

        Args:
            prefix: Environment variable prefix (default: REDIS).
        """
        def _get(key: str, default: str = "") -> str:
            return os.environ.get(f"{prefix}_{key}", default)

        def _get_int(key: str, default: int) -> int:
            val = _get(key)
            return int(val) if val else default

        def _get_bool(key: str, default: bool) -> bool:
            val = _get(key).lower()
            if val in ("true", "1", "yes"):
                return True
            if val in ("false", "0", "no"):
                return False
            return default

        mode_map = {
            "standalone": RedisMode.STANDALONE,
            "sentinel": RedisMode.SENTINEL,
            "cluster": RedisMode.CLUSTER,
        }
        mode = mode_map.get(_get("MODE", "standalone").lower(), RedisMode.STANDALONE)

        sentinel_hosts: Tuple[Tuple[str, int], ...] = tuple()
        sentinel_str = _get("SENTINEL_HOSTS")
        if sentinel_str:
            parsed: List[Tuple[str, int]] = []
            for entry in sentinel_str.split(","):
                host_port = entry.strip().split(":")
                if len(host_port) == 2:
                    parsed.append((host_port[0], int(host_port[1])))
            sentinel_hosts = tuple(parsed)

        return cls(
            host=_get("HOST", "localhost"),
            port=_get_int("PORT", 6379),
            password=_get("PASSWORD") or None,
            db=_get_int("DB", 0),
            mode=mode,
            sentinel_hosts=sentinel_hosts,
            sentinel_service=_get("SENTINEL_SERVICE", "mymaster"),
            max_connections=_get_int("MAX_CONNECTIONS", 50),
            connect_timeout_ms=_get_int("CONNECT_TIMEOUT_MS", 2000),
            socket_timeout_ms=_get_int("SOCKET_TIMEOUT_MS", 5000),
            ssl=_get_bool("SSL", False),
        )

    def get_connection_kwargs(self) -> Dict[str, Any]:
        """Kwargs for redis.asyncio.Redis() or RedisCluster()."""
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "max_connections": self.max_connections,
            "socket_connect_timeout": self.connect_timeout_ms / 1000.0,
            "socket_timeout": self.socket_timeout_ms / 1000.0,
            "decode_responses": False,
            "ssl": self.ssl,
        }
        if self.mode != RedisMode.CLUSTER:
            kwargs["db"] = self.db
        if self.password:
            kwargs["password"] = self.password
        return kwargs


# =============================================================================
# UNIFIED STORAGE CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Selects and configures the metric store.

    Attributes:
        backend: Store backend type.
        redis_config: Redis configuration (required if backend == REDIS).
        key_prefix: Prefix of every partition and sort key.
        compression_threshold: Payload bytes above which LZ4 is applied.
        enforce_ttl: In-memory only; hide records past their expiry.
    """
    backend: BackendType = BackendType.IN_MEMORY
    redis_config: Optional[RedisConfig] = None
    key_prefix: str = C.DEFAULT_PREFIX
    compression_threshold: int = C.COMPRESSION_THRESHOLD_BYTES
    enforce_ttl: bool = False

    def __post_init__(self) -> None:
        if self.backend == BackendType.REDIS and self.redis_config is None:
            raise ValueError("redis_config required when backend=REDIS")
        if not self.key_prefix or C.KEY_SEPARATOR in self.key_prefix:
            raise ValueError(f"key_prefix must be non-empty and free of {C.KEY_SEPARATOR!r}")
        if self.compression_threshold < 0:
            raise ValueError(f"compression_threshold must be >= 0, got {self.compression_threshold}")

    @classmethod
    def for_development(cls, key_prefix: str = C.DEFAULT_PREFIX) -> "StorageConfig":
        return cls(backend=BackendType.IN_MEMORY, key_prefix=key_prefix)

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """
        Construct configuration from environment.

        Environment Variables:
        - STORAGE_BACKEND: in_memory|redis|valkey
        - STORAGE_KEY_PREFIX: key prefix (default: metric)
        - STORAGE_COMPRESSION_THRESHOLD: bytes (default: 1024)

        Plus REDIS_* variables when the backend is Redis.
        """
        def _get(key: str, default: str = "") -> str:
            return os.environ.get(f"STORAGE_{key}", default)

        backend_map = {
            "in_memory": BackendType.IN_MEMORY,
            "redis": BackendType.REDIS,
            "valkey": BackendType.REDIS,
        }
        backend = backend_map.get(_get("BACKEND", "in_memory").lower(), BackendType.IN_MEMORY)

        threshold = _get("COMPRESSION_THRESHOLD")
        return cls(
            backend=backend,
            redis_config=RedisConfig.from_env() if backend == BackendType.REDIS else None,
            key_prefix=_get("KEY_PREFIX", C.DEFAULT_PREFIX),
            compression_threshold=int(threshold) if threshold else C.COMPRESSION_THRESHOLD_BYTES,
        )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "BackendType",
    "RedisMode",
    "RedisConfig",
    "StorageConfig",
]
