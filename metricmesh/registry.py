"""
Instance Registry: Process-Wide Handle Cache

Maps tag sets to live metrics handles so short-lived callers can reuse one
handle (and its buffer) per configuration, and so shutdown can flush every
buffered value in the process.

Tags are canonicalized as sorted-key JSON, so {"a": 1, "b": 2} and
{"b": 2, "a": 1} address the same handle.

Thread Safety:
    The instance map is guarded by a threading.Lock. Flushing happens
    outside the lock, on a snapshot.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import threading
from typing import Any, Callable, Mapping, Optional, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Flushable(Protocol):
    async def flush(self, timestamp: Optional[float] = None) -> Any:
        ...


H = TypeVar("H", bound=Flushable)


def registry_key(tags: Mapping[str, Any]) -> str:
    return json.dumps(dict(tags), sort_keys=True, default=str)


class InstanceRegistry:
    """
    Explicit, injectable replacement for a module-level instance cache.

    Usage:
        registry = InstanceRegistry()
        db = registry.get_or_create({"app": "launcher"}, lambda: MetricsDatabaseLayer(config))
        ...
        await registry.flush_all()
    """

    __slots__ = ("_instances", "_lock", "_tasks")

    def __init__(self) -> None:
        self._instances: dict[str, Flushable] = {}
        self._lock = threading.Lock()
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    def __contains__(self, tags: Mapping[str, Any]) -> bool:
        with self._lock:
            return registry_key(tags) in self._instances

    def allocate(self, tags: Mapping[str, Any], factory: Callable[[], H]) -> H:
        """Create a fresh handle and register it, replacing any under the same tags."""
        instance = factory()
        self.save(tags, instance)
        return instance

    def get(self, tags: Mapping[str, Any]) -> Optional[Flushable]:
        with self._lock:
            return self._instances.get(registry_key(tags))

    def get_or_create(self, tags: Mapping[str, Any], factory: Callable[[], H]) -> H:
        key = registry_key(tags)
        with self._lock:
            instance = self._instances.get(key)
            if instance is None:
                instance = factory()
                self._instances[key] = instance
            return instance

    def save(self, tags: Mapping[str, Any], instance: Flushable) -> None:
        with self._lock:
            self._instances[registry_key(tags)] = instance

    def free(self, tags: Mapping[str, Any]) -> bool:
        """Forget the handle under `tags`. Pending buffered values are not flushed."""
        with self._lock:
            return self._instances.pop(registry_key(tags), None) is not None

    async def flush_all(self, timestamp: Optional[float] = None) -> int:
        """
        Flush and forget every registered handle.

        A handle saved under several tag sets is flushed once. Returns the
        number of handles flushed.
        """
        with self._lock:
            instances = list(self._instances.values())
            self._instances.clear()

        seen: set[int] = set()
        for instance in instances:
            if id(instance) in seen:
                continue
            seen.add(id(instance))
            await instance.flush(timestamp)
        logger.debug(f"Flushed {len(seen)} registered metrics handles")
        return len(seen)

    def schedule_flush(self) -> asyncio.Task:
        """Start flush_all() as a task on the running loop."""
        task = asyncio.get_running_loop().create_task(self.flush_all())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def install_signal_handlers(
    registry: InstanceRegistry,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    signals: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT),
) -> None:
    """
    Flush every registered handle when the process is asked to terminate.

    Must be called from a running event loop (or with `loop`). Platforms
    without loop signal support (Windows) are skipped with a warning.
    """
    loop = loop or asyncio.get_running_loop()

    def _on_signal(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, flushing buffered metrics")
        registry.schedule_flush()

    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except NotImplementedError:
            logger.warning(f"Signal handlers not supported here; {sig.name} will not flush metrics")
