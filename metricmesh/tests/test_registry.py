"""
Tests for the process-wide instance registry and shutdown hooks.

Run: python -m pytest metricmesh/tests/test_registry.py -v
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Callable, Optional

import pytest

from metricmesh.registry import InstanceRegistry, install_signal_handlers, registry_key


class FakeHandle:
    def __init__(self) -> None:
        self.flushes: list[Optional[float]] = []

    async def flush(self, timestamp: Optional[float] = None) -> None:
        self.flushes.append(timestamp)


class FakeLoop:
    def __init__(self, supported: bool = True) -> None:
        self.supported = supported
        self.handlers: dict[int, tuple[Callable[..., Any], tuple]] = {}

    def add_signal_handler(self, sig: int, callback: Callable[..., Any], *args: Any) -> None:
        if not self.supported:
            raise NotImplementedError
        self.handlers[sig] = (callback, args)


class TestInstanceRegistry:
    """Tag-keyed handle cache."""

    def test_key_is_order_independent(self) -> None:
        assert registry_key({"a": 1, "b": 2}) == registry_key({"b": 2, "a": 1})

    def test_get_or_create_reuses(self) -> None:
        registry = InstanceRegistry()
        created: list[FakeHandle] = []

        def factory() -> FakeHandle:
            created.append(FakeHandle())
            return created[-1]

        first = registry.get_or_create({"app": "launcher"}, factory)
        second = registry.get_or_create({"app": "launcher"}, factory)

        assert first is second
        assert len(created) == 1
        assert {"app": "launcher"} in registry

    def test_allocate_replaces(self) -> None:
        registry = InstanceRegistry()
        old = registry.allocate({"app": "x"}, FakeHandle)
        new = registry.allocate({"app": "x"}, FakeHandle)
        assert old is not new
        assert registry.get({"app": "x"}) is new
        assert len(registry) == 1

    def test_free(self) -> None:
        registry = InstanceRegistry()
        registry.save({"app": "x"}, FakeHandle())
        assert registry.free({"app": "x"})
        assert not registry.free({"app": "x"})
        assert registry.get({"app": "x"}) is None

    @pytest.mark.asyncio
    async def test_flush_all_once_per_handle(self) -> None:
        registry = InstanceRegistry()
        shared = FakeHandle()
        other = FakeHandle()
        registry.save({"key": "a"}, shared)
        registry.save({"key": "b"}, shared)
        registry.save({"key": "c"}, other)

        assert await registry.flush_all(123) == 2

        assert shared.flushes == [123]
        assert other.flushes == [123]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_schedule_flush(self) -> None:
        registry = InstanceRegistry()
        handle = FakeHandle()
        registry.save({"key": "a"}, handle)

        assert await registry.schedule_flush() == 1
        assert handle.flushes == [None]


class TestSignalHandlers:
    """Flush on termination signals."""

    @pytest.mark.asyncio
    async def test_signal_flushes(self) -> None:
        registry = InstanceRegistry()
        handle = FakeHandle()
        registry.save({"key": "a"}, handle)
        loop = FakeLoop()

        install_signal_handlers(registry, loop)
        callback, args = loop.handlers[signal.SIGTERM]
        callback(*args)
        for _ in range(3):
            await asyncio.sleep(0)

        assert handle.flushes == [None]

    def test_default_signals(self) -> None:
        loop = FakeLoop()
        install_signal_handlers(InstanceRegistry(), loop)
        assert set(loop.handlers) == {signal.SIGTERM, signal.SIGINT}

    def test_unsupported_platform(self) -> None:
        install_signal_handlers(InstanceRegistry(), FakeLoop(supported=False))
