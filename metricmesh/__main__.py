#!/usr/bin/env python3
"""
Metric Mesh Command Line

Usage:
    python -m metricmesh demo
    python -m metricmesh emit myapp/launcher Launches 1 --dim Rocket=SaturnV
    python -m metricmesh query myapp/launcher Launches --period 3600 --stat sum --dim Rocket=SaturnV
    python -m metricmesh list myapp/launcher

    # emit/query/list talk to Redis
    STORAGE_BACKEND=redis REDIS_HOST=redis.example.com python -m metricmesh list
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from typing import Optional, Sequence

from metricmesh.core.config import MetricsConfig
from metricmesh.core.errors import MetricMeshError
from metricmesh.database import MetricsDatabaseLayer
from metricmesh.observability.logging import LogLevel, setup_logging
from metricmesh.query.listing import format_query, format_record
from metricmesh.storage import InMemoryMetricStore, StorageConfig


async def demo_local_mode() -> None:
    """Emit and query a small series against the in-memory store."""
    print("\n" + "=" * 60)
    print("Metric Mesh - Local Demo")
    print("=" * 60 + "\n")

    config = MetricsConfig.create(p_resolution=100)
    db = MetricsDatabaseLayer(config, InMemoryMetricStore(prefix=config.prefix))
    print(f"✓ Spans: {', '.join(f'{s.period}s/{s.samples}' for s in config.spans)}")

    now = int(time.time())
    dims = [{}, {"Rocket": "SaturnV"}]
    for i in range(30):
        await db.emit("myapp/launcher", "Launches", i % 7, dims, timestamp=now - 300 + i * 10)
    print("✓ Emitted 30 values into 2 dimension sets")

    for stat in ("sum", "avg", "max", "p90", "current"):
        result = await db.query(
            "myapp/launcher", "Launches", {"Rocket": "SaturnV"}, 3600, stat,
            accumulate=True, timestamp=now,
        )
        print(f"  {stat:>8} = {result.value}")

    series = await db.query("myapp/launcher", "Launches", {}, 300, "sum", timestamp=now)
    print("\n" + format_query(series))

    listing = await db.get_metric_list("myapp/launcher", "Launches")
    print(f"\n✓ Namespaces: {listing.namespaces}")
    print(f"  Metrics: {listing.metrics}")
    print(f"  Dimensions: {listing.dimensions}")

    await db.close()
    print("\n✓ Demo complete")
    print("=" * 60 + "\n")


async def _open() -> MetricsDatabaseLayer:
    loaded = MetricsConfig.from_env()
    if loaded.is_err():
        print(loaded.error)
        sys.exit(1)
    created = await MetricsDatabaseLayer.create(loaded.unwrap(), StorageConfig.from_env())
    if created.is_err():
        print(f"Storage error: {created.error}")
        sys.exit(1)
    return created.unwrap()


def _dimensions(pairs: Optional[Sequence[str]]) -> dict[str, str]:
    dimensions: dict[str, str] = {}
    for pair in pairs or ():
        name, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Bad dimension {pair!r}, expected NAME=VALUE")
        dimensions[name] = value
    return dimensions


async def run_command(args: argparse.Namespace) -> None:
    if args.command == "demo":
        await demo_local_mode()
        return

    db = await _open()
    try:
        if args.command == "emit":
            record = await db.emit(
                args.namespace, args.metric, args.value, [_dimensions(args.dim)], log=True,
            )
            print(format_record(record))
        elif args.command == "query":
            result = await db.query(
                args.namespace, args.metric, _dimensions(args.dim), args.period, args.stat,
                accumulate=args.accumulate,
            )
            print(format_query(result))
        elif args.command == "list":
            listing = await db.get_metric_list(args.namespace, args.metric)
            print(f"namespaces: {listing.namespaces}")
            if listing.metrics is not None:
                print(f"metrics: {listing.metrics}")
            if listing.dimensions is not None:
                print(f"dimensions: {listing.dimensions}")
    finally:
        await db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="metricmesh", description="Multi-resolution metrics store")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("demo", help="In-memory walkthrough")

    emit = commands.add_parser("emit", help="Emit one value")
    emit.add_argument("namespace")
    emit.add_argument("metric")
    emit.add_argument("value", type=float)
    emit.add_argument("--dim", action="append", metavar="NAME=VALUE")

    query = commands.add_parser("query", help="Query one statistic")
    query.add_argument("namespace")
    query.add_argument("metric")
    query.add_argument("--period", type=int, default=3600)
    query.add_argument("--stat", default="avg")
    query.add_argument("--accumulate", action="store_true")
    query.add_argument("--dim", action="append", metavar="NAME=VALUE")

    listing = commands.add_parser("list", help="List namespaces, metrics and dimensions")
    listing.add_argument("namespace", nargs="?")
    listing.add_argument("metric", nargs="?")
    return parser


async def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(LogLevel.DEBUG if args.verbose else LogLevel.INFO, json_output=False)
    try:
        await run_command(args)
    except KeyboardInterrupt:
        print("\nInterrupted")
    except MetricMeshError as e:
        print(f"Error: {e}")
        sys.exit(1)


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
