"""
Pipeline module: buffered emits and the conditional-write loop.
"""

from metricmesh.pipeline.buffer import BufferEntry, MetricBuffer
from metricmesh.pipeline.writer import MetricWriter, next_seq

__all__ = [
    "BufferEntry",
    "MetricBuffer",
    "MetricWriter",
    "next_seq",
]
