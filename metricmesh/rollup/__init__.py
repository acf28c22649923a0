"""
Rollup module: ring-buffer aggregation across resolution tiers and span-set migration.
"""

from metricmesh.rollup.engine import RollupEngine, align_time, round_sum
from metricmesh.rollup.upgrade import UpgradeMigrator

__all__ = [
    "RollupEngine",
    "UpgradeMigrator",
    "align_time",
    "round_sum",
]
