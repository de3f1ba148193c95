"""
Algorithm Metrics

Per-algorithm call counters and their persistence into daily buckets.
"""

from amas.metrics.registry import MetricsRegistry
from amas.metrics.persistence import FlushReport, flush_metrics, restore_from_store

__all__ = ['MetricsRegistry', 'FlushReport', 'flush_metrics', 'restore_from_store']
