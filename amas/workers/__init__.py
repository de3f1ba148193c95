"""Background workers."""

from amas.workers.metrics_flush import MetricsFlushWorker

__all__ = ['MetricsFlushWorker']
