"""
Metrics Flush Worker

Background task that periodically drains the metrics registry into the
durable daily buckets. Store calls are blocking, so each flush runs in the
default thread pool executor; the event loop and the decision path are never
held up by persistence.
"""

import asyncio
from typing import Optional

from amas.common.logger import app_logger
from amas.metrics.persistence import FlushReport, flush_metrics, restore_from_store
from amas.metrics.registry import MetricsRegistry
from amas.store.repository import MetricsRepository

logger = app_logger.getChild("workers.metrics_flush")

DEFAULT_FLUSH_INTERVAL_SECS = 300.0


class MetricsFlushWorker:
    """
    Periodic flush of a ``MetricsRegistry``.

    Example:
        worker = MetricsFlushWorker(registry, MetricsRepository(store), interval_secs=60)
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        registry: MetricsRegistry,
        repository: MetricsRepository,
        interval_secs: float = DEFAULT_FLUSH_INTERVAL_SECS,
        restore_on_start: bool = True
    ):
        """
        Initialize the worker.

        Args:
            registry: Registry to drain
            repository: Durable metrics store
            interval_secs: Seconds between flushes
            restore_on_start: Seed the registry from today's buckets on start
        """
        if interval_secs <= 0:
            raise ValueError(f"interval_secs must be positive, got {interval_secs}")
        self.registry = registry
        self.repository = repository
        self.interval_secs = interval_secs
        self.restore_on_start = restore_on_start
        self.flush_count = 0
        self.last_report: Optional[FlushReport] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[FlushReport]:
        """Flush now. Errors are logged, never raised."""
        loop = asyncio.get_running_loop()
        try:
            report = await loop.run_in_executor(None, flush_metrics, self.registry, self.repository)
        except Exception as e:
            logger.error(f"Metrics flush failed: {e}", exc_info=True)
            return None
        self.flush_count += 1
        self.last_report = report
        return report

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_secs)
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("Metrics flush task cancelled")
                break

    async def start(self) -> None:
        """Restore today's counts (optionally) and start the periodic loop."""
        if self.running:
            logger.warning("Metrics flush worker already running")
            return
        if self.restore_on_start:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, restore_from_store, self.registry, self.repository)
        self._task = asyncio.create_task(self._run())
        logger.info(f"Metrics flush worker started (interval {self.interval_secs}s)")

    async def stop(self, final_flush: bool = True) -> None:
        """Cancel the loop and, by default, flush whatever is left."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if final_flush:
            await self.run_once()
        logger.info("Metrics flush worker stopped")
