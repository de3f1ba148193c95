"""
Runtime Initialization

Builds the engine's long-lived components at process start-up:
1. Logging from ``AppSettings``
2. Configuration loading
3. Durable store
4. Metrics registry and flush worker
5. Decision engine and its monitor
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from amas.common.config import AMASConfig, AppSettings, load_config
from amas.common.logger import configure_logger
from amas.engine import AMASEngine
from amas.metrics.registry import MetricsRegistry
from amas.monitoring import DecisionMonitor
from amas.store.base import KeyValueStore
from amas.store.repository import MemoryStateRepository, MetricsRepository, MonitoringRepository
from amas.store.sql import SqlAlchemyStore
from amas.workers.metrics_flush import MetricsFlushWorker


@dataclass
class Runtime:
    """Components shared for the lifetime of the process."""
    settings: AppSettings
    config: AMASConfig
    store: KeyValueStore
    registry: MetricsRegistry
    engine: AMASEngine
    flush_worker: MetricsFlushWorker


def build_runtime(
    settings: Optional[AppSettings] = None,
    config: Optional[AMASConfig] = None,
    store: Optional[KeyValueStore] = None
) -> Runtime:
    """
    Create every long-lived component.

    Args:
        settings: Process settings (read from the environment when omitted)
        config: Engine configuration (loaded from ``settings.config_path`` when omitted)
        store: Key-value store (a ``SqlAlchemyStore`` on ``settings.database_url`` when omitted)

    Returns:
        Wired runtime; the flush worker is not started yet
    """
    settings = settings or AppSettings()
    logger = configure_logger(level=settings.log_level, use_json=settings.log_json, log_file=settings.log_file)

    config = config or load_config(settings.config_path)
    if settings.monitor_sample_rate is not None:
        config = config.model_copy(update={
            "monitoring": config.monitoring.model_copy(update={"sample_rate": settings.monitor_sample_rate})
        })
    store = store or SqlAlchemyStore(settings.database_url)
    registry = MetricsRegistry()
    engine = AMASEngine(
        config=config,
        memory_repository=MemoryStateRepository(store),
        registry=registry,
        monitor=DecisionMonitor(MonitoringRepository(store)),
    )

    interval = settings.metrics_flush_interval_secs or config.monitoring.metrics_flush_interval_secs
    worker = MetricsFlushWorker(registry, MetricsRepository(store), interval_secs=interval)

    logger.info(f"AMAS runtime initialized (store={type(store).__name__}, flush every {interval}s)")
    return Runtime(settings=settings, config=config, store=store, registry=registry, engine=engine, flush_worker=worker)


@asynccontextmanager
async def runtime_lifespan(runtime: Runtime):
    """
    Run the flush worker for the duration of the block.

    Example:
        async with runtime_lifespan(build_runtime()) as runtime:
            runtime.engine.decide(...)
    """
    await runtime.flush_worker.start()
    try:
        yield runtime
    finally:
        await runtime.flush_worker.stop()
        runtime.store.close()
