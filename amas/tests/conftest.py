"""
Shared fixtures for the engine test suite.
"""

import datetime

import pytest

from amas.common.config import AMASConfig
from amas.engine import AMASEngine
from amas.metrics.registry import MetricsRegistry
from amas.store.memory import InMemoryStore
from amas.store.repository import MemoryStateRepository, MetricsRepository
from amas.store.sql import SqlAlchemyStore
from amas.types import FeatureVector, UserState


@pytest.fixture
def now():
    """Fixed, timezone-aware decision time"""
    return datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def day(now):
    return now.strftime("%Y-%m-%d")


@pytest.fixture
def config():
    return AMASConfig()


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Every store-backed test runs against both backends"""
    if request.param == "memory":
        backend = InMemoryStore()
    else:
        backend = SqlAlchemyStore("sqlite://")
    yield backend
    backend.close()


@pytest.fixture
def memory_repository(store):
    return MemoryStateRepository(store)


@pytest.fixture
def metrics_repository(store):
    return MetricsRepository(store)


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def engine(config, registry):
    return AMASEngine(config=config, memory_repository=MemoryStateRepository(InMemoryStore()), registry=registry)


@pytest.fixture
def engaged_user():
    """Rested, attentive, motivated learner past the cold start"""
    return UserState(attention=0.9, fatigue=0.1, motivation=0.5, total_event_count=50)


@pytest.fixture
def strong_answer():
    return FeatureVector(
        accuracy=0.9,
        response_speed=0.8,
        quality=0.86,
        engagement=0.8,
        hint_penalty=0.0,
    )
