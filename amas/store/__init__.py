"""
Storage

Versioned key-value store contract, its backends and typed repositories.
"""

from amas.store.base import KeyValueStore, VersionedValue, update_with_retry, MAX_CAS_RETRIES
from amas.store.memory import InMemoryStore
from amas.store.sql import SqlAlchemyStore
from amas.store.repository import MemoryStateRepository, MetricsRepository

__all__ = [
    'KeyValueStore',
    'VersionedValue',
    'update_with_retry',
    'MAX_CAS_RETRIES',
    'InMemoryStore',
    'SqlAlchemyStore',
    'MemoryStateRepository',
    'MetricsRepository'
]
