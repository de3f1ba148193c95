"""
In-memory key-value store, for tests and single-process deployments.
"""

import threading
from typing import Dict, Iterator, Optional, Tuple

from amas.store.base import KeyValueStore, VersionedValue


class InMemoryStore(KeyValueStore):
    """Dictionary-backed store guarded by a re-entrant lock."""

    def __init__(self):
        self._data: Dict[str, Dict[str, VersionedValue]] = {}
        self.lock = threading.RLock()

    def get(self, partition: str, key: str) -> Optional[VersionedValue]:
        with self.lock:
            return self._data.get(partition, {}).get(key)

    def put(self, partition: str, key: str, value: str) -> int:
        with self.lock:
            records = self._data.setdefault(partition, {})
            current = records.get(key)
            version = current.version + 1 if current is not None else 1
            records[key] = VersionedValue(value=value, version=version)
            return version

    def compare_and_swap(
        self,
        partition: str,
        key: str,
        expected_version: Optional[int],
        value: str
    ) -> bool:
        with self.lock:
            current = self._data.get(partition, {}).get(key)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                return False
            self.put(partition, key, value)
            return True

    def iterate(self, partition: str, prefix: str = "") -> Iterator[Tuple[str, VersionedValue]]:
        with self.lock:
            items = sorted(
                (k, v) for k, v in self._data.get(partition, {}).items() if k.startswith(prefix)
            )
        return iter(items)

    def delete(self, partition: str, key: str) -> bool:
        with self.lock:
            return self._data.get(partition, {}).pop(key, None) is not None

    def clear(self) -> None:
        with self.lock:
            self._data.clear()
