"""
Key-Value Store Contract

The engine persists everything as JSON text in named partitions of a
versioned key-value store. Every record carries a version that increases on
each write; ``compare_and_swap`` only writes when the caller saw the latest
version, which lets concurrent writers update records without locks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Tuple

from amas.common.exceptions import ContentionExhausted
from amas.common.logger import app_logger

logger = app_logger.getChild("store")

MAX_CAS_RETRIES = 20


@dataclass(frozen=True)
class VersionedValue:
    """A stored value and the version it was read at."""
    value: str
    version: int


class KeyValueStore(ABC):
    """
    Abstract partitioned key-value store.

    Implementations must make ``compare_and_swap`` atomic with respect to
    every other write on the same record.
    """

    @abstractmethod
    def get(self, partition: str, key: str) -> Optional[VersionedValue]:
        """
        Read a record.

        Args:
            partition: Partition name
            key: Record key

        Returns:
            The value and its version, or None if absent
        """
        pass

    @abstractmethod
    def put(self, partition: str, key: str, value: str) -> int:
        """
        Unconditionally write a record.

        Returns:
            The new version
        """
        pass

    @abstractmethod
    def compare_and_swap(
        self,
        partition: str,
        key: str,
        expected_version: Optional[int],
        value: str
    ) -> bool:
        """
        Write a record only if it is still at ``expected_version``.

        Args:
            partition: Partition name
            key: Record key
            expected_version: Version the caller read, None if it saw no record
            value: New value

        Returns:
            Whether the write happened
        """
        pass

    @abstractmethod
    def iterate(self, partition: str, prefix: str = "") -> Iterator[Tuple[str, VersionedValue]]:
        """Yield ``(key, value)`` pairs whose key starts with ``prefix``, in key order."""
        pass

    @abstractmethod
    def delete(self, partition: str, key: str) -> bool:
        """
        Remove a record.

        Returns:
            Whether a record was removed
        """
        pass

    def close(self) -> None:
        """Release backend resources."""
        pass


def update_with_retry(
    store: KeyValueStore,
    partition: str,
    key: str,
    mutate: Callable[[Optional[str]], str],
    max_attempts: int = MAX_CAS_RETRIES
) -> str:
    """
    Read-modify-write a record with optimistic concurrency.

    ``mutate`` receives the current value (None when absent) and returns the
    new value. It may run several times and must not have side effects.

    Args:
        store: Backing store
        partition: Partition name
        key: Record key
        mutate: Function producing the new value
        max_attempts: Maximum number of compare-and-swap attempts

    Returns:
        The value that was written

    Raises:
        ContentionExhausted: If every attempt lost a race
    """
    for attempt in range(1, max_attempts + 1):
        current = store.get(partition, key)
        new_value = mutate(current.value if current is not None else None)
        expected = current.version if current is not None else None
        if store.compare_and_swap(partition, key, expected, new_value):
            if attempt > 1:
                logger.debug(f"CAS on {partition}/{key} succeeded after {attempt} attempts")
            return new_value

    logger.warning(f"CAS retry exhausted for {partition}/{key} after {max_attempts} attempts")
    raise ContentionExhausted(partition, key, max_attempts)
