"""
Engine Exception Classes

This module defines the error kinds raised inside the decision engine. None of
them is allowed to escape ``AMASEngine.decide``; they exist so that the
collaborating layers can tell a clamped input from a lost metrics write.
"""

from typing import Optional, Any


class AmasError(Exception):
    """Base class for all engine exceptions."""

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize the exception.

        Args:
            message: Error message
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class InvalidInputRange(AmasError):
    """A caller supplied a value outside its declared domain."""

    def __init__(self, field: str, value: Any, low: float, high: float):
        super().__init__(f"{field}={value!r} outside [{low}, {high}]")
        self.field = field
        self.value = value
        self.low = low
        self.high = high


class EmptyCandidateSet(AmasError):
    """The ensemble was asked to combine zero candidates."""

    def __init__(self, message: str = "No strategy candidates to combine"):
        super().__init__(message)


class PersistenceWriteFailure(AmasError):
    """Merging one algorithm's counters into the durable store failed."""

    def __init__(self, algorithm_id: str, day: str, original_exception: Optional[Exception] = None):
        """
        Initialize the write failure.

        Args:
            algorithm_id: Algorithm whose bucket could not be written
            day: Day bucket (YYYY-MM-DD)
            original_exception: Underlying store error
        """
        super().__init__(
            f"Failed to persist metrics for {algorithm_id} on {day}",
            original_exception
        )
        self.algorithm_id = algorithm_id
        self.day = day


class SerializationFailure(AmasError):
    """A persisted record could not be decoded."""

    def __init__(self, partition: str, key: str, original_exception: Optional[Exception] = None):
        super().__init__(f"Could not decode {partition}/{key}", original_exception)
        self.partition = partition
        self.key = key


class ContentionExhausted(AmasError):
    """Compare-and-swap retries ran out while updating a record."""

    def __init__(self, partition: str, key: str, attempts: int):
        """
        Initialize the contention error.

        Args:
            partition: Store partition of the contended record
            key: Record key
            attempts: Number of attempts made
        """
        super().__init__(
            f"CAS retry exhausted after {attempts} attempts: partition={partition}, key={key}"
        )
        self.partition = partition
        self.key = key
        self.attempts = attempts


class ConfigurationError(AmasError):
    """Exception raised for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        """
        Initialize the configuration error.

        Args:
            message: Error message
            config_key: The configuration key that caused the error
        """
        super().__init__(f"Configuration error: {message}")
        self.config_key = config_key
