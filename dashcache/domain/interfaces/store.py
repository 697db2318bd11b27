"""Interfaces for key/value storage backends.

Defines the contract for group-scoped storage with expiration, and for
the atomic counters rate limiting depends on.
"""

import abc
from typing import Any, Optional, Tuple


class StoreBackend(abc.ABC):
    """Abstract Base Class for a group-scoped key/value store."""

    name: str = "store"

    @abc.abstractmethod
    def get(self, key: str, group: str) -> Optional[Any]:
        """Retrieves a value.

        Args:
            key: The key within the group.
            group: The namespace the key belongs to.

        Returns:
            The stored value if present and not expired, otherwise None.

        Raises:
            StoreError: If the underlying storage could not be read.
        """
        pass

    @abc.abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int], group: str) -> bool:
        """Stores a value.

        Args:
            key: The key within the group.
            value: The value to store.
            ttl: Time-to-live in seconds, or None for no expiry.
            group: The namespace the key belongs to.

        Returns:
            True if the value was stored.

        Raises:
            StoreError: If the underlying storage could not be written.
        """
        pass

    @abc.abstractmethod
    def delete(self, key: str, group: str) -> bool:
        """Removes a value.

        Returns:
            True only if the key existed and was removed.

        Raises:
            StoreError: If the underlying storage could not be written.
        """
        pass

    @abc.abstractmethod
    def clear_group(self, group: str) -> int:
        """Removes every key in a group.

        Returns:
            The number of entries removed.
        """
        pass


class CounterStore(abc.ABC):
    """Abstract Base Class for expiring integer counters."""

    @abc.abstractmethod
    def get_count(self, key: str) -> int:
        """Returns the counter value, 0 when absent or expired."""
        pass

    @abc.abstractmethod
    def increment_below(self, key: str, limit: int, ttl: int) -> Tuple[bool, int]:
        """Atomically increments a counter if it is below a limit.

        The read, comparison and write happen as one operation, so concurrent
        callers can never push the counter past `limit`.

        Args:
            key: The counter key.
            limit: The counter is only incremented while strictly below this.
            ttl: Expiration in seconds applied when the counter is written.

        Returns:
            (incremented, count) where count is the value after the call.
        """
        pass

    @abc.abstractmethod
    def reset(self, key: str) -> None:
        """Drops a counter so the next read returns 0."""
        pass
