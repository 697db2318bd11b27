"""Durable tier backed by diskcache.

Entries survive process restarts and are shared between processes using
the same directory. Every key is tagged with its group so a whole group
can be evicted natively, and counter updates run inside a diskcache
transaction so increments are atomic across threads and processes.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, TypeVar, Union

import diskcache as dc

from dashcache.domain.errors import StoreError
from dashcache.domain.interfaces.store import StoreBackend, CounterStore

logger = logging.getLogger(__name__)

# Use pathlib for proper cross-platform path handling
DEFAULT_CACHE_DIR = Path.home() / ".dashcache" / "durable"
# Seconds diskcache waits on the SQLite lock before raising diskcache.Timeout
DEFAULT_TIMEOUT_SECONDS = 1.0
COUNTER_GROUP = "__counters__"

T = TypeVar("T")


class DiskStore(StoreBackend, CounterStore):
    """StoreBackend and CounterStore over a diskcache directory."""

    name = "disk"

    def __init__(
        self,
        directory: Union[str, Path, None] = DEFAULT_CACHE_DIR,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Opens (or creates) the cache directory.

        Args:
            directory: Where diskcache keeps its SQLite database. None uses a temp dir.
            timeout: Upper bound in seconds for any single storage call.

        Raises:
            StoreError: If the directory cannot be opened.
        """
        try:
            self._cache = dc.Cache(
                str(directory) if directory is not None else None,
                timeout=timeout,
                tag_index=True,
            )
        except Exception as e:
            logger.error(f"Failed to open durable cache at {directory}: {e}", exc_info=True)
            raise StoreError(self.name, "open", e) from e
        logger.info(f"DiskStore initialized at: {self._cache.directory} (timeout={timeout}s)")

    @property
    def directory(self) -> str:
        return self._cache.directory

    @staticmethod
    def _full_key(key: str, group: str) -> str:
        return f"{group}:{key}"

    def _call(self, operation: str, func: Callable[[], T]) -> T:
        """Runs a diskcache call, wrapping any failure in StoreError."""
        try:
            return func()
        except dc.Timeout as e:
            logger.warning(f"DiskStore {operation} timed out: {e}")
            raise StoreError(self.name, operation, e) from e
        except Exception as e:
            logger.error(f"DiskStore {operation} failed: {e}", exc_info=True)
            raise StoreError(self.name, operation, e) from e

    # --- StoreBackend ---

    def get(self, key: str, group: str) -> Optional[Any]:
        return self._call("get", lambda: self._cache.get(self._full_key(key, group), default=None))

    def set(self, key: str, value: Any, ttl: Optional[int], group: str) -> bool:
        return bool(self._call(
            "set",
            lambda: self._cache.set(self._full_key(key, group), value, expire=ttl, tag=group),
        ))

    def delete(self, key: str, group: str) -> bool:
        return bool(self._call("delete", lambda: self._cache.delete(self._full_key(key, group))))

    def clear_group(self, group: str) -> int:
        removed = self._call("clear_group", lambda: self._cache.evict(group))
        logger.info(f"DiskStore cleared group '{group}' ({removed} entries)")
        return removed

    # --- CounterStore ---

    def get_count(self, key: str) -> int:
        value = self._call("get_count", lambda: self._cache.get(self._full_key(key, COUNTER_GROUP), default=0))
        return int(value)

    def increment_below(self, key: str, limit: int, ttl: int) -> Tuple[bool, int]:
        full_key = self._full_key(key, COUNTER_GROUP)

        def _increment() -> Tuple[bool, int]:
            with self._cache.transact():
                count = int(self._cache.get(full_key, default=0))
                if count >= limit:
                    return False, count
                count += 1
                self._cache.set(full_key, count, expire=ttl, tag=COUNTER_GROUP)
                return True, count

        return self._call("increment_below", _increment)

    def reset(self, key: str) -> None:
        self._call("reset", lambda: self._cache.delete(self._full_key(key, COUNTER_GROUP)))

    def close(self) -> None:
        self._cache.close()
