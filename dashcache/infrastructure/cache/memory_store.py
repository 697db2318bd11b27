"""In-process fast tier.

A bounded dictionary of CacheEntry records with lazy expiry pruning,
usable both as the CacheService fast tier and as a counter store for
single-process deployments and tests.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from dashcache.domain.interfaces.store import StoreBackend, CounterStore
from dashcache.domain.models.cache import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 1000
COUNTER_GROUP = "__counters__"
COUNTER_SWEEP_SECONDS = 60


class MemoryStore(StoreBackend, CounterStore):
    """Thread-safe in-memory store with TTLs and insertion-order eviction."""

    name = "memory"

    def __init__(self, max_items: int = DEFAULT_MAX_ITEMS, clock: Callable[[], float] = time.time):
        """Initializes the memory store.

        Args:
            max_items: Maximum number of live entries before the oldest are evicted.
            clock: Time source, injectable for tests.
        """
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        # Counters live apart so size-based eviction never drops them
        self._counters: Dict[str, CacheEntry] = {}
        self._max_items = max_items
        self._clock = clock
        self._lock = threading.Lock()
        self._next_counter_sweep = clock() + COUNTER_SWEEP_SECONDS
        logger.info(f"MemoryStore initialized (max_items={max_items})")

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl is not None else None

    def _live_entry(self, group: str, key: str) -> Optional[CacheEntry]:
        """Returns the entry if present and fresh. Caller must hold the lock."""
        entry = self._entries.get((group, key))
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[(group, key)]
            return None
        return entry

    def _live_counter(self, key: str) -> Optional[CacheEntry]:
        """Same as _live_entry for counters. Caller must hold the lock."""
        entry = self._counters.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._counters[key]
            return None
        return entry

    def _prune(self) -> None:
        """Removes expired entries and evicts the oldest over the size limit. Caller must hold the lock."""
        now = self._clock()
        self._sweep_counters(now)
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for k in expired:
            del self._entries[k]

        while len(self._entries) > self._max_items:
            # Oldest by insertion order
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug(f"MemoryStore evicted key: {oldest[0]}:{oldest[1]}")

    def _sweep_counters(self, now: float) -> None:
        """Drops expired counters at most once per COUNTER_SWEEP_SECONDS. Caller must hold the lock."""
        if now < self._next_counter_sweep:
            return
        self._next_counter_sweep = now + COUNTER_SWEEP_SECONDS
        expired = [k for k, entry in self._counters.items() if entry.is_expired(now)]
        for k in expired:
            del self._counters[k]
        if expired:
            logger.debug(f"MemoryStore dropped {len(expired)} expired counters")

    # --- StoreBackend ---

    def get(self, key: str, group: str) -> Optional[Any]:
        with self._lock:
            entry = self._live_entry(group, key)
            return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: Optional[int], group: str) -> bool:
        with self._lock:
            # Re-inserting moves the key to the back of the eviction order
            self._entries.pop((group, key), None)
            self._entries[(group, key)] = CacheEntry(key=key, group=group, value=value, expires_at=self._expiry(ttl))
            self._prune()
        return True

    def delete(self, key: str, group: str) -> bool:
        with self._lock:
            if self._live_entry(group, key) is None:
                return False
            del self._entries[(group, key)]
            return True

    def clear_group(self, group: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k[0] == group]
            for k in doomed:
                del self._entries[k]
        logger.info(f"MemoryStore cleared group '{group}' ({len(doomed)} entries)")
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._entries)

    # --- CounterStore ---

    def get_count(self, key: str) -> int:
        with self._lock:
            entry = self._live_counter(key)
            return int(entry.value) if entry is not None else 0

    def increment_below(self, key: str, limit: int, ttl: int) -> Tuple[bool, int]:
        with self._lock:
            self._sweep_counters(self._clock())
            entry = self._live_counter(key)
            count = int(entry.value) if entry is not None else 0
            if count >= limit:
                return False, count
            count += 1
            self._counters[key] = CacheEntry(key=key, group=COUNTER_GROUP, value=count, expires_at=self._expiry(ttl))
            return True, count

    def reset(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)
