"""Two-tier caching service.

Unifies a fast tier and a durable tier behind one fail-soft contract:
reads try the fast tier first, writes and deletes go to both tiers, and
every operation is published to subscribed observers as a domain event.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from dashcache.domain.errors import CacheBackendError, StoreError
from dashcache.domain.events.cache_events import (
    CacheEvent, CacheHit, CacheMiss, CacheSet, CacheDeleted, CacheTimed,
)
from dashcache.domain.interfaces.cache_observer import CacheObserver
from dashcache.domain.interfaces.store import StoreBackend
from dashcache.domain.models.common import FailurePolicy

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "athlete_dashboard"
DEFAULT_TTL_SECONDS = 60 * 60  # 1 hour
DEFAULT_SINGLE_FLIGHT_WAIT_SECONDS = 30.0
USER_CACHE_KINDS: Tuple[str, ...] = ("profile", "preferences", "settings", "meta")


class _InFlight:
    """A producer call other callers for the same key can wait on."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: Any = None
        self.error: Optional[BaseException] = None


class CacheService:
    """Fast tier + durable tier cache with get/set/delete/remember semantics.

    `None` means "absent" throughout, so `None` is never stored.
    """

    def __init__(
        self,
        fast_store: StoreBackend,
        durable_store: StoreBackend,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        default_group: str = DEFAULT_GROUP,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN,
        single_flight: bool = False,
        single_flight_wait: float = DEFAULT_SINGLE_FLIGHT_WAIT_SECONDS,
    ):
        """Initializes the cache service.

        Args:
            fast_store: The in-process tier, read first.
            durable_store: The persistent tier, read on a fast-tier miss.
            default_ttl: Expiration in seconds when callers pass none; 0 disables expiry.
            default_group: Group used when callers pass none.
            failure_policy: FAIL_OPEN degrades backend errors to misses and failed
                writes; FAIL_CLOSED raises CacheBackendError.
            single_flight: Default mode for remember(); when True concurrent
                callers for one key share a single producer call.
            single_flight_wait: Seconds a waiting caller blocks before computing
                the value itself.
        """
        self._fast = fast_store
        self._durable = durable_store
        self.default_ttl = default_ttl
        self.default_group = default_group
        self.failure_policy = failure_policy
        self.single_flight = single_flight
        self.single_flight_wait = single_flight_wait

        self._observers: List[CacheObserver] = []
        self._inflight: Dict[Tuple[str, str], _InFlight] = {}
        self._inflight_lock = threading.Lock()
        self._counter_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

        logger.info(
            f"CacheService initialized: fast={fast_store.name}, durable={durable_store.name}, "
            f"ttl={default_ttl}s, group='{default_group}', policy={failure_policy.value}, "
            f"single_flight={single_flight}"
        )

    # --- Observers ---

    def subscribe(self, observer: CacheObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: CacheObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _publish(self, event: CacheEvent) -> None:
        for observer in list(self._observers):
            try:
                observer.on_event(event)
            except Exception as e:
                logger.error(f"Cache observer {observer.__class__.__name__} failed on {type(event).__name__}: {e}", exc_info=True)

    # --- Backend access ---

    def _group(self, group: Optional[str]) -> str:
        return group or self.default_group

    def _attempt(self, store: StoreBackend, operation: str, func: Callable[[], Any]) -> Tuple[Any, Optional[StoreError]]:
        """Runs one backend call, returning (result, error) instead of raising."""
        try:
            return func(), None
        except StoreError as e:
            logger.warning(f"Cache {operation} on {store.name} tier failed, degrading: {e}")
            return None, e

    def _raise_if_closed(self, operation: str, errors: List[Optional[StoreError]]) -> None:
        failures = [e for e in errors if e is not None]
        if failures and self.failure_policy is FailurePolicy.FAIL_CLOSED:
            raise CacheBackendError(f"Cache {operation} failed: {failures[0]}") from failures[0]

    # --- Public interface ---

    def get(self, key: str, group: Optional[str] = None) -> Optional[Any]:
        """Reads the fast tier, then the durable tier.

        A value found only in the durable tier is returned as-is; the fast
        tier is not repopulated from it.

        Returns:
            The cached value, or None if absent from both tiers.
        """
        group = self._group(group)
        started = time.perf_counter()

        value, fast_error = self._attempt(self._fast, "get", lambda: self._fast.get(key, group))
        tier = "fast"
        durable_error = None
        if value is None:
            value, durable_error = self._attempt(self._durable, "get", lambda: self._durable.get(key, group))
            tier = "durable"

        duration_ms = (time.perf_counter() - started) * 1000
        self._raise_if_closed("get", [fast_error, durable_error])

        with self._counter_lock:
            if value is not None:
                self._hits += 1
            else:
                self._misses += 1

        if value is not None:
            logger.debug(f"Cache HIT ({tier}) for key: {group}:{key}")
            self._publish(CacheHit(key=key, group=group, tier=tier))
        else:
            logger.debug(f"Cache MISS for key: {group}:{key}")
            self._publish(CacheMiss(key=key, group=group))
        self._publish(CacheTimed(key=key, duration_ms=duration_ms))
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None, group: Optional[str] = None) -> bool:
        """Writes to both tiers.

        Returns:
            True only if both tiers accepted the write. A tier that succeeded
            is not rolled back when the other fails.
        """
        group = self._group(group)
        if value is None:
            logger.debug(f"Refusing to cache None for key: {group}:{key}")
            return False
        effective_ttl = ttl if ttl is not None else self.default_ttl
        if effective_ttl is not None and effective_ttl <= 0:
            effective_ttl = None  # 0 means "never expires"

        fast_ok, fast_error = self._attempt(self._fast, "set", lambda: self._fast.set(key, value, effective_ttl, group))
        durable_ok, durable_error = self._attempt(
            self._durable, "set", lambda: self._durable.set(key, value, effective_ttl, group)
        )
        self._raise_if_closed("set", [fast_error, durable_error])

        success = bool(fast_ok) and bool(durable_ok)
        if success:
            logger.debug(f"Cache SET key: {group}:{key} TTL: {f'{effective_ttl}s' if effective_ttl is not None else 'none'}")
            self._publish(CacheSet(key=key, group=group, value=value, ttl=effective_ttl))
        else:
            logger.warning(f"Cache SET incomplete for key {group}:{key} (fast={bool(fast_ok)}, durable={bool(durable_ok)})")
        return success

    def delete(self, key: str, group: Optional[str] = None) -> bool:
        """Deletes from both tiers; True only if both reported a removal."""
        group = self._group(group)
        fast_ok, fast_error = self._attempt(self._fast, "delete", lambda: self._fast.delete(key, group))
        durable_ok, durable_error = self._attempt(self._durable, "delete", lambda: self._durable.delete(key, group))
        self._raise_if_closed("delete", [fast_error, durable_error])

        success = bool(fast_ok) and bool(durable_ok)
        if success:
            logger.debug(f"Cache DELETE key: {group}:{key}")
            self._publish(CacheDeleted(key=key, group=group))
        return success

    def remember(
        self,
        key: str,
        producer: Callable[[], Any],
        ttl: Optional[int] = None,
        group: Optional[str] = None,
        single_flight: Optional[bool] = None,
    ) -> Any:
        """Returns the cached value, computing and storing it on a miss.

        Without single-flight, concurrent callers that miss on the same key
        each run `producer`. Producer exceptions propagate to the caller.
        """
        value = self.get(key, group)
        if value is not None:
            return value

        use_single_flight = self.single_flight if single_flight is None else single_flight
        if use_single_flight:
            return self._remember_single_flight(key, producer, ttl, self._group(group))

        value = producer()
        self.set(key, value, ttl, group)
        return value

    def _remember_single_flight(self, key: str, producer: Callable[[], Any], ttl: Optional[int], group: str) -> Any:
        flight_key = (group, key)
        with self._inflight_lock:
            call = self._inflight.get(flight_key)
            leader = call is None
            if leader:
                call = _InFlight()
                self._inflight[flight_key] = call

        if not leader:
            if call.done.wait(self.single_flight_wait):
                if call.error is not None:
                    raise call.error
                return call.value
            logger.warning(f"Timed out waiting for in-flight computation of {group}:{key}; computing directly.")
            value = producer()
            self.set(key, value, ttl, group)
            return value

        try:
            call.value = producer()
            self.set(key, call.value, ttl, group)
            return call.value
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._inflight_lock:
                self._inflight.pop(flight_key, None)
            call.done.set()

    def clear_group(self, group: Optional[str] = None) -> None:
        """Removes every key in a group from both tiers."""
        group = self._group(group)
        fast_count, fast_error = self._attempt(self._fast, "clear_group", lambda: self._fast.clear_group(group))
        durable_count, durable_error = self._attempt(
            self._durable, "clear_group", lambda: self._durable.clear_group(group)
        )
        self._raise_if_closed("clear_group", [fast_error, durable_error])
        logger.info(f"Cleared cache group '{group}' (fast={fast_count or 0}, durable={durable_count or 0})")

    # --- Key helpers ---

    @staticmethod
    def user_key(user_id: Any, kind: str) -> str:
        return f"user_{user_id}_{kind}"

    @staticmethod
    def resource_key(resource_id: Any, kind: str) -> str:
        return f"profile_{resource_id}_{kind}"

    def invalidate_all(self, user_id: Any) -> None:
        """Drops every per-user cache kind for a user."""
        for kind in USER_CACHE_KINDS:
            self.delete(self.user_key(user_id, kind))

    def invalidate_one(self, user_id: Any, kind: str) -> bool:
        if kind not in USER_CACHE_KINDS:
            raise ValueError(f"Unknown user cache kind '{kind}'. Expected one of: {', '.join(USER_CACHE_KINDS)}")
        return self.delete(self.user_key(user_id, kind))

    # --- Introspection ---

    def is_durable_available(self) -> bool:
        """Probes the durable tier with a read."""
        try:
            self._durable.get("__probe__", self.default_group)
            return True
        except StoreError:
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Unsampled lookup counters of this service instance."""
        with self._counter_lock:
            hits, misses = self._hits, self._misses
        return {
            "fast_tier": self._fast.name,
            "durable_tier": self._durable.name,
            "durable_available": self.is_durable_available(),
            "hits": hits,
            "misses": misses,
        }
