"""Cache traffic monitor.

Observes CacheService events, keeps sampled rolling statistics, raises
cooldown-gated alerts when hit rate, miss rate, memory usage or response
time cross their thresholds, and persists periodic stats snapshots for
dashboards.
"""

import logging
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dashcache.domain.errors import ConfigurationError, StoreError
from dashcache.domain.events.cache_events import (
    CacheEvent, CacheHit, CacheMiss, CacheSet, CacheDeleted, CacheTimed,
)
from dashcache.domain.interfaces.alert_channel import AlertChannel
from dashcache.domain.interfaces.cache_observer import CacheObserver
from dashcache.domain.interfaces.store import StoreBackend
from dashcache.domain.models.monitoring import Alert, AlertState, MonitorAccumulator, StatsSnapshot
from dashcache.infrastructure.config.settings import MonitoringSettings

logger = logging.getLogger(__name__)

MONITOR_GROUP = "cache_monitor"
STATS_HISTORY_KEY = "stats_history"

LOW_HIT_RATE = "low_hit_rate"
HIGH_MISS_RATE = "high_miss_rate"
HIGH_MEMORY_USAGE = "high_memory_usage"
HIGH_RESPONSE_TIME = "high_response_time"

MemoryProbe = Callable[[], Optional[Tuple[int, int]]]


class CacheMonitor(CacheObserver):
    """Sampling statistics collector and alert dispatcher for the cache."""

    def __init__(
        self,
        store: StoreBackend,
        settings: Optional[MonitoringSettings] = None,
        channels: Sequence[AlertChannel] = (),
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        memory_probe: Optional[MemoryProbe] = None,
    ):
        """Initializes the monitor.

        Args:
            store: Durable store for alert state and the stats history.
            settings: Sampling rate, thresholds, cooldown and retention.
            channels: Enabled alert channels, each tried independently.
            rng: Random source for sampling, injectable for tests.
            clock: Time source, injectable for tests.
            memory_probe: Returns (usage_bytes, limit_bytes) or None.

        Raises:
            ConfigurationError: If the settings are out of range.
        """
        self.settings = (settings or MonitoringSettings()).validate()
        self._store = store
        self._channels = list(channels)
        self._rng = rng or random.Random()
        self._clock = clock
        self._memory_probe = memory_probe

        self._acc = MonitorAccumulator()
        self._lock = threading.Lock()
        self._alert_lock = threading.Lock()
        self._history_lock = threading.Lock()
        self._alert_states: Dict[str, AlertState] = {}

        logger.info(
            f"CacheMonitor initialized: sampling_rate={self.settings.sampling_rate}, "
            f"min_samples={self.settings.min_samples}, cooldown={self.settings.alert_cooldown}s, "
            f"channels={[c.name for c in self._channels]}"
        )

    @property
    def channels(self) -> List[AlertChannel]:
        return list(self._channels)

    def set_sampling_rate(self, rate: float) -> None:
        if not 0.0 <= rate <= 1.0:
            raise ConfigurationError(f"Sampling rate must be within 0.0-1.0, got {rate}")
        self.settings.sampling_rate = rate

    # --- Event intake ---

    def on_event(self, event: CacheEvent) -> None:
        if isinstance(event, CacheHit):
            self.on_hit()
        elif isinstance(event, CacheMiss):
            self.on_miss()
        elif isinstance(event, CacheSet):
            self.on_set(event.key, event.value)
        elif isinstance(event, CacheDeleted):
            self.on_delete()
        elif isinstance(event, CacheTimed):
            self.record_response_time(event.duration_ms)

    def _should_sample(self) -> bool:
        rate = self.settings.sampling_rate
        if rate >= 1.0:
            return True
        if rate <= 0.0:
            return False
        return self._rng.random() < rate

    def on_hit(self) -> None:
        if not self._should_sample():
            return
        with self._lock:
            self._acc.hits += 1
        self.check_thresholds()

    def on_miss(self) -> None:
        if not self._should_sample():
            return
        with self._lock:
            self._acc.misses += 1
        self.check_thresholds()

    def on_set(self, key: str = "", value: Any = None) -> None:
        if not self._should_sample():
            return
        with self._lock:
            self._acc.sets += 1
        self.check_memory_usage()

    def on_delete(self) -> None:
        if not self._should_sample():
            return
        with self._lock:
            self._acc.deletes += 1
        self.check_memory_usage()

    def record_response_time(self, duration_ms: float) -> None:
        if not self._should_sample():
            return
        with self._lock:
            self._acc.response_times.append(float(duration_ms))
        self.check_response_time(duration_ms)

    # --- Threshold checks ---

    def check_thresholds(self) -> None:
        """Alerts on hit/miss rate once enough lookups have been sampled."""
        with self._lock:
            total = self._acc.total_lookups
            hit_rate = self._acc.hit_rate
            miss_rate = self._acc.miss_rate
        if total < self.settings.min_samples:
            return  # Not enough data

        thresholds = self.settings.thresholds
        if hit_rate < thresholds.hit_rate:
            self.trigger_alert(
                LOW_HIT_RATE,
                f"Cache hit rate is {hit_rate * 100:.2f}%, below threshold of {thresholds.hit_rate * 100:.2f}%",
            )
        if miss_rate > thresholds.miss_rate:
            self.trigger_alert(
                HIGH_MISS_RATE,
                f"Cache miss rate is {miss_rate * 100:.2f}%, above threshold of {thresholds.miss_rate * 100:.2f}%",
            )

    def check_memory_usage(self) -> None:
        """Refreshes the memory reading and alerts when it is above the ceiling."""
        if self._memory_probe is None:
            return
        try:
            reading = self._memory_probe()
        except Exception as e:
            logger.debug(f"Memory probe failed: {e}")
            return
        if not reading:
            return
        usage, limit = reading
        with self._lock:
            self._acc.memory_usage_bytes = int(usage)
        if not limit:
            return

        ratio = usage / limit
        if ratio > self.settings.thresholds.memory_usage:
            self.trigger_alert(HIGH_MEMORY_USAGE, f"Cache memory usage is at {ratio * 100:.2f}% of limit")

    def check_response_time(self, duration_ms: float) -> None:
        ceiling = self.settings.thresholds.response_time
        if duration_ms > ceiling:
            self.trigger_alert(
                HIGH_RESPONSE_TIME,
                f"Cache response time is {duration_ms:.2f}ms, above threshold of {ceiling:.2f}ms",
            )

    # --- Alerts ---

    def _alert_key(self, alert_type: str) -> str:
        return f"alert_{alert_type}"

    def _in_cooldown(self, state: Optional[AlertState], now: float) -> bool:
        return state is not None and now - state.last_fired_at < self.settings.alert_cooldown

    def _last_alert(self, alert_type: str) -> Optional[AlertState]:
        state = self._alert_states.get(alert_type)
        try:
            raw = self._store.get(self._alert_key(alert_type), MONITOR_GROUP)
        except StoreError as e:
            logger.warning(f"Could not read alert state for '{alert_type}': {e}")
            return state
        if isinstance(raw, dict) and "last_fired_at" in raw:
            persisted = AlertState(alert_type=alert_type, last_fired_at=float(raw["last_fired_at"]))
            if state is None or persisted.last_fired_at > state.last_fired_at:
                state = persisted
                self._alert_states[alert_type] = persisted
        return state

    def _record_alert(self, state: AlertState) -> None:
        self._alert_states[state.alert_type] = state
        cooldown = self.settings.alert_cooldown
        try:
            self._store.set(
                self._alert_key(state.alert_type),
                {"alert_type": state.alert_type, "last_fired_at": state.last_fired_at},
                cooldown if cooldown > 0 else None,
                MONITOR_GROUP,
            )
        except StoreError as e:
            logger.warning(f"Could not persist alert state for '{state.alert_type}': {e}")

    def trigger_alert(self, alert_type: str, message: str) -> bool:
        """Dispatches an alert unless one of the same type fired within the cooldown.

        Returns:
            True if the alert was dispatched, False if suppressed.
        """
        now = self._clock()
        if self._in_cooldown(self._alert_states.get(alert_type), now):
            return False  # Cooldown already known in this process

        with self._alert_lock:
            now = self._clock()
            last = self._last_alert(alert_type)
            if self._in_cooldown(last, now):
                logger.debug(f"Alert '{alert_type}' suppressed by cooldown")
                return False
            self._record_alert(AlertState(alert_type=alert_type, last_fired_at=now))

        alert = Alert(alert_type=alert_type, message=message, stats=self.get_current_stats().to_dict(), timestamp=now)
        for channel in self._channels:
            try:
                channel.send(alert)
            except Exception as e:
                logger.error(f"Alert channel '{channel.name}' failed for '{alert_type}': {e}")
        return True

    # --- Stats ---

    def get_current_stats(self) -> StatsSnapshot:
        with self._lock:
            return self._acc.snapshot(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._acc = MonitorAccumulator()

    def _load_history(self) -> List[StatsSnapshot]:
        raw = self._store.get(STATS_HISTORY_KEY, MONITOR_GROUP)
        if not isinstance(raw, list):
            return []
        snapshots = []
        for item in raw:
            snapshot = StatsSnapshot.from_dict(item) if isinstance(item, dict) else None
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    def _retained(self, snapshots: List[StatsSnapshot]) -> List[StatsSnapshot]:
        cutoff = self._clock() - self.settings.retention_seconds
        return [s for s in snapshots if s.timestamp > cutoff]

    def _save_history(self, snapshots: List[StatsSnapshot]) -> None:
        self._store.set(STATS_HISTORY_KEY, [s.to_dict() for s in snapshots], None, MONITOR_GROUP)

    def get_stats_history(self) -> List[StatsSnapshot]:
        """Persisted snapshots within the retention period, oldest first."""
        try:
            return self._retained(self._load_history())
        except StoreError as e:
            logger.error(f"Could not read stats history: {e}")
            return []

    def log_stats(self) -> Optional[StatsSnapshot]:
        """Appends the current snapshot to the persisted history."""
        if not self.settings.log_stats:
            return None
        snapshot = self.get_current_stats()
        with self._history_lock:
            try:
                history = self._load_history()
                history.append(snapshot)
                self._save_history(self._retained(history))
            except StoreError as e:
                logger.error(f"Failed to persist cache stats: {e}")
                return None
        logger.info(
            f"Cache stats logged: hits={snapshot.hits} misses={snapshot.misses} "
            f"hit_rate={snapshot.hit_rate:.2%} avg_response={snapshot.avg_response_time_ms:.2f}ms"
        )
        return snapshot

    def cleanup_old_stats(self) -> int:
        """Drops persisted snapshots older than the retention period.

        Returns:
            Number of snapshots removed.
        """
        with self._history_lock:
            try:
                history = self._load_history()
                kept = self._retained(history)
                if len(kept) != len(history):
                    self._save_history(kept)
            except StoreError as e:
                logger.error(f"Failed to clean up cache stats: {e}")
                return 0
        removed = len(history) - len(kept)
        if removed:
            logger.info(f"Removed {removed} cache stats snapshots past retention")
        return removed
