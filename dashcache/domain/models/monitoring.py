"""Monitoring records: alert state, alerts, stats snapshots and the live accumulator."""

import time
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Any, Deque, Dict, Optional

RESPONSE_TIME_BUFFER_SIZE = 100


@dataclass
class AlertState:
    """Last firing time of one alert type, used for cooldown."""
    alert_type: str
    last_fired_at: float


@dataclass
class Alert:
    """An alert about to be dispatched to the configured channels."""
    alert_type: str
    message: str
    stats: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class StatsSnapshot:
    """Point-in-time projection of the monitor accumulator."""
    timestamp: float
    hits: int
    misses: int
    hit_rate: float
    sets: int
    deletes: int
    memory_usage_bytes: int
    avg_response_time_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["StatsSnapshot"]:
        """Builds a snapshot from persisted data, or None if the record is malformed."""
        try:
            return cls(
                timestamp=float(data["timestamp"]),
                hits=int(data.get("hits", 0)),
                misses=int(data.get("misses", 0)),
                hit_rate=float(data.get("hit_rate", 0.0)),
                sets=int(data.get("sets", 0)),
                deletes=int(data.get("deletes", 0)),
                memory_usage_bytes=int(data.get("memory_usage_bytes", 0)),
                avg_response_time_ms=float(data.get("avg_response_time_ms", 0.0)),
            )
        except (KeyError, TypeError, ValueError, AttributeError):
            return None


@dataclass
class MonitorAccumulator:
    """In-process counters; reset only on restart (or an explicit reset)."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    memory_usage_bytes: int = 0
    response_times: Deque[float] = field(
        default_factory=lambda: deque(maxlen=RESPONSE_TIME_BUFFER_SIZE)
    )

    @property
    def total_lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_lookups
        return self.hits / total if total > 0 else 0.0

    @property
    def miss_rate(self) -> float:
        total = self.total_lookups
        return self.misses / total if total > 0 else 0.0

    @property
    def avg_response_time_ms(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)

    def snapshot(self, timestamp: float) -> StatsSnapshot:
        return StatsSnapshot(
            timestamp=timestamp,
            hits=self.hits,
            misses=self.misses,
            hit_rate=self.hit_rate,
            sets=self.sets,
            deletes=self.deletes,
            memory_usage_bytes=self.memory_usage_bytes,
            avg_response_time_ms=self.avg_response_time_ms,
        )
