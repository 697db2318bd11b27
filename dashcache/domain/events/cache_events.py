"""Domain Events related to cache traffic.

Published by the CacheService and consumed by observers such as the
CacheMonitor.
"""

from dataclasses import dataclass, field
import time
from typing import Any, Optional


@dataclass
class CacheEvent:
    """Base class for cache events."""
    pass


@dataclass
class CacheHit(CacheEvent):
    """A lookup returned a value from either tier."""
    key: str
    group: str
    tier: str  # 'fast' or 'durable'
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheMiss(CacheEvent):
    """A lookup found nothing in either tier."""
    key: str
    group: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheSet(CacheEvent):
    """A value was written to both tiers."""
    key: str
    group: str
    value: Any
    ttl: Optional[int]
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheDeleted(CacheEvent):
    """A key was removed from both tiers."""
    key: str
    group: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheTimed(CacheEvent):
    """Wall time spent serving one lookup."""
    key: str
    duration_ms: float
    timestamp: float = field(default_factory=time.time)
