"""Cache entry records."""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    key: str
    group: str
    value: Any
    expires_at: Optional[float]  # Unix timestamp, None means no expiry

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at
