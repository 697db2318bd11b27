"""Rate limiting value objects: tiers, fixed windows and response headers."""

import math
from dataclasses import dataclass
from typing import Dict, Tuple

from dashcache.domain.errors import ConfigurationError

MIN_WINDOW_SECONDS = 1


@dataclass(frozen=True)
class Tier:
    """A named rate-limit policy assigned to an identity."""
    name: str
    request_limit: int
    window_seconds: int

    def window_start(self, now: float) -> int:
        """Start of the fixed window containing `now`."""
        return self.window_index(now) * self.window_seconds

    def window_index(self, now: float) -> int:
        return int(math.floor(now / self.window_seconds))

    def reset_at(self, now: float) -> int:
        return self.window_start(now) + self.window_seconds

    def seconds_left(self, now: float) -> int:
        """Remaining lifetime of the current window, never less than one second."""
        return max(1, int(math.ceil(self.reset_at(now) - now)))


DEFAULT_TIERS: Tuple[Tier, ...] = (
    Tier("foundation", 60, 3600),
    Tier("performance", 120, 3600),
    Tier("transformation", 180, 3600),
)
DEFAULT_TIER_NAME = "foundation"


def validate_tiers(tiers: Tuple[Tier, ...]) -> Dict[str, Tier]:
    """Checks a tier table and returns it keyed by name.

    Tiers must be non-empty, uniquely named, allow at least one request per
    window of at least one second, and have strictly increasing limits in
    declaration order.

    Raises:
        ConfigurationError: If any of the above does not hold.
    """
    if not tiers:
        raise ConfigurationError("At least one rate-limit tier must be configured.")

    by_name: Dict[str, Tier] = {}
    previous = None
    for tier in tiers:
        if tier.name in by_name:
            raise ConfigurationError(f"Duplicate rate-limit tier '{tier.name}'.")
        if tier.request_limit < 1:
            raise ConfigurationError(f"Tier '{tier.name}' must allow at least one request, got {tier.request_limit}.")
        if tier.window_seconds < MIN_WINDOW_SECONDS:
            raise ConfigurationError(
                f"Tier '{tier.name}' window must be at least {MIN_WINDOW_SECONDS}s, got {tier.window_seconds}s."
            )
        if previous is not None and tier.request_limit <= previous.request_limit:
            raise ConfigurationError(
                f"Tier limits must strictly increase: '{tier.name}' ({tier.request_limit}) "
                f"does not exceed '{previous.name}' ({previous.request_limit})."
            )
        by_name[tier.name] = tier
        previous = tier
    return by_name


@dataclass(frozen=True)
class RateWindow:
    """Counter state for one identity and tier within one fixed window."""
    identity: str
    tier: str
    window_start: int
    count: int


@dataclass(frozen=True)
class RateLimitHeaders:
    """Snapshot taken by the most recent check_limit call."""
    limit: int
    remaining: int
    reset_at: int

    def as_headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
