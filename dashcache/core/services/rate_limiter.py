"""Tiered fixed-window rate limiter.

Each identity is assigned one tier (request limit + window size). Time is
cut into non-overlapping windows of the tier's size and every
(identity, tier, window) triple has its own counter, which expires with
the window. Counters are incremented through the store's atomic
increment-below-limit primitive, so concurrent requests can never push an
identity past its quota.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from dashcache.domain.errors import ConfigurationError, StoreError
from dashcache.domain.interfaces.store import CounterStore, StoreBackend
from dashcache.domain.models.common import FailurePolicy, RequestContext
from dashcache.domain.models.rate_limit import (
    DEFAULT_TIERS, DEFAULT_TIER_NAME, RateLimitHeaders, RateWindow, Tier, validate_tiers,
)
from dashcache.infrastructure.resilience.identity import derive_identity

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "rate_limit"
TIER_GROUP = "user_tiers"

# (identity, default tier name) -> tier name to use when none is stored
TierPolicy = Callable[[str, str], Optional[str]]


class RateLimiter:
    """Per-identity request quotas over fixed windows."""

    def __init__(
        self,
        counter_store: CounterStore,
        meta_store: StoreBackend,
        tiers: Iterable[Tier] = DEFAULT_TIERS,
        default_tier: str = DEFAULT_TIER_NAME,
        tier_policy: Optional[TierPolicy] = None,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the rate limiter.

        Args:
            counter_store: Holds the per-window request counters.
            meta_store: Holds durable per-identity tier assignments.
            tiers: Tier table, limits strictly increasing.
            default_tier: Tier used when an identity has no valid assignment.
            tier_policy: Optional hook overriding the default tier per identity
                (e.g. from a subscription level).
            failure_policy: FAIL_OPEN allows requests when the counter store
                fails; FAIL_CLOSED denies them.
            key_prefix: Prefix for counter keys.
            clock: Time source, injectable for tests.

        Raises:
            ConfigurationError: If the tier table or default tier is invalid.
        """
        self._tiers: Dict[str, Tier] = validate_tiers(tuple(tiers))
        if default_tier not in self._tiers:
            raise ConfigurationError(
                f"Default tier '{default_tier}' is not one of: {', '.join(self._tiers)}"
            )
        self._counters = counter_store
        self._meta = meta_store
        self.default_tier = default_tier
        self.tier_policy = tier_policy
        self.failure_policy = failure_policy
        self.key_prefix = key_prefix
        self._clock = clock
        self._local = threading.local()

        summary = ", ".join(f"{t.name}={t.request_limit}/{t.window_seconds}s" for t in self._tiers.values())
        logger.info(f"RateLimiter initialized: {summary}; default='{default_tier}', policy={failure_policy.value}")

    @property
    def tiers(self) -> Dict[str, Tier]:
        return dict(self._tiers)

    # --- Keys ---

    def _window_key(self, identity: str, tier: Tier, now: float) -> str:
        return f"{self.key_prefix}:{identity}:{tier.name}:{tier.window_index(now)}"

    @staticmethod
    def _tier_key(identity: str) -> str:
        return f"tier_{identity}"

    # --- Tiers ---

    def get_user_tier(self, identity: str) -> Tier:
        """Resolves the identity's tier, falling back to the (policy-adjusted) default."""
        try:
            stored = self._meta.get(self._tier_key(identity), TIER_GROUP)
        except StoreError as e:
            logger.warning(f"Could not read tier for {identity}, using default: {e}")
            stored = None

        if isinstance(stored, str) and stored in self._tiers:
            return self._tiers[stored]
        if stored is not None:
            logger.warning(f"Ignoring unrecognized tier '{stored}' stored for {identity}")

        name = self.default_tier
        if self.tier_policy is not None:
            try:
                proposed = self.tier_policy(identity, self.default_tier)
            except Exception as e:
                logger.error(f"Tier policy failed for {identity}: {e}", exc_info=True)
                proposed = None
            if proposed in self._tiers:
                name = proposed
            elif proposed is not None:
                logger.warning(f"Tier policy returned unknown tier '{proposed}' for {identity}")
        return self._tiers[name]

    def update_user_tier(self, identity: str, new_tier: str) -> bool:
        """Assigns a tier and restarts the identity's quota for the current window.

        Returns:
            False for unknown tier names or when the assignment could not be stored.
        """
        if new_tier not in self._tiers:
            logger.warning(f"Rejected tier update for {identity}: unknown tier '{new_tier}'")
            return False

        old_tier = self.get_user_tier(identity)
        try:
            stored = self._meta.set(self._tier_key(identity), new_tier, None, TIER_GROUP)
        except StoreError as e:
            logger.error(f"Failed to store tier '{new_tier}' for {identity}: {e}")
            return False
        if not stored:
            return False

        now = self._clock()
        for tier in {old_tier.name: old_tier, new_tier: self._tiers[new_tier]}.values():
            try:
                self._counters.reset(self._window_key(identity, tier, now))
            except StoreError as e:
                logger.warning(f"Failed to reset {tier.name} counter for {identity}: {e}")

        logger.info(f"Tier for {identity} changed: {old_tier.name} -> {new_tier}")
        return True

    # --- Limits ---

    def check_limit(self, identity: str) -> bool:
        """Counts one request against the identity's quota.

        Returns:
            True if the request is within the limit (and was counted), False if
            the quota for the current window is exhausted (nothing counted).
        """
        tier = self.get_user_tier(identity)
        now = self._clock()
        key = self._window_key(identity, tier, now)
        reset_at = tier.reset_at(now)

        try:
            allowed, count = self._counters.increment_below(key, tier.request_limit, tier.seconds_left(now))
        except StoreError as e:
            allowed = self.failure_policy is FailurePolicy.FAIL_OPEN
            logger.error(
                f"Rate limit store failed for {identity}; {'allowing' if allowed else 'denying'} request: {e}"
            )
            remaining = tier.request_limit if allowed else 0
            self._local.headers = RateLimitHeaders(tier.request_limit, remaining, reset_at)
            return allowed

        remaining = max(0, tier.request_limit - count) if allowed else 0
        self._local.headers = RateLimitHeaders(tier.request_limit, remaining, reset_at)
        if not allowed:
            logger.info(f"Rate limit exceeded for {identity} ({tier.name}: {tier.request_limit}/{tier.window_seconds}s)")
        return allowed

    def check_request(self, context: RequestContext) -> bool:
        """check_limit for the identity derived from a request context."""
        return self.check_limit(derive_identity(context))

    def get_window(self, identity: str) -> RateWindow:
        """Read-only view of the identity's current window."""
        tier = self.get_user_tier(identity)
        now = self._clock()
        try:
            count = self._counters.get_count(self._window_key(identity, tier, now))
        except StoreError as e:
            logger.warning(f"Could not read rate counter for {identity}: {e}")
            count = 0 if self.failure_policy is FailurePolicy.FAIL_OPEN else tier.request_limit
        return RateWindow(identity=identity, tier=tier.name, window_start=tier.window_start(now), count=count)

    def get_remaining(self, identity: str) -> int:
        """Requests left in the current window; does not count a request."""
        window = self.get_window(identity)
        return max(0, self._tiers[window.tier].request_limit - window.count)

    def get_limit(self, identity: str) -> int:
        return self.get_user_tier(identity).request_limit

    def get_window_seconds(self, identity: str) -> int:
        return self.get_user_tier(identity).window_seconds

    def get_rate_limit_headers(self) -> Dict[str, str]:
        """Headers from the last check_limit call made on this thread."""
        headers: Optional[RateLimitHeaders] = getattr(self._local, "headers", None)
        return headers.as_headers() if headers is not None else {}

    def reset_limits(self, identity: str) -> None:
        """Clears the identity's current-window counters for every tier."""
        now = self._clock()
        for tier in self._tiers.values():
            try:
                self._counters.reset(self._window_key(identity, tier, now))
            except StoreError as e:
                logger.warning(f"Failed to reset {tier.name} counter for {identity}: {e}")
        logger.info(f"Rate limits reset for {identity}")
