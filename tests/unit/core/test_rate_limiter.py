import threading
from unittest.mock import MagicMock

import pytest

from dashcache.core.services.rate_limiter import RateLimiter, TIER_GROUP
from dashcache.domain.errors import ConfigurationError, StoreError
from dashcache.domain.interfaces.store import CounterStore
from dashcache.domain.models.common import FailurePolicy
from dashcache.domain.models.rate_limit import Tier
from dashcache.infrastructure.cache.memory_store import MemoryStore


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def limiter(store, clock):
    """RateLimiter with the default foundation/performance/transformation tiers."""
    return RateLimiter(counter_store=store, meta_store=store, clock=clock)


def broken_counters() -> MagicMock:
    counters = MagicMock(spec=CounterStore)
    counters.increment_below.side_effect = StoreError("disk", "increment_below", TimeoutError("locked"))
    return counters


def test_default_tier_allows_sixty_requests_per_hour(limiter: RateLimiter):
    results = [limiter.check_limit("user_42") for _ in range(61)]

    assert results[:60] == [True] * 60
    assert results[60] is False
    headers = limiter.get_rate_limit_headers()
    assert headers["X-RateLimit-Limit"] == "60"
    assert headers["X-RateLimit-Remaining"] == "0"


def test_new_window_restores_quota(limiter: RateLimiter, clock):
    for _ in range(60):
        limiter.check_limit("user_42")
    assert limiter.check_limit("user_42") is False

    clock.advance(3600)

    assert limiter.check_limit("user_42") is True
    assert limiter.get_rate_limit_headers()["X-RateLimit-Remaining"] == "59"


def test_windows_are_fixed_not_sliding(limiter: RateLimiter, clock):
    clock.advance(3599)
    for _ in range(60):
        limiter.check_limit("user_1")
    assert limiter.check_limit("user_1") is False
    # One second later a new window starts
    clock.advance(1)
    assert limiter.check_limit("user_1") is True


def test_headers_after_first_request(limiter: RateLimiter, clock):
    window_start = int(clock.now)
    limiter.check_limit("user_42")
    assert limiter.get_rate_limit_headers() == {
        "X-RateLimit-Limit": "60",
        "X-RateLimit-Remaining": "59",
        "X-RateLimit-Reset": str(window_start + 3600),
    }


def test_headers_empty_before_any_check(limiter: RateLimiter):
    assert limiter.get_rate_limit_headers() == {}


def test_headers_are_per_thread(limiter: RateLimiter):
    thread = threading.Thread(target=limiter.check_limit, args=("user_7",))
    thread.start()
    thread.join(5)

    assert limiter.get_rate_limit_headers() == {}


def test_identities_are_counted_separately(limiter: RateLimiter):
    for _ in range(60):
        limiter.check_limit("user_1")
    assert limiter.check_limit("user_1") is False
    assert limiter.check_limit("user_2") is True


def test_get_remaining_does_not_count(limiter: RateLimiter):
    limiter.check_limit("user_42")
    assert limiter.get_remaining("user_42") == 59
    assert limiter.get_remaining("user_42") == 59
    assert limiter.get_limit("user_42") == 60
    assert limiter.get_window_seconds("user_42") == 3600


def test_get_window(limiter: RateLimiter, clock):
    window_start = int(clock.now)
    clock.advance(125)
    limiter.check_limit("user_42")
    limiter.check_limit("user_42")

    window = limiter.get_window("user_42")
    assert window.tier == "foundation"
    assert window.window_start == window_start
    assert window.count == 2


def test_update_user_tier_raises_limit_and_resets_window(limiter: RateLimiter):
    for _ in range(60):
        limiter.check_limit("user_42")

    assert limiter.update_user_tier("user_42", "performance") is True

    assert limiter.get_user_tier("user_42").name == "performance"
    assert limiter.check_limit("user_42") is True
    assert limiter.get_rate_limit_headers()["X-RateLimit-Limit"] == "120"
    assert limiter.get_rate_limit_headers()["X-RateLimit-Remaining"] == "119"


def test_update_user_tier_rejects_unknown_tier(limiter: RateLimiter):
    assert limiter.update_user_tier("user_42", "platinum") is False
    assert limiter.get_user_tier("user_42").name == "foundation"


def test_unrecognized_stored_tier_falls_back_to_default(limiter: RateLimiter, store: MemoryStore):
    store.set("tier_user_42", "platinum", None, TIER_GROUP)
    assert limiter.get_user_tier("user_42").name == "foundation"


def test_tier_policy_overrides_default(store, clock):
    policy = MagicMock(return_value="transformation")
    limiter = RateLimiter(store, store, tier_policy=policy, clock=clock)

    assert limiter.get_limit("user_9") == 180
    policy.assert_called_with("user_9", "foundation")


def test_stored_tier_wins_over_policy(store, clock):
    limiter = RateLimiter(store, store, tier_policy=lambda identity, default: "transformation", clock=clock)
    limiter.update_user_tier("user_9", "performance")
    assert limiter.get_limit("user_9") == 120


def test_failing_tier_policy_uses_default(store, clock):
    limiter = RateLimiter(store, store, tier_policy=MagicMock(side_effect=RuntimeError("billing down")), clock=clock)
    assert limiter.get_user_tier("user_9").name == "foundation"


def test_fail_open_allows_when_counter_store_fails(store, clock):
    limiter = RateLimiter(broken_counters(), store, clock=clock)

    assert limiter.check_limit("user_42") is True
    assert limiter.get_rate_limit_headers()["X-RateLimit-Remaining"] == "60"


def test_fail_closed_denies_when_counter_store_fails(store, clock):
    limiter = RateLimiter(broken_counters(), store, failure_policy=FailurePolicy.FAIL_CLOSED, clock=clock)

    assert limiter.check_limit("user_42") is False
    assert limiter.get_rate_limit_headers()["X-RateLimit-Remaining"] == "0"


def test_concurrent_requests_never_exceed_limit(store, clock):
    limiter = RateLimiter(store, store, tiers=[Tier("basic", 10, 60)], default_tier="basic", clock=clock)
    allowed = []
    lock = threading.Lock()

    def hammer():
        for _ in range(5):
            result = limiter.check_limit("ip_shared")
            with lock:
                allowed.append(result)

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert len(allowed) == 40
    assert allowed.count(True) == 10


def test_check_request_derives_identity(limiter: RateLimiter):
    assert limiter.check_request({"user_id": 42}) is True
    assert limiter.get_remaining("user_42") == 59


def test_reset_limits(limiter: RateLimiter):
    for _ in range(60):
        limiter.check_limit("user_42")
    limiter.reset_limits("user_42")
    assert limiter.get_remaining("user_42") == 60


@pytest.mark.parametrize("tiers", [
    [],
    [Tier("a", 10, 60), Tier("b", 10, 60)],
    [Tier("a", 10, 60), Tier("a", 20, 60)],
    [Tier("a", 0, 60)],
    [Tier("a", 10, 0)],
])
def test_invalid_tier_tables_are_rejected(store, tiers):
    with pytest.raises(ConfigurationError):
        RateLimiter(store, store, tiers=tiers, default_tier="a")


def test_unknown_default_tier_is_rejected(store):
    with pytest.raises(ConfigurationError):
        RateLimiter(store, store, default_tier="platinum")


def test_short_windows_are_allowed(store, clock):
    limiter = RateLimiter(store, store, tiers=[Tier("burst", 2, 10)], default_tier="burst", clock=clock)

    assert limiter.check_limit("user_1") is True
    assert limiter.check_limit("user_1") is True
    assert limiter.check_limit("user_1") is False
    clock.advance(10)
    assert limiter.check_limit("user_1") is True
