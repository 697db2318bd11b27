import pytest

from dashcache.infrastructure.cache.memory_store import MemoryStore


@pytest.fixture
def store(clock):
    return MemoryStore(max_items=3, clock=clock)


def test_get_set_delete(store: MemoryStore):
    assert store.get("k", "g") is None
    assert store.set("k", {"v": 1}, 60, "g") is True
    assert store.get("k", "g") == {"v": 1}
    assert store.delete("k", "g") is True
    assert store.delete("k", "g") is False


def test_keys_are_scoped_by_group(store: MemoryStore):
    store.set("k", "one", 60, "a")
    store.set("k", "two", 60, "b")
    assert store.get("k", "a") == "one"
    assert store.get("k", "b") == "two"


def test_entries_expire(store: MemoryStore, clock):
    store.set("k", "v", 10, "g")
    clock.advance(9.9)
    assert store.get("k", "g") == "v"
    clock.advance(0.1)
    assert store.get("k", "g") is None
    assert store.delete("k", "g") is False


def test_no_ttl_never_expires(store: MemoryStore, clock):
    store.set("k", "v", None, "g")
    clock.advance(10 * 365 * 24 * 3600)
    assert store.get("k", "g") == "v"


def test_clear_group_returns_count(store: MemoryStore):
    store.set("a", 1, 60, "g")
    store.set("b", 2, 60, "g")
    store.set("c", 3, 60, "other")
    assert store.clear_group("g") == 2
    assert store.get("c", "other") == 3


def test_oldest_entry_evicted_over_capacity(store: MemoryStore):
    for key in ("a", "b", "c"):
        store.set(key, key, 60, "g")
    store.set("a", "refreshed", 60, "g")  # Moves 'a' to the back
    store.set("d", "d", 60, "g")

    assert len(store) == 3
    assert store.get("b", "g") is None
    assert store.get("a", "g") == "refreshed"


def test_increment_below_stops_at_limit(store: MemoryStore):
    results = [store.increment_below("c", 3, 60) for _ in range(4)]
    assert results == [(True, 1), (True, 2), (True, 3), (False, 3)]
    assert store.get_count("c") == 3


def test_counters_expire_and_reset(store: MemoryStore, clock):
    store.increment_below("c", 5, 30)
    clock.advance(30)
    assert store.get_count("c") == 0

    store.increment_below("c", 5, 30)
    store.reset("c")
    assert store.get_count("c") == 0


def test_counters_are_not_evicted_by_entries(store: MemoryStore):
    store.increment_below("c", 5, 60)
    for i in range(10):
        store.set(f"k{i}", i, 60, "g")
    assert store.get_count("c") == 1


def test_expired_counters_are_swept_when_the_window_rolls_over(store: MemoryStore, clock):
    for i in range(500):
        store.increment_below(f"rate_limit:ip_{i}:foundation:0", 60, 3600)
    assert len(store._counters) == 500

    clock.advance(3600)
    for i in range(10):
        store.increment_below(f"rate_limit:ip_{i}:foundation:1", 60, 3600)

    assert len(store._counters) == 10


def test_live_counters_survive_a_sweep(store: MemoryStore, clock):
    store.increment_below("long", 5, 3600)
    store.increment_below("short", 5, 30)

    clock.advance(120)
    store.increment_below("other", 5, 3600)

    assert store.get_count("long") == 1
    assert "short" not in store._counters
