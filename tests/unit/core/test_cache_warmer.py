from unittest.mock import MagicMock

import pytest

from dashcache.core.services.cache_service import CacheService
from dashcache.core.services.cache_warmer import CacheWarmer
from dashcache.domain.errors import UnknownCacheKindError
from dashcache.domain.interfaces.data_source import AthleteDataSource
from dashcache.infrastructure.config.settings import CacheSettings, WarmSettings


@pytest.fixture
def cache_service(fast_store, durable_store):
    return CacheService(fast_store, durable_store, default_group="athlete_dashboard")


@pytest.fixture
def data_source():
    source = MagicMock(spec=AthleteDataSource)
    source.fetch.side_effect = lambda identity, group, kind: {"identity": identity, "group": group, "kind": kind}
    source.active_identities.return_value = []
    return source


@pytest.fixture
def warm_settings():
    return WarmSettings(max_users_per_job=50, activity_threshold=86400)


@pytest.fixture
def warmer(cache_service, data_source, warm_settings, clock):
    return CacheWarmer(cache_service, data_source, settings=warm_settings, cache_settings=CacheSettings(), clock=clock)


def test_warm_identity_populates_every_group_and_kind(warmer: CacheWarmer, cache_service: CacheService, data_source):
    report = warmer.warm_identity("42")

    assert report.ok
    assert (report.warmed, report.failed, report.skipped) == (6, 0, 0)
    assert data_source.fetch.call_count == 6
    assert cache_service.get("user_42_meta") == {"identity": "42", "group": "profile", "kind": "meta"}
    assert cache_service.get("user_42_goals") == {"identity": "42", "group": "overview", "kind": "goals"}


def test_warm_identity_uses_group_ttl(warmer: CacheWarmer, cache_service: CacheService, clock):
    warmer.warm_identity("42")

    # overview has a 30 minute TTL, profile an hour
    clock.advance(1800)
    assert cache_service.get("user_42_stats") is None
    assert cache_service.get("user_42_full") is not None


def test_zero_group_ttl_keeps_warmed_values(cache_service, data_source, warm_settings, clock):
    cache_settings = CacheSettings(ttl={"profile": 0, "overview": 1800})
    warmer = CacheWarmer(cache_service, data_source, settings=warm_settings, cache_settings=cache_settings, clock=clock)

    warmer.warm_identity("42")
    clock.advance(7 * 86400)

    assert cache_service.get("user_42_full") is not None
    assert cache_service.get("user_42_stats") is None


def test_second_warm_is_served_from_cache(warmer: CacheWarmer, data_source):
    warmer.warm_identity("42")
    warmer.warm_identity("42")
    assert data_source.fetch.call_count == 6


def test_failures_are_isolated_per_kind(warmer: CacheWarmer, data_source, cache_service: CacheService):
    def fetch(identity, group, kind):
        if kind == "activity":
            raise RuntimeError("activity service down")
        if kind == "goals":
            raise UnknownCacheKindError(group, kind)
        return kind

    data_source.fetch.side_effect = fetch

    report = warmer.warm_identity("42")

    assert (report.warmed, report.failed, report.skipped) == (4, 1, 1)
    assert not report.ok
    assert report.errors == {"overview/activity": "activity service down"}
    assert cache_service.get("user_42_preferences") == "preferences"


def test_warm_priority_identities(warmer: CacheWarmer, data_source, clock):
    data_source.active_identities.return_value = ["1", "2", "3"]

    reports = warmer.warm_priority_identities()

    assert [r.identity for r in reports] == ["1", "2", "3"]
    data_source.active_identities.assert_called_once_with(clock.now - 86400, 50)


def test_warm_priority_respects_per_job_cap(cache_service, data_source, clock):
    settings = WarmSettings(max_users_per_job=2)
    warmer = CacheWarmer(cache_service, data_source, settings=settings, clock=clock)
    # A source that ignores the limit still only gets two athletes warmed
    data_source.active_identities.return_value = ["1", "2", "3"]

    reports = warmer.warm_priority_identities()

    assert len(reports) == 2


def test_warm_priority_disabled(cache_service, data_source, clock):
    warmer = CacheWarmer(cache_service, data_source, settings=WarmSettings(priority_users=False), clock=clock)

    assert warmer.warm_priority_identities() == []
    data_source.active_identities.assert_not_called()


def test_warm_priority_survives_listing_failure(warmer: CacheWarmer, data_source):
    data_source.active_identities.side_effect = OSError("file unreadable")
    assert warmer.warm_priority_identities() == []


def test_on_login(warmer: CacheWarmer, cache_service, data_source, clock):
    report = warmer.on_login("7")
    assert report is not None and report.warmed == 6

    disabled = CacheWarmer(cache_service, data_source, settings=WarmSettings(on_login=False), clock=clock)
    assert disabled.on_login("7") is None
