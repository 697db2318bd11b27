import pytest

from dashcache.domain.errors import ConfigurationError
from dashcache.domain.models.common import FailurePolicy
from dashcache.infrastructure.config import settings
from dashcache.infrastructure.config.settings import (
    env_var_name, get_config, load_configuration, load_settings, reset_configuration, set_config_for_testing,
)


def test_defaults():
    loaded = load_settings()

    assert loaded.cache.default_ttl == 3600
    assert loaded.cache.group == "athlete_dashboard"
    assert loaded.cache.failure_policy is FailurePolicy.FAIL_OPEN
    assert [t.name for t in loaded.rate_limit.tiers] == ["foundation", "performance", "transformation"]
    assert loaded.monitoring.sampling_rate == 0.1
    assert loaded.monitoring.thresholds.hit_rate == 0.8
    assert loaded.monitoring.retention_seconds == 7 * 24 * 3600
    assert loaded.warm_cache.warm_groups == {
        "profile": ["full", "meta", "preferences"],
        "overview": ["stats", "activity", "goals"],
    }
    assert loaded.cron.warm_cache == "fifteen_minutes"


def test_ttl_lookup_falls_back_to_default():
    cache = load_settings().cache
    assert cache.ttl_for("overview") == 1800
    assert cache.ttl_for("unknown") == 3600


def test_env_var_name():
    assert env_var_name("monitoring.sampling_rate") == "DASHCACHE_MONITORING_SAMPLING_RATE"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DASHCACHE_MONITORING_SAMPLING_RATE", "0.5")
    monkeypatch.setenv("DASHCACHE_CACHE_SINGLE_FLIGHT", "true")
    monkeypatch.setenv("DASHCACHE_RATE_LIMIT_FAILURE_POLICY", "fail_closed")

    loaded = load_settings()

    assert loaded.monitoring.sampling_rate == 0.5
    assert loaded.cache.single_flight is True
    assert loaded.rate_limit.failure_policy is FailurePolicy.FAIL_CLOSED


def test_test_overrides_win_over_environment(monkeypatch):
    monkeypatch.setenv("DASHCACHE_CACHE_DEFAULT_TTL", "60")
    set_config_for_testing({"cache.default_ttl": 120})
    assert get_config("cache.default_ttl") == 120


def test_yaml_file_with_nested_keys(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "rate_limit:\n"
        "  tiers:\n"
        "    free: {requests: 10, window: 60}\n"
        "    pro: {requests: 100, window: 60}\n"
        "  default_tier: free\n"
        "monitoring:\n"
        "  alert_thresholds:\n"
        "    hit_rate: 0.9\n"
        "  alert_recipients:\n"
        "    email: ops@example.com, coach@example.com\n"
    )
    monkeypatch.chdir(tmp_path)
    reset_configuration()
    load_configuration(config_file=config_file)

    loaded = load_settings()

    assert {t.name: t.request_limit for t in loaded.rate_limit.tiers} == {"free": 10, "pro": 100}
    assert loaded.rate_limit.default_tier == "free"
    assert loaded.monitoring.thresholds.hit_rate == 0.9
    assert loaded.monitoring.email_recipients == ["ops@example.com", "coach@example.com"]
    assert get_config("monitoring.alert_thresholds.miss_rate", 0.2) == 0.2


def test_missing_yaml_file_is_not_an_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    reset_configuration()
    load_configuration(config_file=tmp_path / "absent.yaml")
    assert settings._loaded is True
    assert get_config("cache.group", "fallback") == "fallback"


@pytest.mark.parametrize("overrides", [
    {"monitoring.sampling_rate": 1.5},
    {"monitoring.alert_thresholds.hit_rate": -0.1},
    {"rate_limit.tiers": {"a": {"requests": 10, "window": 60}, "b": {"requests": 5, "window": 60}}},
    {"rate_limit.tiers": {"a": {"requests": 10}}},
    {"rate_limit.default_tier": "platinum"},
    {"cache.failure_policy": "sometimes"},
    {"cache.default_ttl": "an hour"},
])
def test_invalid_settings_raise_configuration_error(overrides):
    set_config_for_testing(overrides)
    with pytest.raises(ConfigurationError):
        load_settings()
