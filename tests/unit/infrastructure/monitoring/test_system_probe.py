import psutil

from dashcache.infrastructure.monitoring.system_probe import ProcessMemoryProbe


def test_probe_reports_rss_against_configured_limit():
    usage, limit = ProcessMemoryProbe(limit_bytes=1024)()
    assert usage > 0
    assert limit == 1024


def test_probe_defaults_to_system_memory():
    _, limit = ProcessMemoryProbe()()
    assert limit == psutil.virtual_memory().total


def test_probe_returns_none_when_unavailable(mocker):
    probe = ProcessMemoryProbe()
    mocker.patch("psutil.Process.memory_info", side_effect=psutil.AccessDenied())
    assert probe() is None
