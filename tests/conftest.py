import logging
import os

import pytest
from typer.testing import CliRunner

from dashcache.infrastructure.cache.memory_store import MemoryStore
from dashcache.infrastructure.config import settings as settings_module

# Start of an hour, so every default tier window starts exactly here
START_TIME = 1_700_002_800.0


class FakeClock:
    """Manually advanced time source for windows, cooldowns and retention."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_store(clock):
    return MemoryStore(max_items=100, clock=clock)


@pytest.fixture
def durable_store(clock):
    """A second memory store standing in for the durable tier."""
    return MemoryStore(max_items=100, clock=clock)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps tests away from ~/.dashcache/config.yaml and leaked overrides."""
    monkeypatch.setattr(settings_module, "_config", {})
    monkeypatch.setattr(settings_module, "_loaded", True)
    for name in list(os.environ):
        if name.startswith(settings_module.ENV_PREFIX):
            monkeypatch.delenv(name)
    yield
    settings_module.clear_test_config()


@pytest.fixture
def restore_logging():
    """Restores root logger handlers replaced by setup_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
