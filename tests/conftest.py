"""Shared fixtures: isolate every test from the user's canopy config."""

import pytest

from canopy import config as config_module
from canopy.config import CanopyConfig, reset_config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config and snapshot DB at tmp_path and ignore CANOPY_* env vars."""
    config_file = tmp_path / "config" / "config.json"
    monkeypatch.setattr(config_module, "CONFIG_DIR", config_file.parent)
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)
    monkeypatch.setattr(config_module, "_dotenv_loaded", True)
    for name in list(config_module._ENV_VARS):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CANOPY_DB_PATH", str(tmp_path / "storage" / "canopy.db"))
    reset_config()
    yield config_file
    reset_config()


@pytest.fixture
def config():
    return CanopyConfig()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
