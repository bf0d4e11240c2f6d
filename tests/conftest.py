"""Pytest fixtures: clean config env, provider reset, fake source, polling helper."""

import json
import time
from typing import Callable

import pytest

from service_config.provider import reset_provider
from service_config.schemas import EnvKeys
from tests.helpers import FakeSource


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch):
    """Remove every default config env var so tests never see the host's settings."""
    for name in EnvKeys().model_dump().values():
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_global_provider():
    reset_provider()
    yield
    reset_provider()


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """c.json with {"port": 8080}; CONFIG_FILE points at it."""
    path = tmp_path / "c.json"
    path.write_text(json.dumps({"port": 8080}), encoding="utf-8")
    monkeypatch.setenv("CONFIG_FILE", str(path))
    return path


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Poll predicate until true or timeout; returns the last result."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.05) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
