"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from concurrent.futures import Future

import pytest

from netgauge.config import load_config

NOW_MS = 1_760_000_000_000


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "subprocess: test spawns real child processes"
    )


class InlineExecutor:
    """Executor stand-in that runs submitted work on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # pylint: disable=broad-except
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True):
        pass


class FakeClock:
    def __init__(self, start: int = NOW_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def app_config(tmp_path):
    """Config rooted in a temp dir, loaded through the real YAML loader."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "paths:\n"
        "  data_dir: data\n"
        "  logs_dir: logs\n"
        "  bin_dir: bin\n"
        "speedtest:\n"
        "  timeout_ms: 5000\n"
        "  interval_min: 0\n",
        encoding="utf-8",
    )
    return load_config(str(config_file), environ={})
