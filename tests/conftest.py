"""
Shared pytest fixtures for the profiler tests.
"""

import threading
import time

import pytest

from task_executor import CommandResult


class FakeExecutor:
    """Stands in for gnokey: records every command and returns immediately."""

    def __init__(self, delay_s=0.0, fail=False):
        self.delay_s = delay_s
        self.fail = fail
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, command, secret=""):
        with self._lock:
            self.calls.append((command, secret))
        if self.delay_s:
            time.sleep(self.delay_s)
        return CommandResult(
            output="OK!\n",
            error_output="boom" if self.fail else "",
            duration_s=self.delay_s,
            returncode=1 if self.fail else 0,
            error="exit status 1" if self.fail else None,
        )


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def csv_path(tmp_path):
    return tmp_path / "pc_profiler.csv"


@pytest.fixture
def make_executor():
    """Build a FakeExecutor with a custom delay or failure mode."""
    return FakeExecutor
