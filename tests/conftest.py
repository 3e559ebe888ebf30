"""
Shared fixtures for Token Monitor tests.
"""
from datetime import datetime

import pytest

from token_monitor.core.monitor import TokenMonitor


def local_ms(*args) -> int:
    """Milliseconds since the epoch for a naive local datetime."""
    return int(datetime(*args).timestamp() * 1000)


# Mid-month, mid-day local time so hour/day/month buckets are unambiguous
NOW = local_ms(2024, 6, 15, 12, 30)


class FakeClock:
    """Controllable millisecond clock."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(tmp_path, clock):
    """Monitor writing to a temporary directory with a fake clock."""
    return TokenMonitor(tmp_path / "data", clock=clock)
