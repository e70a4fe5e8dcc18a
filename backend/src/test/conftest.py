# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """수동으로 시간을 흘리는 시계. 기본값은 방콕 기준 월요일 10:00."""

    def __init__(self, start: datetime = datetime(2026, 1, 5, 3, 0, tzinfo=timezone.utc)) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        self._now = value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps():
    """실제로 기다리지 않고 요청된 sleep 시간만 기록."""
    calls = []

    async def _sleep(sec: float) -> None:
        calls.append(sec)

    _sleep.calls = calls
    return _sleep
