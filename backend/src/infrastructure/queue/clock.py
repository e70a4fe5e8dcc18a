# src/infrastructure/queue/clock.py
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """timezone-aware(UTC) 현재 시각."""


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
