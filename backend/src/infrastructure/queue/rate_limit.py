# src/infrastructure/queue/rate_limit.py
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional

from infrastructure.queue.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

SCOPE_JOIN = "join"
SCOPE_STATUS = "status"


@dataclass
class RateLimitWindow:
    key: str
    count: int
    window_reset_at: datetime


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reset_at: Optional[datetime] = None
    count: int = 0


class FixedWindowRateLimiter:
    """
    고정 윈도우 카운터. (identity, scope) 쌍마다 윈도우 하나.
    - 첫 요청 또는 reset 시각이 지난 뒤: count=1, 새 윈도우 시작
    - 그 외: count += 1, 상한 초과 시 거부(현재 윈도우의 reset 시각 반환)
    윈도우 경계에서 짧게 최대 2배까지 허용될 수 있다(고정 윈도우의 한계, 허용).
    """

    def __init__(
        self,
        *,
        window_sec: float = 60.0,
        ceilings: Optional[Mapping[str, int]] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.window = timedelta(seconds=window_sec)
        self._ceilings: Dict[str, int] = dict(ceilings or {SCOPE_JOIN: 10, SCOPE_STATUS: 50})
        for scope, ceiling in self._ceilings.items():
            if ceiling < 1:
                raise ValueError(f"rate limit ceiling for {scope!r} must be >= 1")
        self._clock = clock or SystemClock()
        self._windows: Dict[str, RateLimitWindow] = {}

    def ceiling(self, scope: str) -> int:
        try:
            return self._ceilings[scope]
        except KeyError:
            raise ValueError(f"unknown rate limit scope {scope!r}")

    def check(self, key: str, scope: str) -> RateLimitDecision:
        ceiling = self.ceiling(scope)
        now = self._clock.now()
        wkey = f"{scope}:{key}"

        win = self._windows.get(wkey)
        if win is None or now >= win.window_reset_at:
            win = RateLimitWindow(key=wkey, count=1, window_reset_at=now + self.window)
            self._windows[wkey] = win
            return RateLimitDecision(allowed=True, reset_at=win.window_reset_at, count=1)

        win.count += 1
        if win.count > ceiling:
            return RateLimitDecision(allowed=False, reset_at=win.window_reset_at, count=win.count)
        return RateLimitDecision(allowed=True, reset_at=win.window_reset_at, count=win.count)

    def window_for(self, key: str, scope: str) -> Optional[RateLimitWindow]:
        return self._windows.get(f"{scope}:{key}")

    def sweep(self) -> int:
        """reset 시각이 지난 윈도우 제거. 제거된 개수 반환."""
        now = self._clock.now()
        expired = [k for k, w in self._windows.items() if now >= w.window_reset_at]
        for k in expired:
            del self._windows[k]
        if expired:
            logger.debug("rate limit sweep removed %d windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)

    def reset(self) -> None:
        self._windows.clear()
