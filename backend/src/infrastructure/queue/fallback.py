# src/infrastructure/queue/fallback.py
import logging
from collections import OrderedDict
from typing import List, Optional

from domain.queue.types import estimate_wait_minutes
from infrastructure.queue.clock import Clock, SystemClock
from infrastructure.queue.models import WaitingEntry

logger = logging.getLogger(__name__)


class FallbackQueueStore:
    """
    주 저장소 서킷이 열렸을 때만 쓰는 단순 대기열.
    - FIFO / 순번 조회 / 크기만 제공, 승인 집합은 없다
      (폴백 모드의 클라이언트는 항상 "waiting", 자동 승격 대상 아님)
    - 모드 플래그는 호출자가 명시적으로 켜고 끈다. 자동 헬스체크로 복귀하지 않는다.
    """

    def __init__(
        self,
        *,
        max_size: int = 5000,
        wait_minutes_per_position: float = 3.0,
        clock: Optional[Clock] = None,
    ) -> None:
        self.max_size = max_size
        self.wait_minutes_per_position = wait_minutes_per_position
        self._clock = clock or SystemClock()
        self._queue: "OrderedDict[str, WaitingEntry]" = OrderedDict()
        self._enabled = False

    # ---------- mode flag ----------

    def enable_fallback(self) -> None:
        if not self._enabled:
            logger.warning("[FALLBACK] Switching to in-memory fallback queue")
        self._enabled = True

    def disable_fallback(self) -> None:
        if self._enabled:
            logger.info("[FALLBACK] Switching back to primary queue")
        self._enabled = False

    def is_in_fallback_mode(self) -> bool:
        return self._enabled

    # ---------- queue ----------

    def enqueue(self, client_id: str) -> bool:
        if client_id in self._queue or len(self._queue) >= self.max_size:
            return False
        self._queue[client_id] = WaitingEntry(client_id=client_id, joined_at=self._clock.now())
        return True

    def position_of(self, client_id: str) -> Optional[int]:
        if client_id not in self._queue:
            return None
        for idx, cid in enumerate(self._queue, start=1):
            if cid == client_id:
                return idx
        return None

    def entry(self, client_id: str) -> Optional[WaitingEntry]:
        return self._queue.get(client_id)

    def is_admitted(self, client_id: str) -> bool:
        # 폴백 저장소는 승인 개념이 없다
        return False

    def size(self) -> int:
        return len(self._queue)

    def remove(self, client_id: str) -> bool:
        return self._queue.pop(client_id, None) is not None

    def estimated_wait_minutes(self, position: int) -> int:
        return estimate_wait_minutes(position, self.wait_minutes_per_position)

    def drain(self) -> List[WaitingEntry]:
        """가입 순서대로 전부 꺼낸다(주 저장소로 되돌릴 때 사용)."""
        entries = list(self._queue.values())
        self._queue.clear()
        return entries

    def clear(self) -> None:
        self._queue.clear()
