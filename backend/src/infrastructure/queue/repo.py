# src/infrastructure/queue/repo.py
from collections import OrderedDict
from typing import List, Optional, Set

from infrastructure.queue.clock import Clock, SystemClock
from infrastructure.queue.models import PromotionResult, QueueStats, WaitingEntry


class IQueueStore:
    """
    저장소 포트(인터페이스).
    모든 연산은 동기 함수라서 중간에 await 지점이 없고, 이벤트 루프 기준으로 원자적이다.
    """

    def enqueue(self, client_id: str) -> bool: ...
    def position_of(self, client_id: str) -> Optional[int]: ...
    def entry(self, client_id: str) -> Optional[WaitingEntry]: ...
    def is_admitted(self, client_id: str) -> bool: ...
    def admit(self, client_id: str) -> None: ...
    def promote_batch(self, n: int) -> PromotionResult: ...
    def remove(self, client_id: str) -> bool: ...
    def stats(self) -> QueueStats: ...
    def waiting_count(self) -> int: ...
    def admitted_count(self) -> int: ...
    def waiting_ids(self) -> List[str]: ...
    def restore(self, entries: List[WaitingEntry]) -> int: ...
    def clear(self) -> None: ...


class InMemoryQueueStore(IQueueStore):
    """
    단일 프로세스용 InMemory 저장소.
    - 대기열: 가입 순서를 유지하는 OrderedDict (엄격한 FIFO, 우선순위 재정렬 없음)
    - 승인 집합: set
    불변식: 같은 client_id가 대기열과 승인 집합에 동시에 존재하지 않는다.
    멀티워커/멀티프로세스 환경에선 Redis 등 외부 저장소로 대체 필요.
    """

    def __init__(self, *, max_size: int = 5000, clock: Optional[Clock] = None) -> None:
        self.max_size = max_size
        self._clock = clock or SystemClock()
        self._waiting: "OrderedDict[str, WaitingEntry]" = OrderedDict()
        self._admitted: Set[str] = set()

    def enqueue(self, client_id: str) -> bool:
        # 이미 승인됨(성공으로 간주) / 이미 대기중(중복 금지) / 가득 참 → 변경 없이 False
        if client_id in self._admitted or client_id in self._waiting:
            return False
        if len(self._waiting) >= self.max_size:
            return False
        self._waiting[client_id] = WaitingEntry(client_id=client_id, joined_at=self._clock.now())
        return True

    def position_of(self, client_id: str) -> Optional[int]:
        if client_id not in self._waiting:
            return None
        for idx, cid in enumerate(self._waiting, start=1):
            if cid == client_id:
                return idx
        return None

    def entry(self, client_id: str) -> Optional[WaitingEntry]:
        return self._waiting.get(client_id)

    def is_admitted(self, client_id: str) -> bool:
        return client_id in self._admitted

    def admit(self, client_id: str) -> None:
        """대기 여부와 무관하게 바로 승인(소규모 대기열 자동 승인용)."""
        self._waiting.pop(client_id, None)
        self._admitted.add(client_id)

    def promote_batch(self, n: int) -> PromotionResult:
        promoted: List[str] = []
        while self._waiting and len(promoted) < max(0, n):
            cid, _entry = self._waiting.popitem(last=False)
            self._admitted.add(cid)
            promoted.append(cid)
        return PromotionResult(promoted=promoted, remaining=len(self._waiting))

    def remove(self, client_id: str) -> bool:
        was_waiting = self._waiting.pop(client_id, None) is not None
        was_admitted = client_id in self._admitted
        self._admitted.discard(client_id)
        return was_waiting or was_admitted

    def stats(self) -> QueueStats:
        oldest = next(iter(self._waiting.values()), None)
        return QueueStats(
            total_waiting=len(self._waiting),
            total_admitted=len(self._admitted),
            oldest_joined_at=oldest.joined_at if oldest else None,
        )

    def waiting_count(self) -> int:
        return len(self._waiting)

    def admitted_count(self) -> int:
        return len(self._admitted)

    def waiting_ids(self) -> List[str]:
        return list(self._waiting)

    def restore(self, entries: List[WaitingEntry]) -> int:
        """
        폴백 대기열을 원래 가입 시각 그대로 뒤에 이어 붙인다.
        이미 승인/대기중인 항목은 건너뛴다. 추가된 수를 반환.
        """
        added = 0
        for e in entries:
            if e.client_id in self._admitted or e.client_id in self._waiting:
                continue
            if len(self._waiting) >= self.max_size:
                break
            self._waiting[e.client_id] = e
            added += 1
        return added

    def clear(self) -> None:
        self._waiting.clear()
        self._admitted.clear()
