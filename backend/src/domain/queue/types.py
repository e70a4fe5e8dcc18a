import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class QueueStatus(str, Enum):
    ALLOWED = "allowed"
    WAITING = "waiting"
    NOT_IN_QUEUE = "not_in_queue"
    RATE_LIMITED = "rate_limited"


@dataclass
class QueueResult:
    """join/status 공통 결과."""

    status: QueueStatus
    client_id: str
    message: str
    position: Optional[int] = None
    total_in_queue: Optional[int] = None
    total_admitted: Optional[int] = None
    estimated_wait_minutes: Optional[int] = None
    joined_at: Optional[datetime] = None
    auto_approved: bool = False
    fallback_mode: bool = False
    degraded: bool = False  # 장애로 폴백 데이터를 돌려준 경우


@dataclass
class LeaveResult:
    success: bool
    remaining_in_queue: int


@dataclass
class AdminProcessResult:
    processed_count: int
    remaining_in_queue: int
    processed_users: List[str] = field(default_factory=list)


def estimate_wait_minutes(position: int, minutes_per_position: float) -> int:
    # 휴리스틱: 순번에 비례하는 단순 선형식
    return max(1, math.ceil(max(position, 1) * minutes_per_position))
