# src/infrastructure/queue/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from infrastructure.queue.config import AutoPromotionConfig


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WaitingEntry(BaseModel):
    """
    대기열 항목. 한 저장소 안에서 client_id당 최대 1개.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    client_id: str
    joined_at: datetime = Field(default_factory=utcnow)


class QueueStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_waiting: int = 0
    total_admitted: int = 0
    oldest_joined_at: Optional[datetime] = None


class PromotionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    promoted: List[str] = Field(default_factory=list)  # 승격 순서 = 가입 순서
    remaining: int = 0


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitSnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    state: CircuitState
    failure_count: int = 0
    last_failure_at: Optional[datetime] = None
    failure_threshold: int
    cooldown_sec: float


class SchedulerStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_running: bool
    config: AutoPromotionConfig
    is_within_business_hours: bool
    last_tick_at: Optional[datetime] = None
    last_promoted_count: int = 0
    total_promoted: int = 0
    tick_errors: int = 0
