# src/api/schemas/queue.py
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from infrastructure.queue.config import AutoPromotionConfig
from infrastructure.queue.models import CircuitSnapshot, CircuitState, SchedulerStatus


class CamelModel(BaseModel):
    # 프런트엔드 JSON 은 camelCase, 파이썬 필드는 snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- requests ----------


class JoinRequest(CamelModel):
    model_config = ConfigDict(extra="forbid")

    # 없으면 요청 헤더(X-Queue-Session 또는 IP+UA)에서 유도
    user_id: Optional[str] = None
    captcha_token: Optional[str] = None


class LeaveRequest(CamelModel):
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None


class AdminProcessRequest(CamelModel):
    model_config = ConfigDict(extra="forbid")

    count: Optional[int] = Field(default=None, description="승격 인원 (기본 5, 1..1000)")


class BusinessHoursPatch(CamelModel):
    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    start: Optional[str] = None
    end: Optional[str] = None
    timezone: Optional[str] = None


class SchedulerConfigPatch(CamelModel):
    """부분 업데이트. 빠진 필드는 현재 값 유지."""

    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    interval_ms: Optional[int] = None
    batch_size: Optional[int] = None
    max_concurrent_admitted: Optional[int] = None
    business_hours: Optional[BusinessHoursPatch] = None


class FallbackToggleRequest(CamelModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool


# ---------- responses ----------


class QueueResultResponse(CamelModel):
    success: bool = True
    status: Literal["allowed", "waiting", "not_in_queue", "rate_limited"]
    user_id: str
    message: str
    position: Optional[int] = None
    total_in_queue: Optional[int] = None
    total_admitted: Optional[int] = None
    estimated_wait_minutes: Optional[int] = None
    joined_at: Optional[datetime] = None
    auto_approved: Optional[bool] = None
    fallback_mode: Optional[bool] = None
    degraded: Optional[bool] = None


class LeaveResponse(CamelModel):
    success: bool
    message: str = "You have left the queue"
    remaining_in_queue: int


class AdminProcessResponse(CamelModel):
    success: bool = True
    message: str
    processed_count: int
    remaining_in_queue: int
    processed_users: List[str] = Field(default_factory=list)


class CircuitOut(CamelModel):
    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: Optional[datetime] = None
    failure_threshold: int
    cooldown_sec: float

    @classmethod
    def of(cls, snap: CircuitSnapshot) -> "CircuitOut":
        return cls(**snap.model_dump())


class SchedulerStatusOut(CamelModel):
    is_running: bool
    config: AutoPromotionConfig
    is_within_business_hours: bool
    last_tick_at: Optional[datetime] = None
    last_promoted_count: int = 0
    total_promoted: int = 0
    tick_errors: int = 0

    @classmethod
    def of(cls, st: SchedulerStatus) -> "SchedulerStatusOut":
        return cls(**dict(st))


class AdminStatsResponse(CamelModel):
    success: bool = True
    total_in_queue: int
    allowed_users: int
    oldest_in_queue: Optional[datetime] = None
    scheduler: SchedulerStatusOut
    fallback_mode: bool
    fallback_queue_size: int
    circuits: Dict[str, CircuitOut]


class MonitorResponse(CamelModel):
    success: bool = True
    total_in_queue: int
    allowed_users: int
    oldest_in_queue: Optional[datetime] = None
    estimated_wait_minutes: int
    next_processing_in_sec: float
    users_per_batch: int
    max_concurrent_users: int
    utilization: str
    queue_efficiency: Literal["processing", "idle"]
    system_load: Literal["low", "medium", "high"]
    scheduler: SchedulerStatusOut
    fallback_mode: bool
    circuits: Dict[str, CircuitState]


class SchedulerConfigResponse(CamelModel):
    success: bool = True
    message: str
    config: AutoPromotionConfig
    is_running: bool


class FallbackToggleResponse(CamelModel):
    success: bool = True
    fallback_mode: bool
    restored_count: int = 0


class SimpleMessageResponse(CamelModel):
    success: bool = True
    message: str
