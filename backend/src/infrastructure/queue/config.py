# src/infrastructure/queue/config.py
import os
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class QueueConfig:
    # 대기열 최대 길이
    max_size: int = 5000
    # 승인 인원이 이 값보다 적으면 대기 없이 즉시 승인(콜드 스타트 방지)
    auto_approve_below: int = 3
    # 예상 대기시간(분) = ceil(순번 * 계수)
    wait_minutes_per_position: float = 2.0
    # 폴백 모드에서는 보수적으로 더 큰 계수 사용
    fallback_wait_minutes_per_position: float = 3.0
    # 메트릭 백엔드: "noop" | "prom"
    metrics_backend: str = "noop"
    # lifespan에서 스케줄러 자동 시작 여부(끄면 status 호출 시 지연 시작)
    autostart: bool = True
    # 설정 시 admin 엔드포인트는 X-Admin-Token 헤더 필요
    admin_token: Optional[str] = None


@dataclass(frozen=True)
class RateLimitConfig:
    window_sec: float = 60.0
    # 변경 연산(join)은 엄격하게, 조회(status 폴링)는 느슨하게
    join_max_requests: int = 10
    status_max_requests: int = 50
    # 만료된 윈도우 정리 주기
    sweep_interval_sec: float = 300.0

    def ceilings(self) -> Dict[str, int]:
        return {"join": self.join_max_requests, "status": self.status_max_requests}


@dataclass(frozen=True)
class ResilienceConfig:
    failure_threshold: int = 5
    join_cooldown_sec: float = 30.0
    status_cooldown_sec: float = 15.0
    retry_max_attempts: int = 3
    retry_base_delay_sec: float = 0.5
    retry_jitter_sec: float = 0.5


def _parse_hhmm(value: str) -> time:
    try:
        return datetime.strptime(value, "%H:%M").time()
    except (TypeError, ValueError):
        raise ValueError(f"expected HH:MM, got {value!r}")


class BusinessHours(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False  # False = 24/7 운영
    start: str = "09:00"
    end: str = "17:00"
    timezone: str = "Asia/Bangkok"

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, v: str) -> str:
        _parse_hhmm(v)
        return v

    @field_validator("timezone")
    @classmethod
    def _check_tz(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {v!r}")
        return v

    def contains(self, now: datetime) -> bool:
        """
        now(aware datetime)가 [start, end) 안에 있는지.
        start > end 이면 자정을 넘는 구간으로 본다(예: 22:00~02:00).
        """
        if not self.enabled:
            return True
        local = now.astimezone(ZoneInfo(self.timezone)).time().replace(second=0, microsecond=0)
        start, end = _parse_hhmm(self.start), _parse_hhmm(self.end)
        if start <= end:
            return start <= local < end
        return local >= start or local < end


class AutoPromotionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    enabled: bool = True
    interval_ms: int = Field(default=30_000, ge=1)
    batch_size: int = Field(default=5, ge=1)
    max_concurrent_admitted: int = Field(default=20, ge=1)
    business_hours: BusinessHours = Field(default_factory=BusinessHours)

    def merged(self, changes: Dict[str, Any]) -> "AutoPromotionConfig":
        """
        부분 업데이트(필드명 기준 snake_case)를 합친 새 설정을 검증해서 반환.
        원본은 변경하지 않는다.
        """
        data = self.model_dump()
        for key, value in changes.items():
            if value is None:
                continue
            if key == "business_hours" and isinstance(value, dict):
                bh = dict(data["business_hours"])
                bh.update({k: v for k, v in value.items() if v is not None})
                data["business_hours"] = bh
            else:
                data[key] = value
        return AutoPromotionConfig.model_validate(data)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "on"}


def load_queue_config() -> QueueConfig:
    return QueueConfig(
        max_size=_int_env("QUEUE_MAX_SIZE", 5000),
        auto_approve_below=_int_env("QUEUE_AUTO_APPROVE_BELOW", 3),
        wait_minutes_per_position=_float_env("QUEUE_WAIT_MINUTES_PER_POSITION", 2.0),
        fallback_wait_minutes_per_position=_float_env("QUEUE_FALLBACK_WAIT_MINUTES_PER_POSITION", 3.0),
        metrics_backend=os.getenv("QUEUE_METRICS", "noop").lower(),
        autostart=_bool_env("QUEUE_AUTOSTART", True),
        admin_token=os.getenv("QUEUE_ADMIN_TOKEN") or None,
    )


def load_rate_limit_config() -> RateLimitConfig:
    return RateLimitConfig(
        window_sec=_float_env("RATE_LIMIT_WINDOW_SEC", 60.0),
        join_max_requests=_int_env("RATE_LIMIT_JOIN_MAX", 10),
        status_max_requests=_int_env("RATE_LIMIT_STATUS_MAX", 50),
        sweep_interval_sec=_float_env("RATE_LIMIT_SWEEP_SEC", 300.0),
    )


def load_resilience_config() -> ResilienceConfig:
    return ResilienceConfig(
        failure_threshold=_int_env("CIRCUIT_FAILURE_THRESHOLD", 5),
        join_cooldown_sec=_float_env("CIRCUIT_JOIN_COOLDOWN_SEC", 30.0),
        status_cooldown_sec=_float_env("CIRCUIT_STATUS_COOLDOWN_SEC", 15.0),
        retry_max_attempts=_int_env("RETRY_MAX_ATTEMPTS", 3),
        retry_base_delay_sec=_float_env("RETRY_BASE_DELAY_SEC", 0.5),
        retry_jitter_sec=_float_env("RETRY_JITTER_SEC", 0.5),
    )


def load_auto_promotion_config() -> AutoPromotionConfig:
    """환경변수 값이 잘못되면 pydantic ValidationError로 기동 시점에 실패한다."""
    return AutoPromotionConfig(
        enabled=_bool_env("AUTO_QUEUE_ENABLED", True),
        interval_ms=_int_env("AUTO_QUEUE_INTERVAL_MS", 30_000),
        batch_size=_int_env("AUTO_QUEUE_BATCH_SIZE", 5),
        max_concurrent_admitted=_int_env("AUTO_QUEUE_MAX_CONCURRENT", 20),
        business_hours=BusinessHours(
            enabled=_bool_env("BUSINESS_HOURS_ENABLED", False),
            start=os.getenv("BUSINESS_HOURS_START", "09:00"),
            end=os.getenv("BUSINESS_HOURS_END", "17:00"),
            timezone=os.getenv("BUSINESS_HOURS_TZ", "Asia/Bangkok"),
        ),
    )
