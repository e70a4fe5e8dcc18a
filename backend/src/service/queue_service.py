# src/service/queue_service.py
"""
가상 대기열 퍼사드 (HTTP 핸들러가 호출하는 진입점)

join   : rate limit(join) → [CAPTCHA, fail-open] → 서킷/재시도 래퍼 → 주 저장소 | 폴백 저장소
status : rate limit(status) → 스케줄러 지연 시작 → 서킷/재시도 래퍼 → 상태 조회
leave  : 대기열/승인 집합/폴백 대기열에서 무조건 제거(멱등)
admin  : promote_batch(n) 직접 호출 (영업시간/동시 승인 제한을 무시하는 수동 경로)

주의: 단일 프로세스 메모리 기반. 저장소 변경은 전부 await 없는 동기 구간에서 일어난다.
"""

import logging
from functools import partial
from typing import Any, Dict, Optional

from pydantic import ValidationError

from domain.queue.errors import CircuitOpen, InvalidInput, QueueFull, RateLimitExceeded, UnknownFailure
from domain.queue.types import (
    AdminProcessResult,
    LeaveResult,
    QueueResult,
    QueueStatus,
    estimate_wait_minutes,
)
from infrastructure.captcha import CaptchaError, CaptchaVerifier
from infrastructure.identity import validate_client_id
from infrastructure.queue.clock import Clock, SystemClock
from infrastructure.queue.config import AutoPromotionConfig, QueueConfig
from infrastructure.queue.events import log_event
from infrastructure.queue.fallback import FallbackQueueStore
from infrastructure.queue.metrics import NoopQueueMetrics, QueueMetrics
from infrastructure.queue.rate_limit import SCOPE_JOIN, SCOPE_STATUS, FixedWindowRateLimiter
from infrastructure.queue.repo import IQueueStore
from infrastructure.queue.resilience import ResilienceWrapper
from infrastructure.queue.scheduler import AutoPromotionScheduler

logger = logging.getLogger(__name__)

MAX_ADMIN_BATCH = 1000
DEFAULT_ADMIN_BATCH = 5


class QueueService:
    def __init__(
        self,
        *,
        store: IQueueStore,
        fallback: FallbackQueueStore,
        rate_limiter: FixedWindowRateLimiter,
        join_guard: ResilienceWrapper,
        status_guard: ResilienceWrapper,
        scheduler: AutoPromotionScheduler,
        config: Optional[QueueConfig] = None,
        captcha: Optional[CaptchaVerifier] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[QueueMetrics] = None,
    ) -> None:
        self.store = store
        self.fallback = fallback
        self.rate_limiter = rate_limiter
        self.join_guard = join_guard
        self.status_guard = status_guard
        self.scheduler = scheduler
        self.config = config or QueueConfig()
        self.captcha = captcha
        self.clock = clock or SystemClock()
        self.metrics = metrics or NoopQueueMetrics()

    # ---------- join ----------

    async def join(
        self,
        client_id: str,
        *,
        captcha_token: Optional[str] = None,
        client_ip: Optional[str] = None,
        rate_key: Optional[str] = None,
    ) -> QueueResult:
        """rate_key: 요청 한도를 셀 키. 없으면 client_id 로 센다."""
        validate_client_id(client_id)
        self._enforce_rate_limit(rate_key or client_id, SCOPE_JOIN)

        if captcha_token:
            await self._check_captcha(captcha_token, client_ip)

        try:
            result = await self.join_guard.execute(partial(self._join_once, client_id))
        except QueueFull:
            self.metrics.observe_join("rejected")
            log_event("QUEUE_JOIN_QUEUE_FULL", userId=client_id)
            raise
        except (CircuitOpen, UnknownFailure) as e:
            # 주 저장소 사용 불가 → 폴백 모드로 전환하고 폴백 데이터로 응답
            log_event("QUEUE_JOIN_DEGRADED", level=logging.WARNING, userId=client_id, error=e.code)
            self.fallback.enable_fallback()
            result = self._join_fallback(client_id, degraded=True)

        self.metrics.observe_join("fallback" if result.fallback_mode else result.status.value)
        self._update_gauges()
        return result

    async def _join_once(self, client_id: str) -> QueueResult:
        # 아래 구간은 await 없이 한 번에 실행된다
        if self.store.is_admitted(client_id):
            log_event("QUEUE_JOIN_ALREADY_ALLOWED", userId=client_id)
            return QueueResult(
                status=QueueStatus.ALLOWED,
                client_id=client_id,
                message="You are already allowed to proceed",
                joined_at=self.clock.now(),
            )

        if self.fallback.is_in_fallback_mode():
            return self._join_fallback(client_id)

        position = self.store.position_of(client_id)
        if position is not None:
            log_event("QUEUE_JOIN_ALREADY_IN_QUEUE", userId=client_id, position=position)
            return self._waiting_result(client_id, position, message="You are already in the queue")

        # 소규모 대기열 자동 승인: 스케줄러를 기다리지 않고 콜드 스타트를 풀어준다
        if self.store.admitted_count() < self.config.auto_approve_below or self.store.waiting_count() == 0:
            self.store.admit(client_id)
            self.metrics.observe_promotion("auto_approve", 1)
            log_event("QUEUE_JOIN_AUTO_APPROVED", userId=client_id, reason="auto_approval")
            return QueueResult(
                status=QueueStatus.ALLOWED,
                client_id=client_id,
                message="You have been automatically approved to proceed",
                joined_at=self.clock.now(),
                auto_approved=True,
            )

        if not self.store.enqueue(client_id):
            raise QueueFull()

        position = self.store.position_of(client_id)
        log_event("QUEUE_JOIN_SUCCESS", userId=client_id, position=position)
        return self._waiting_result(client_id, position, message="You have been added to the queue")

    def _join_fallback(self, client_id: str, *, degraded: bool = False) -> QueueResult:
        self.fallback.enqueue(client_id)
        position = self.fallback.position_of(client_id)
        if position is None:
            raise QueueFull()
        log_event("QUEUE_JOIN_FALLBACK_MODE", userId=client_id, position=position)
        return self._fallback_result(
            client_id, position, degraded=degraded, message="You have been added to the queue (fallback mode)"
        )

    # ---------- status ----------

    async def status(self, client_id: str, *, rate_key: Optional[str] = None) -> QueueResult:
        validate_client_id(client_id)
        self._enforce_rate_limit(rate_key or client_id, SCOPE_STATUS)
        self.ensure_scheduler_running()

        try:
            return await self.status_guard.execute(partial(self._status_once, client_id))
        except (CircuitOpen, UnknownFailure) as e:
            log_event("QUEUE_STATUS_DEGRADED", level=logging.WARNING, userId=client_id, error=e.code)
            self.fallback.enable_fallback()
            return self._status_fallback(client_id, degraded=True)

    async def _status_once(self, client_id: str) -> QueueResult:
        stats = self.store.stats()
        if self.store.is_admitted(client_id):
            return QueueResult(
                status=QueueStatus.ALLOWED,
                client_id=client_id,
                message="You are allowed to proceed",
                total_in_queue=stats.total_waiting,
                total_admitted=stats.total_admitted,
            )

        # 폴백 전환 전부터 주 저장소에서 기다리던 사용자는 주 저장소 순번으로 답한다
        position = self.store.position_of(client_id)
        if position is not None:
            return self._waiting_result(client_id, position, message="You are currently in the queue")

        if self.fallback.is_in_fallback_mode():
            return self._status_fallback(client_id)

        return QueueResult(
            status=QueueStatus.NOT_IN_QUEUE,
            client_id=client_id,
            message="You are not currently in the queue",
            total_in_queue=stats.total_waiting,
            total_admitted=stats.total_admitted,
        )

    def _status_fallback(self, client_id: str, *, degraded: bool = False) -> QueueResult:
        position = self.fallback.position_of(client_id)
        if position is not None:
            return self._fallback_result(
                client_id, position, degraded=degraded, message="You are currently in the queue (fallback mode)"
            )
        return QueueResult(
            status=QueueStatus.NOT_IN_QUEUE,
            client_id=client_id,
            message="You are not currently in the queue",
            total_in_queue=self.fallback.size(),
            fallback_mode=True,
            degraded=degraded,
        )

    def ensure_scheduler_running(self) -> None:
        if not self.scheduler.is_running and self.scheduler.start():
            log_event("AUTO_QUEUE_LAZY_START")

    # ---------- leave ----------

    def leave(self, client_id: str) -> LeaveResult:
        validate_client_id(client_id)
        removed = self.store.remove(client_id)
        removed = self.fallback.remove(client_id) or removed
        if removed:
            log_event("QUEUE_LEAVE", userId=client_id)
        self._update_gauges()
        remaining = self.fallback.size() if self.fallback.is_in_fallback_mode() else self.store.waiting_count()
        return LeaveResult(success=True, remaining_in_queue=remaining)

    # ---------- admin ----------

    def admin_process(self, count: Optional[int] = None) -> AdminProcessResult:
        """스케줄러의 영업시간/동시 승인 제한을 우회하는 수동 승격."""
        n = DEFAULT_ADMIN_BATCH if count is None else count
        if not isinstance(n, int) or not 1 <= n <= MAX_ADMIN_BATCH:
            raise InvalidInput("count", f"must be between 1 and {MAX_ADMIN_BATCH}")

        result = self.store.promote_batch(n)
        self.metrics.observe_promotion("admin", len(result.promoted))
        self._update_gauges()
        log_event(
            "ADMIN_QUEUE_PROCESSED",
            processedCount=len(result.promoted),
            remainingInQueue=result.remaining,
        )
        return AdminProcessResult(
            processed_count=len(result.promoted),
            remaining_in_queue=result.remaining,
            processed_users=list(result.promoted),
        )

    def admin_stats(self) -> Dict[str, Any]:
        stats = self.store.stats()
        return {
            "total_in_queue": stats.total_waiting,
            "allowed_users": stats.total_admitted,
            "oldest_in_queue": stats.oldest_joined_at,
            "scheduler": self.scheduler.status(),
            "fallback_mode": self.fallback.is_in_fallback_mode(),
            "fallback_queue_size": self.fallback.size(),
            "circuits": {
                self.join_guard.name: self.join_guard.breaker.snapshot(),
                self.status_guard.name: self.status_guard.breaker.snapshot(),
            },
        }

    def monitor(self) -> Dict[str, Any]:
        """대시보드용 읽기 전용 요약."""
        stats = self.store.stats()
        sched = self.scheduler.status()
        cfg = sched.config
        waiting = stats.total_waiting
        if waiting > 20:
            load = "high"
        elif waiting > 10:
            load = "medium"
        else:
            load = "low"
        return {
            "total_in_queue": waiting,
            "allowed_users": stats.total_admitted,
            "oldest_in_queue": stats.oldest_joined_at,
            "estimated_wait_minutes": max(1, -(-waiting // cfg.batch_size)),
            "next_processing_in_sec": cfg.interval_ms / 1000.0,
            "users_per_batch": cfg.batch_size,
            "max_concurrent_users": cfg.max_concurrent_admitted,
            "utilization": f"{stats.total_admitted}/{cfg.max_concurrent_admitted}",
            "queue_efficiency": "processing" if waiting > 0 else "idle",
            "system_load": load,
            "scheduler": sched,
            "fallback_mode": self.fallback.is_in_fallback_mode(),
            "circuits": {
                self.join_guard.name: self.join_guard.breaker.state,
                self.status_guard.name: self.status_guard.breaker.state,
            },
        }

    async def update_scheduler_config(self, changes: Dict[str, Any]) -> AutoPromotionConfig:
        try:
            return await self.scheduler.update_config(changes)
        except ValidationError as e:
            # 검증 실패 시 기존 타이머/설정은 그대로 유지된다
            first = e.errors()[0]
            field = ".".join(str(p) for p in first["loc"]) or "config"
            raise InvalidInput(field, first["msg"]) from e

    async def stop_scheduler(self) -> None:
        await self.scheduler.stop()

    def set_fallback(self, enabled: bool) -> int:
        """
        폴백 모드 수동 전환. 끌 때는 폴백 대기열을 가입 순서대로 주 저장소에 되돌린다.
        되돌린 항목 수를 반환.
        """
        if enabled:
            self.fallback.enable_fallback()
            return 0
        self.fallback.disable_fallback()
        restored = self.store.restore(self.fallback.drain())
        self.join_guard.breaker.reset()
        self.status_guard.breaker.reset()
        log_event("QUEUE_FALLBACK_DISABLED", restored=restored)
        self._update_gauges()
        return restored

    def reset(self) -> None:
        self.store.clear()
        self.fallback.clear()
        self.fallback.disable_fallback()
        self.join_guard.breaker.reset()
        self.status_guard.breaker.reset()
        self.rate_limiter.reset()
        self._update_gauges()
        log_event("QUEUE_RESET", level=logging.WARNING)

    # ---------- 내부 유틸 ----------

    def _enforce_rate_limit(self, key: str, scope: str) -> None:
        decision = self.rate_limiter.check(key, scope)
        if not decision.allowed:
            self.metrics.observe_rate_limited(scope)
            log_event(f"QUEUE_{scope.upper()}_RATE_LIMITED", rateKey=key, resetAt=decision.reset_at)
            raise RateLimitExceeded(decision.reset_at, scope=scope)

    async def _check_captcha(self, token: str, client_ip: Optional[str]) -> None:
        # CAPTCHA 결과는 기록만 한다. 어떤 경우에도 join을 막지 않는다(fail-open)
        outcome = await self.captcha.verify(token, client_ip) if self.captcha else CaptchaError("no verifier")
        if isinstance(outcome, CaptchaError):
            log_event("CAPTCHA_NO_OPINION", reason=outcome.reason)
            return
        log_event("CAPTCHA_VERIFICATION", success=outcome.passed, score=outcome.score)
        if not outcome.passed:
            logger.warning("CAPTCHA verification below threshold (score=%s), proceeding", outcome.score)

    def _waiting_result(self, client_id: str, position: int, *, message: str) -> QueueResult:
        entry = self.store.entry(client_id)
        return QueueResult(
            status=QueueStatus.WAITING,
            client_id=client_id,
            message=message,
            position=position,
            total_in_queue=self.store.waiting_count(),
            total_admitted=self.store.admitted_count(),
            estimated_wait_minutes=estimate_wait_minutes(position, self.config.wait_minutes_per_position),
            joined_at=entry.joined_at if entry else None,
        )

    def _fallback_result(self, client_id: str, position: int, *, degraded: bool, message: str) -> QueueResult:
        entry = self.fallback.entry(client_id)
        return QueueResult(
            status=QueueStatus.WAITING,
            client_id=client_id,
            message=message,
            position=position,
            total_in_queue=self.fallback.size(),
            estimated_wait_minutes=self.fallback.estimated_wait_minutes(position),
            joined_at=entry.joined_at if entry else None,
            fallback_mode=True,
            degraded=degraded,
        )

    def _update_gauges(self) -> None:
        self.metrics.gauge_queue(waiting=self.store.waiting_count(), admitted=self.store.admitted_count())
