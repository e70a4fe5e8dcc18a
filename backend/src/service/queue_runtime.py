# src/service/queue_runtime.py
"""
대기열 컴포지션 루트.
저장소/리미터/서킷/스케줄러를 한 번만 만들고 QueueService 에 주입한다.
전역 싱글톤 대신 app.state.queue_runtime 으로 들고 다닌다.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from infrastructure.captcha import CaptchaVerifier, load_captcha_verifier
from infrastructure.queue.clock import Clock, SystemClock
from infrastructure.queue.config import (
    AutoPromotionConfig,
    QueueConfig,
    RateLimitConfig,
    ResilienceConfig,
    load_auto_promotion_config,
    load_queue_config,
    load_rate_limit_config,
    load_resilience_config,
)
from infrastructure.queue.fallback import FallbackQueueStore
from infrastructure.queue.metrics import QueueMetrics, make_queue_metrics
from infrastructure.queue.rate_limit import FixedWindowRateLimiter
from infrastructure.queue.repo import IQueueStore, InMemoryQueueStore
from infrastructure.queue.resilience import CircuitBreaker, ResilienceWrapper, RetryPolicy, SleepFn
from infrastructure.queue.scheduler import AutoPromotionScheduler
from service.queue_service import QueueService

logger = logging.getLogger(__name__)


@dataclass
class QueueRuntime:
    service: QueueService
    queue_config: QueueConfig
    rate_limit_config: RateLimitConfig
    clock: Clock
    _sweeper: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def scheduler(self) -> AutoPromotionScheduler:
        return self.service.scheduler

    async def start(self) -> None:
        """lifespan 시작 시 호출. 실행 중인 이벤트 루프 안이어야 한다."""
        if self.queue_config.autostart:
            self.scheduler.start()
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="rate_limit_sweeper")

    async def stop(self) -> None:
        await self.scheduler.stop()
        task, self._sweeper = self._sweeper, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.rate_limit_config.sweep_interval_sec)
            self.service.rate_limiter.sweep()


def build_queue_runtime(
    *,
    queue_config: Optional[QueueConfig] = None,
    rate_limit_config: Optional[RateLimitConfig] = None,
    resilience_config: Optional[ResilienceConfig] = None,
    auto_promotion_config: Optional[AutoPromotionConfig] = None,
    store: Optional[IQueueStore] = None,
    captcha: Optional[CaptchaVerifier] = None,
    metrics: Optional[QueueMetrics] = None,
    clock: Optional[Clock] = None,
    sleep: Optional[SleepFn] = None,
) -> QueueRuntime:
    """
    인자로 넘기지 않은 설정은 환경변수에서 읽는다.
    테스트는 clock/sleep/store 를 바꿔 끼운다.
    """
    qcfg = queue_config or load_queue_config()
    rcfg = rate_limit_config or load_rate_limit_config()
    rescfg = resilience_config or load_resilience_config()
    acfg = auto_promotion_config or load_auto_promotion_config()
    clock = clock or SystemClock()
    metrics = metrics or make_queue_metrics(qcfg.metrics_backend)
    if captcha is None:
        captcha = load_captcha_verifier()

    store = store or InMemoryQueueStore(max_size=qcfg.max_size, clock=clock)
    fallback = FallbackQueueStore(
        max_size=qcfg.max_size,
        wait_minutes_per_position=qcfg.fallback_wait_minutes_per_position,
        clock=clock,
    )
    limiter = FixedWindowRateLimiter(window_sec=rcfg.window_sec, ceilings=rcfg.ceilings(), clock=clock)

    def _guard(name: str, cooldown_sec: float) -> ResilienceWrapper:
        breaker = CircuitBreaker(
            name,
            failure_threshold=rescfg.failure_threshold,
            cooldown_sec=cooldown_sec,
            clock=clock,
            metrics=metrics,
        )
        retry = RetryPolicy(
            max_attempts=rescfg.retry_max_attempts,
            base_delay_sec=rescfg.retry_base_delay_sec,
            jitter_sec=rescfg.retry_jitter_sec,
            sleep=sleep or asyncio.sleep,
        )
        return ResilienceWrapper(breaker, retry)

    scheduler = AutoPromotionScheduler(
        store,
        config=acfg,
        clock=clock,
        metrics=metrics,
    )

    service = QueueService(
        store=store,
        fallback=fallback,
        rate_limiter=limiter,
        join_guard=_guard("join", rescfg.join_cooldown_sec),
        status_guard=_guard("status", rescfg.status_cooldown_sec),
        scheduler=scheduler,
        config=qcfg,
        captcha=captcha,
        clock=clock,
        metrics=metrics,
    )
    logger.info(
        "queue runtime built (max_size=%d, auto_promotion=%s, captcha=%s)",
        qcfg.max_size,
        acfg.enabled,
        captcha is not None,
    )
    return QueueRuntime(service=service, queue_config=qcfg, rate_limit_config=rcfg, clock=clock)
