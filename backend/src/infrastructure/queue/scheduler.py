# src/infrastructure/queue/scheduler.py
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from infrastructure.queue.clock import Clock, SystemClock
from infrastructure.queue.config import AutoPromotionConfig
from infrastructure.queue.events import log_event
from infrastructure.queue.metrics import NoopQueueMetrics, QueueMetrics
from infrastructure.queue.models import PromotionResult, SchedulerStatus
from infrastructure.queue.repo import IQueueStore

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class AutoPromotionScheduler:
    """
    일정 주기로 대기열 앞쪽부터 배치 승격(수동 운영자 대체).
    tick 순서:
      1) 영업시간 밖이면 건너뜀
      2) 빈 자리 = max_concurrent_admitted - 현재 승인 수, 0 이하면 건너뜀
      3) 배치 = min(batch_size, 빈 자리), 대기열이 비었으면 건너뜀
      4) promote_batch(배치) 후 이벤트 기록
    tick 안의 예외는 기록만 하고 삼킨다. 다음 tick은 정상 진행.
    """

    def __init__(
        self,
        store: IQueueStore,
        *,
        config: Optional[AutoPromotionConfig] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[QueueMetrics] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.store = store
        self._config = config or AutoPromotionConfig()
        self._clock = clock or SystemClock()
        self._metrics = metrics or NoopQueueMetrics()
        self._sleep = sleep

        self._task: Optional[asyncio.Task] = None
        self._last_tick_at: Optional[datetime] = None
        self._last_promoted = 0
        self._total_promoted = 0
        self._tick_errors = 0

    @property
    def config(self) -> AutoPromotionConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------- lifecycle --------

    def start(self) -> bool:
        """
        실행 중이 아니면 타이머 시작. 이미 실행 중이거나 비활성화 상태면 아무것도 하지 않는다.
        실행 중인 이벤트 루프 안에서 호출해야 한다.
        """
        if not self._config.enabled or self.is_running:
            return False
        interval_sec = self._config.interval_ms / 1000.0
        self._task = asyncio.create_task(self._run(interval_sec), name="auto_promotion_scheduler")
        logger.info(
            "Auto-queue processing started. Interval: %dms, Batch: %d",
            self._config.interval_ms,
            self._config.batch_size,
        )
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Auto-queue processing stopped")

    async def update_config(self, changes: Dict[str, Any]) -> AutoPromotionConfig:
        """
        런타임 설정 변경. 검증에 실패하면 기존 타이머는 그대로 둔다.
        성공 시 타이머를 멈추고, 활성화 상태면 새 주기로 다시 시작한다.
        """
        new_cfg = self._config.merged(changes)
        await self.stop()
        self._config = new_cfg
        if new_cfg.enabled:
            self.start()
        log_event("AUTO_QUEUE_CONFIG_UPDATED", config=new_cfg.model_dump(by_alias=True))
        return new_cfg

    async def _run(self, interval_sec: float) -> None:
        while True:
            await self._sleep(interval_sec)
            await self.tick()

    # -------- tick --------

    async def tick(self) -> Optional[PromotionResult]:
        try:
            return self._tick_once()
        except Exception as e:
            self._tick_errors += 1
            self._metrics.observe_tick_error()
            logger.exception("Auto-queue processing error: %s", e)
            log_event("AUTO_QUEUE_ERROR", level=logging.ERROR, error=str(e))
            return None

    def _tick_once(self) -> Optional[PromotionResult]:
        cfg = self._config
        self._last_tick_at = self._clock.now()
        self._last_promoted = 0

        if not cfg.business_hours.contains(self._last_tick_at):
            return None

        current_admitted = self.store.admitted_count()
        available_slots = cfg.max_concurrent_admitted - current_admitted
        if available_slots <= 0:
            logger.debug(
                "Max concurrent users reached: %d/%d", current_admitted, cfg.max_concurrent_admitted
            )
            return None

        batch_size = min(cfg.batch_size, available_slots)
        if self.store.waiting_count() == 0:
            return None

        result = self.store.promote_batch(batch_size)
        promoted = len(result.promoted)
        self._last_promoted = promoted
        self._total_promoted += promoted

        if promoted > 0:
            self._metrics.observe_promotion("auto", promoted)
            self._metrics.gauge_queue(waiting=result.remaining, admitted=self.store.admitted_count())
            log_event(
                "AUTO_QUEUE_PROCESSED",
                processedCount=promoted,
                remainingInQueue=result.remaining,
                currentAllowed=self.store.admitted_count(),
            )
        return result

    # -------- status --------

    def is_within_business_hours(self) -> bool:
        return self._config.business_hours.contains(self._clock.now())

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self.is_running,
            config=self._config,
            is_within_business_hours=self.is_within_business_hours(),
            last_tick_at=self._last_tick_at,
            last_promoted_count=self._last_promoted,
            total_promoted=self._total_promoted,
            tick_errors=self._tick_errors,
        )
