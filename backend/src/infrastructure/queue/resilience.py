# src/infrastructure/queue/resilience.py
"""
재시도(지수 백오프 + 지터) + 서킷 브레이커.

  CLOSED --(연속 실패 >= threshold)--> OPEN --(cooldown 경과 후 다음 호출)--> HALF_OPEN
  HALF_OPEN --(시험 호출 성공)--> CLOSED
  HALF_OPEN --(시험 호출 실패)--> OPEN (cooldown 재시작)
  HALF_OPEN --(시험 호출 취소)--> OPEN (cooldown 유지, 다음 호출이 곧바로 시험 호출)

재시도는 각 CLOSED/HALF_OPEN 시도 "안쪽"에서 돈다. 재시도를 모두 소진해야
브레이커 입장에서 실패 1회로 집계된다.
CLIENT_ERRORS(대기열 가득 참, 잘못된 입력 등)는 정상 응답으로 보고 재시도/실패 집계에서 제외한다.
"""

import asyncio
import logging
import random
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from domain.queue.errors import CLIENT_ERRORS, CircuitOpen, UnknownFailure
from infrastructure.queue.clock import Clock, SystemClock
from infrastructure.queue.events import log_event
from infrastructure.queue.metrics import NoopQueueMetrics, QueueMetrics
from infrastructure.queue.models import CircuitSnapshot, CircuitState

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    delay = base * 2^attempt + uniform(0, jitter), 최대 max_attempts회 시도.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay_sec: float = 0.5,
        jitter_sec: float = 0.5,
        sleep: SleepFn = asyncio.sleep,
        rng: Optional[random.Random] = None,
        passthrough: Tuple[Type[BaseException], ...] = CLIENT_ERRORS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_sec = base_delay_sec
        self.jitter_sec = jitter_sec
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._passthrough = passthrough

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_sec * (2**attempt) + self._rng.uniform(0, self.jitter_sec)

    async def run(self, operation: Operation[T]) -> T:
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except self._passthrough:
                raise
            except Exception as e:
                if attempt + 1 >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "retrying after failure (attempt %d/%d, sleep %.2fs): %s",
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    e,
                )
                await self._sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        cooldown_sec: float = 30.0,
        clock: Optional[Clock] = None,
        metrics: Optional[QueueMetrics] = None,
        ignore: Tuple[Type[BaseException], ...] = CLIENT_ERRORS,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown = timedelta(seconds=cooldown_sec)
        self._clock = clock or SystemClock()
        self._metrics = metrics or NoopQueueMetrics()
        self._ignore = ignore

        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self.failure_count,
            last_failure_at=self.last_failure_at,
            failure_threshold=self.failure_threshold,
            cooldown_sec=self.cooldown.total_seconds(),
        )

    async def call(self, operation: Operation[T]) -> T:
        self._before_call()
        try:
            result = await operation()
        except self._ignore:
            # 백엔드는 정상 응답한 것 → 성공으로 집계
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise
        except BaseException:
            # 취소 등으로 결과 없이 끝난 호출은 실패로 세지 않는다
            self._release_trial()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at = None
        self._trial_in_flight = False

    # -------- internal helpers --------

    def _before_call(self) -> None:
        if self._state == CircuitState.OPEN:
            retry_at = self.last_failure_at + self.cooldown
            if self._clock.now() >= retry_at:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info("circuit %s: OPEN -> HALF_OPEN", self.name)
            else:
                # 감싼 연산은 호출하지 않는다
                raise CircuitOpen(self.name, retry_at=retry_at)

        if self._state == CircuitState.HALF_OPEN:
            # 시험 호출은 정확히 1건만
            if self._trial_in_flight:
                raise CircuitOpen(self.name, retry_at=None)
            self._trial_in_flight = True

    def _release_trial(self) -> None:
        # last_failure_at 은 그대로 둔다
        if self._state == CircuitState.HALF_OPEN and self._trial_in_flight:
            self._state = CircuitState.OPEN
            logger.info("circuit %s: HALF_OPEN trial abandoned -> OPEN", self.name)
        self._trial_in_flight = False

    def _on_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("circuit %s: %s -> CLOSED", self.name, self._state.value)
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self._trial_in_flight = False

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_at = self._clock.now()
        self._trial_in_flight = False
        if self._state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            was_open = self._state == CircuitState.OPEN
            self._state = CircuitState.OPEN
            if not was_open:
                self._metrics.observe_circuit_open(self.name)
                log_event(
                    "CIRCUIT_OPENED",
                    level=logging.WARNING,
                    operation=self.name,
                    failureCount=self.failure_count,
                    cooldownSec=self.cooldown.total_seconds(),
                )


class ResilienceWrapper:
    """
    breaker.call(retry.run(op)) 조합.
    재시도 소진 후의 원본 예외는 UnknownFailure로 감싸서 올린다
    (서비스 계층은 CircuitOpen / UnknownFailure만 잡으면 된다).
    """

    def __init__(self, breaker: CircuitBreaker, retry: Optional[RetryPolicy] = None) -> None:
        self.breaker = breaker
        self.retry = retry or RetryPolicy()

    @property
    def name(self) -> str:
        return self.breaker.name

    async def execute(self, operation: Operation[T]) -> T:
        try:
            return await self.breaker.call(lambda: self.retry.run(operation))
        except (CircuitOpen, *CLIENT_ERRORS):
            raise
        except Exception as e:
            logger.error("operation %s failed after retries: %s", self.breaker.name, e)
            raise UnknownFailure(f"{self.breaker.name} operation failed") from e
