# src/infrastructure/queue/__init__.py
from infrastructure.queue.clock import Clock, SystemClock
from infrastructure.queue.config import (
    AutoPromotionConfig,
    BusinessHours,
    QueueConfig,
    RateLimitConfig,
    ResilienceConfig,
    load_auto_promotion_config,
    load_queue_config,
    load_rate_limit_config,
    load_resilience_config,
)
from infrastructure.queue.fallback import FallbackQueueStore
from infrastructure.queue.metrics import NoopQueueMetrics, PrometheusQueueMetrics, QueueMetrics
from infrastructure.queue.models import (
    CircuitSnapshot,
    CircuitState,
    PromotionResult,
    QueueStats,
    SchedulerStatus,
    WaitingEntry,
)
from .rate_limit import FixedWindowRateLimiter, RateLimitDecision
from .repo import IQueueStore, InMemoryQueueStore
from .resilience import CircuitBreaker, ResilienceWrapper, RetryPolicy
from .scheduler import AutoPromotionScheduler

__all__ = [
    "Clock",
    "SystemClock",
    "QueueConfig",
    "RateLimitConfig",
    "ResilienceConfig",
    "AutoPromotionConfig",
    "BusinessHours",
    "load_queue_config",
    "load_rate_limit_config",
    "load_resilience_config",
    "load_auto_promotion_config",
    "WaitingEntry",
    "QueueStats",
    "PromotionResult",
    "CircuitState",
    "CircuitSnapshot",
    "SchedulerStatus",
    "IQueueStore",
    "InMemoryQueueStore",
    "FallbackQueueStore",
    "FixedWindowRateLimiter",
    "RateLimitDecision",
    "RetryPolicy",
    "CircuitBreaker",
    "ResilienceWrapper",
    "AutoPromotionScheduler",
    "QueueMetrics",
    "NoopQueueMetrics",
    "PrometheusQueueMetrics",
]
