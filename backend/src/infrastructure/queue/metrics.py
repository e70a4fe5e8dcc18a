# src/infrastructure/queue/metrics.py
from abc import ABC, abstractmethod
from typing import Optional
from weakref import WeakKeyDictionary

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge


class QueueMetrics(ABC):
    @abstractmethod
    def observe_join(self, outcome: str) -> None: ...

    @abstractmethod
    def observe_promotion(self, source: str, count: int) -> None: ...

    @abstractmethod
    def observe_rate_limited(self, scope: str) -> None: ...

    @abstractmethod
    def observe_circuit_open(self, operation: str) -> None: ...

    @abstractmethod
    def observe_tick_error(self) -> None: ...

    @abstractmethod
    def gauge_queue(self, *, waiting: int, admitted: int) -> None: ...


class NoopQueueMetrics(QueueMetrics):
    def observe_join(self, outcome: str) -> None:  # pragma: no cover
        pass

    def observe_promotion(self, source: str, count: int) -> None:  # pragma: no cover
        pass

    def observe_rate_limited(self, scope: str) -> None:  # pragma: no cover
        pass

    def observe_circuit_open(self, operation: str) -> None:  # pragma: no cover
        pass

    def observe_tick_error(self) -> None:  # pragma: no cover
        pass

    def gauge_queue(self, *, waiting: int, admitted: int) -> None:  # pragma: no cover
        pass


class PrometheusQueueMetrics(QueueMetrics):
    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        # 테스트에서는 별도 registry를 넘겨 중복 등록을 피한다
        reg = registry or REGISTRY

        self.joins = Counter(
            "queue_join_total",
            "Join requests by outcome",
            ["outcome"],  # allowed|waiting|fallback|rejected
            registry=reg,
        )
        self.promoted = Counter(
            "queue_promoted_total",
            "Clients promoted to admitted",
            ["source"],  # auto|admin|auto_approve
            registry=reg,
        )
        self.rate_limited = Counter("queue_rate_limited_total", "Rate limited requests", ["scope"], registry=reg)
        self.circuit_opened = Counter("queue_circuit_open_total", "Circuit breaker openings", ["operation"], registry=reg)
        self.tick_errors = Counter("queue_scheduler_tick_errors_total", "Auto promotion tick failures", registry=reg)
        self.waiting_gauge = Gauge("queue_waiting", "Current waiting list size", registry=reg)
        self.admitted_gauge = Gauge("queue_admitted", "Current admitted set size", registry=reg)

    def observe_join(self, outcome: str) -> None:
        self.joins.labels(outcome=outcome).inc()

    def observe_promotion(self, source: str, count: int) -> None:
        if count > 0:
            self.promoted.labels(source=source).inc(count)

    def observe_rate_limited(self, scope: str) -> None:
        self.rate_limited.labels(scope=scope).inc()

    def observe_circuit_open(self, operation: str) -> None:
        self.circuit_opened.labels(operation=operation).inc()

    def observe_tick_error(self) -> None:
        self.tick_errors.inc()

    def gauge_queue(self, *, waiting: int, admitted: int) -> None:
        self.waiting_gauge.set(waiting)
        self.admitted_gauge.set(admitted)


# 같은 registry 에 수집기를 두 번 등록하면 ValueError. registry 당 인스턴스 하나를 재사용한다
_prom_by_registry: "WeakKeyDictionary[CollectorRegistry, PrometheusQueueMetrics]" = WeakKeyDictionary()


def make_queue_metrics(backend: str, registry: Optional[CollectorRegistry] = None) -> QueueMetrics:
    if backend == "prom":
        reg = registry or REGISTRY
        metrics = _prom_by_registry.get(reg)
        if metrics is None:
            metrics = _prom_by_registry[reg] = PrometheusQueueMetrics(reg)
        return metrics
    return NoopQueueMetrics()
