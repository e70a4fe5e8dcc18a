# src/domain/queue/errors.py
import math
from datetime import datetime, timezone
from typing import Optional


class QueueError(Exception):
    """
    대기열 도메인 오류의 공통 베이스.
    - code: 클라이언트에 그대로 노출되는 오류 코드
    - status_code: HTTP 매핑용 상태 코드
    """

    code: str = "QUEUE_ERROR"
    status_code: int = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class RateLimitExceeded(QueueError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, reset_at: datetime, *, scope: str = "join") -> None:
        super().__init__(f"Rate limit exceeded. Try again after {reset_at.isoformat()}")
        self.reset_at = reset_at
        self.scope = scope

    def retry_after_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return max(1, math.ceil((self.reset_at - now).total_seconds()))


class QueueFull(QueueError):
    code = "QUEUE_FULL"
    status_code = 503

    def __init__(self) -> None:
        super().__init__("Queue is currently full. Please try again later.")


class InvalidInput(QueueError):
    code = "INVALID_INPUT"
    status_code = 400

    def __init__(self, field: str, reason: Optional[str] = None) -> None:
        msg = f"Invalid input: {field}" + (f" ({reason})" if reason else "")
        super().__init__(msg)
        self.field = field


class Forbidden(QueueError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Admin token required") -> None:
        super().__init__(message)


class CircuitOpen(QueueError):
    """내부 전용: 호출자는 그대로 전파하지 말고 폴백 모드로 전환해야 한다."""

    code = "CIRCUIT_BREAKER_OPEN"
    status_code = 503

    def __init__(self, operation: str, retry_at: Optional[datetime] = None) -> None:
        super().__init__(f"Circuit breaker is open ({operation})")
        self.operation = operation
        self.retry_at = retry_at


class UnknownFailure(QueueError):
    code = "UNKNOWN_FAILURE"
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(message)


# 재시도/서킷 카운트 대상이 아닌 "정상 응답" 취급 오류들
CLIENT_ERRORS = (RateLimitExceeded, QueueFull, InvalidInput, Forbidden)
