# src/api/deps.py
from typing import Optional

from fastapi import Depends, Header, Request

from domain.queue.errors import Forbidden
from infrastructure.identity import client_origin, derive_client_id, resolve_client_id
from service.queue_runtime import QueueRuntime
from service.queue_service import QueueService


def get_queue_runtime(request: Request) -> QueueRuntime:
    # lifespan 에서 app.state.queue_runtime 에 올려둔다
    return request.app.state.queue_runtime


def get_queue_service(runtime: QueueRuntime = Depends(get_queue_runtime)) -> QueueService:
    return runtime.service


def client_identity(request: Request) -> str:
    """요청 헤더로 대기열 키 유도. userId 를 명시하지 않은 요청에만 쓴다."""
    h = request.headers
    return resolve_client_id(
        forwarded_for=h.get("x-forwarded-for"),
        real_ip=h.get("x-real-ip"),
        peer_host=request.client.host if request.client else None,
        user_agent=h.get("user-agent"),
        session_id=h.get("x-queue-session"),
    )


def rate_limit_key(request: Request) -> str:
    """요청 한도 키. 본문 userId 나 X-Queue-Session 과 무관하게 IP+UA 지문으로만 센다."""
    h = request.headers
    origin = client_origin(
        forwarded_for=h.get("x-forwarded-for"),
        real_ip=h.get("x-real-ip"),
        peer_host=request.client.host if request.client else None,
    )
    return derive_client_id(origin, h.get("user-agent"))


def client_ip(request: Request, x_forwarded_for: Optional[str] = Header(default=None)) -> Optional[str]:
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip() or None
    return request.client.host if request.client else None


def require_admin(
    runtime: QueueRuntime = Depends(get_queue_runtime),
    x_admin_token: Optional[str] = Header(default=None),
) -> None:
    # 토큰 미설정 = 신뢰 네트워크 전제
    expected = runtime.queue_config.admin_token
    if expected and x_admin_token != expected:
        raise Forbidden()
