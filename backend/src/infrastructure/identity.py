# src/infrastructure/identity.py
import re
from typing import Optional

from domain.queue.errors import InvalidInput

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9-]")
_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]{8,128}$")
_CLIENT_ID = re.compile(r"^[A-Za-z0-9_-]{1,200}$")
MAX_CLIENT_ID_LEN = 200


def derive_client_id(origin: Optional[str], agent: Optional[str]) -> str:
    """
    네트워크 출처 + User-Agent 로 만든 결정적 대기열 키.
    NAT 뒤에서 같은 브라우저를 쓰는 사용자끼리는 충돌할 수 있다(알려진 한계).
    """
    ip = (origin or "").split(",")[0].strip() or "unknown"
    ua = (agent or "").strip() or "unknown"
    return _UNSAFE_CHARS.sub("", f"{ip}-{ua}")[:MAX_CLIENT_ID_LEN]


def client_origin(
    *,
    forwarded_for: Optional[str] = None,
    real_ip: Optional[str] = None,
    peer_host: Optional[str] = None,
) -> str:
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return (real_ip or "").strip() or peer_host or "unknown"


def resolve_client_id(
    *,
    forwarded_for: Optional[str] = None,
    real_ip: Optional[str] = None,
    peer_host: Optional[str] = None,
    user_agent: Optional[str] = None,
    session_id: Optional[str] = None,
) -> str:
    # 명시적 세션 ID(X-Queue-Session)가 있으면 지문보다 우선
    if session_id is not None:
        if not _SESSION_ID.match(session_id):
            raise InvalidInput("X-Queue-Session", "expected 8-128 chars of [A-Za-z0-9_-]")
        return f"s-{session_id}"
    origin = client_origin(forwarded_for=forwarded_for, real_ip=real_ip, peer_host=peer_host)
    return derive_client_id(origin, user_agent)


def validate_client_id(client_id: Optional[str], field: str = "userId") -> str:
    if not client_id or not _CLIENT_ID.match(client_id):
        raise InvalidInput(field, "expected 1-200 chars of [A-Za-z0-9_-]")
    return client_id
