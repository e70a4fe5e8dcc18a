# src/infrastructure/queue/events.py
import json
import logging
from typing import Any

logger = logging.getLogger("queue.events")


def log_event(event: str, *, level: int = logging.INFO, **meta: Any) -> None:
    """
    모니터링용 이벤트 로그. 외부 수집기에서 "[EVENT] <이름>" 으로 grep 가능하게 남긴다.
    """
    if meta:
        logger.log(level, "[EVENT] %s %s", event, json.dumps(meta, default=str, ensure_ascii=False))
    else:
        logger.log(level, "[EVENT] %s", event)
