# src/api/handlers.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from domain.queue.errors import InvalidInput, QueueError, RateLimitExceeded, UnknownFailure

logger = logging.getLogger(__name__)


def _error_body(err: QueueError) -> dict:
    return {"success": False, "error": err.message, "code": err.code, "message": err.message}


async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("queue error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc))


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    runtime = getattr(request.app.state, "queue_runtime", None)
    now = runtime.clock.now() if runtime is not None else None
    body = _error_body(exc)
    body.update(status="rate_limited", resetAt=exc.reset_at.isoformat())
    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        headers={"Retry-After": str(exc.retry_after_seconds(now))},
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    loc = errors[0].get("loc", ()) if errors else ()
    field = ".".join(str(p) for p in loc if p != "body") or "body"
    err = InvalidInput(field, errors[0].get("msg") if errors else None)
    return JSONResponse(status_code=err.status_code, content=_error_body(err))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=_error_body(UnknownFailure()))


def register_exception_handlers(app: FastAPI) -> None:
    # 더 구체적인 타입이 먼저 매칭된다(Starlette 는 MRO 순으로 핸들러 탐색)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(QueueError, queue_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
