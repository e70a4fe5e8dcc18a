import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api.handlers import register_exception_handlers
from api.routes import api_router
from service.queue_runtime import build_queue_runtime

# -------------------------------
# Logging 설정
# -------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

# verbose한 서브로거 조절
for name in ["httpx", "httpcore"]:
    logging.getLogger(name).setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# -------------------------------
# FastAPI Lifespan 설정
# -------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === STARTUP ===
    runtime = build_queue_runtime()
    app.state.queue_runtime = runtime
    await runtime.start()

    yield

    # === SHUTDOWN ===
    await runtime.stop()


# -------------------------------
# FastAPI 앱 초기화
# -------------------------------

app = FastAPI(lifespan=lifespan)
register_exception_handlers(app)


# 헬스체크
@app.get("/healthz", tags=["infra"])
async def health_check():
    return {"status": "ok"}


# 프로메테우스 스크레이프 (QUEUE_METRICS=prom 일 때만 큐 지표가 채워짐)
@app.get("/metrics", tags=["infra"])
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# 라우터 등록
app.include_router(api_router, prefix="/api")
