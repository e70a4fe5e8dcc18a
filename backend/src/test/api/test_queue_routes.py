# tests/api/test_queue_routes.py
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.handlers import register_exception_handlers
from api.routes import api_router
from infrastructure.queue.config import AutoPromotionConfig, QueueConfig, RateLimitConfig, ResilienceConfig
from service.queue_runtime import build_queue_runtime


@pytest.fixture
def runtime(clock, sleeps):
    return build_queue_runtime(
        queue_config=QueueConfig(autostart=False, admin_token="s3cret"),
        rate_limit_config=RateLimitConfig(join_max_requests=3, status_max_requests=5),
        resilience_config=ResilienceConfig(retry_jitter_sec=0.0),
        auto_promotion_config=AutoPromotionConfig(enabled=False),
        clock=clock,
        sleep=sleeps,
    )


@pytest.fixture
def client(runtime):
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    app.state.queue_runtime = runtime
    return TestClient(app)


ADMIN = {"X-Admin-Token": "s3cret"}


def _fill(runtime, waiting):
    for cid in ("a1", "a2", "a3"):
        runtime.service.store.admit(cid)
    for cid in waiting:
        runtime.service.store.enqueue(cid)


def test_join_with_explicit_user_id(client):
    res = client.post("/api/queue/join", json={"userId": "alice"})

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["status"] == "allowed"
    assert body["userId"] == "alice"
    assert body["autoApproved"] is True
    assert "position" not in body


def test_join_waiting_response_is_camel_case(client, runtime):
    _fill(runtime, ["w1"])

    body = client.post("/api/queue/join", json={"userId": "bob"}).json()

    assert body["status"] == "waiting"
    assert body["position"] == 2
    assert body["totalInQueue"] == 2
    assert body["estimatedWaitMinutes"] == 4
    assert body["fallbackMode"] is False
    assert "joinedAt" in body


def test_join_derives_identity_from_headers(client, runtime):
    res = client.post(
        "/api/queue/join",
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "Mozilla/5.0 (X11)"},
    )
    assert res.status_code == 200
    assert res.json()["userId"] == "20301137-Mozilla50X11"
    assert runtime.service.store.is_admitted(res.json()["userId"])


def test_join_session_header_overrides_fingerprint(client):
    body = client.post("/api/queue/join", headers={"X-Queue-Session": "abcDEF12_-"}).json()
    assert body["userId"] == "s-abcDEF12_-"


def test_join_malformed_session_header_is_400(client):
    res = client.post("/api/queue/join", headers={"X-Queue-Session": "short"})
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert body["code"] == "INVALID_INPUT"


def test_join_rate_limit_returns_429_with_retry_after(client):
    for _ in range(3):
        assert client.post("/api/queue/join", json={"userId": "alice"}).status_code == 200

    res = client.post("/api/queue/join", json={"userId": "alice"})

    assert res.status_code == 429
    assert res.headers["Retry-After"] == "60"
    body = res.json()
    assert body["status"] == "rate_limited"
    assert body["code"] == "RATE_LIMIT_EXCEEDED"
    assert "resetAt" in body


def test_join_rate_limit_ignores_rotating_user_ids(client):
    for i in range(3):
        assert client.post("/api/queue/join", json={"userId": f"user{i}"}).status_code == 200

    res = client.post("/api/queue/join", json={"userId": "user-fresh"})
    assert res.status_code == 429
    assert res.json()["code"] == "RATE_LIMIT_EXCEEDED"

    # 다른 지문(IP)은 별도 창을 쓴다
    other = client.post("/api/queue/join", json={"userId": "user-fresh"}, headers={"X-Forwarded-For": "198.51.100.4"})
    assert other.status_code == 200


def test_join_rate_limit_ignores_rotating_session_header(client):
    for i in range(3):
        res = client.post("/api/queue/join", headers={"X-Queue-Session": f"session-{i:04d}"})
        assert res.status_code == 200

    assert client.post("/api/queue/join", headers={"X-Queue-Session": "session-9999"}).status_code == 429


def test_status_rate_limit_ignores_rotating_user_ids(client):
    for i in range(5):
        assert client.get("/api/queue/status", params={"userId": f"peek{i}"}).status_code == 200

    res = client.get("/api/queue/status", params={"userId": "peek-fresh"})
    assert res.status_code == 429
    assert res.json()["code"] == "RATE_LIMIT_EXCEEDED"


def test_join_queue_full_is_503(clock, sleeps):
    rt = build_queue_runtime(
        queue_config=QueueConfig(max_size=1, autostart=False),
        rate_limit_config=RateLimitConfig(),
        resilience_config=ResilienceConfig(),
        auto_promotion_config=AutoPromotionConfig(enabled=False),
        clock=clock,
        sleep=sleeps,
    )
    _fill(rt, ["w1"])
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    app.state.queue_runtime = rt

    res = TestClient(app).post("/api/queue/join", json={"userId": "bob"})

    assert res.status_code == 503
    assert res.json()["code"] == "QUEUE_FULL"


def test_status_and_leave(client, runtime):
    _fill(runtime, ["w1", "w2"])

    st = client.get("/api/queue/status", params={"userId": "w2"}).json()
    assert st["status"] == "waiting"
    assert st["position"] == 2

    left = client.post("/api/queue/leave", json={"userId": "w1"}).json()
    assert left == {"success": True, "message": "You have left the queue", "remainingInQueue": 1}

    st = client.get("/api/queue/status", params={"userId": "w2"}).json()
    assert st["position"] == 1

    st = client.get("/api/queue/status", params={"userId": "nobody"}).json()
    assert st["status"] == "not_in_queue"


def test_status_rejects_bad_user_id(client):
    res = client.get("/api/queue/status", params={"userId": "bad id!"})
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_INPUT"


def test_monitor(client, runtime):
    _fill(runtime, [f"w{i}" for i in range(25)])

    body = client.get("/api/queue/monitor").json()

    assert body["totalInQueue"] == 25
    assert body["systemLoad"] == "high"
    assert body["utilization"] == "3/20"
    assert body["scheduler"]["config"]["batchSize"] == 5
    assert body["circuits"] == {"join": "CLOSED", "status": "CLOSED"}


# ---------- admin ----------


def test_admin_requires_token(client):
    assert client.get("/api/queue/admin/stats").status_code == 403
    res = client.get("/api/queue/admin/stats", headers={"X-Admin-Token": "nope"})
    assert res.status_code == 403
    assert res.json()["code"] == "FORBIDDEN"


def test_admin_process_and_stats(client, runtime):
    for cid in ["c1", "c2", "c3"]:
        runtime.service.store.enqueue(cid)

    res = client.post("/api/queue/admin/process", json={"count": 2}, headers=ADMIN)
    assert res.status_code == 200
    body = res.json()
    assert body["processedUsers"] == ["c1", "c2"]
    assert body["processedCount"] == 2
    assert body["remainingInQueue"] == 1

    stats = client.get("/api/queue/admin/stats", headers=ADMIN).json()
    assert stats["totalInQueue"] == 1
    assert stats["allowedUsers"] == 2
    assert stats["scheduler"]["isRunning"] is False
    assert stats["scheduler"]["config"]["businessHours"]["timezone"] == "Asia/Bangkok"
    assert stats["circuits"]["join"]["state"] == "CLOSED"
    assert stats["fallbackMode"] is False


def test_admin_process_default_and_range(client, runtime):
    for i in range(7):
        runtime.service.store.enqueue(f"c{i}")

    assert client.post("/api/queue/admin/process", headers=ADMIN).json()["processedCount"] == 5
    res = client.post("/api/queue/admin/process", json={"count": 5000}, headers=ADMIN)
    assert res.status_code == 400


def test_admin_update_config(client):
    res = client.put(
        "/api/queue/admin/config",
        json={"batchSize": 3, "businessHours": {"enabled": True, "start": "08:00"}},
        headers=ADMIN,
    )
    assert res.status_code == 200
    cfg = res.json()["config"]
    assert cfg["batchSize"] == 3
    assert cfg["businessHours"] == {"enabled": True, "start": "08:00", "end": "17:00", "timezone": "Asia/Bangkok"}

    bad = client.put("/api/queue/admin/config", json={"businessHours": {"timezone": "Nowhere/Land"}}, headers=ADMIN)
    assert bad.status_code == 400

    unknown = client.put("/api/queue/admin/config", json={"speed": 1}, headers=ADMIN)
    assert unknown.status_code == 400


def test_admin_fallback_toggle_and_reset(client, runtime):
    assert client.post("/api/queue/admin/fallback", json={"enabled": True}, headers=ADMIN).json()["fallbackMode"]

    body = client.post("/api/queue/join", json={"userId": "x1"}).json()
    assert body["fallbackMode"] is True
    assert body["status"] == "waiting"

    off = client.post("/api/queue/admin/fallback", json={"enabled": False}, headers=ADMIN).json()
    assert off == {"success": True, "fallbackMode": False, "restoredCount": 1}
    assert runtime.service.store.waiting_ids() == ["x1"]

    reset = client.post("/api/queue/admin/reset", headers=ADMIN)
    assert reset.status_code == 200
    assert runtime.service.store.waiting_count() == 0


def test_admin_scheduler_start_disabled(client):
    res = client.post("/api/queue/admin/scheduler/start", headers=ADMIN).json()
    assert res["success"] is False
    stop = client.post("/api/queue/admin/scheduler/stop", headers=ADMIN).json()
    assert stop["success"] is True
