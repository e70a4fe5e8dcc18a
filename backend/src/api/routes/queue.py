# src/api/routes/queue.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.deps import client_identity, client_ip, get_queue_service, rate_limit_key, require_admin
from api.schemas.queue import (
    AdminProcessRequest,
    AdminProcessResponse,
    AdminStatsResponse,
    CircuitOut,
    FallbackToggleRequest,
    FallbackToggleResponse,
    JoinRequest,
    LeaveRequest,
    LeaveResponse,
    MonitorResponse,
    QueueResultResponse,
    SchedulerConfigPatch,
    SchedulerConfigResponse,
    SchedulerStatusOut,
    SimpleMessageResponse,
)
from domain.queue.types import QueueResult
from service.queue_service import QueueService

router = APIRouter(prefix="/queue", tags=["queue"])


def _to_response(r: QueueResult) -> QueueResultResponse:
    return QueueResultResponse(
        status=r.status.value,
        user_id=r.client_id,
        message=r.message,
        position=r.position,
        total_in_queue=r.total_in_queue,
        total_admitted=r.total_admitted,
        estimated_wait_minutes=r.estimated_wait_minutes,
        joined_at=r.joined_at,
        auto_approved=r.auto_approved,
        fallback_mode=r.fallback_mode,
        degraded=r.degraded or None,
    )


# ---------- public ----------


@router.post("/join", response_model=QueueResultResponse, response_model_exclude_none=True)
async def join_queue(
    request: Request,
    body: Optional[JoinRequest] = None,
    svc: QueueService = Depends(get_queue_service),
    ip: Optional[str] = Depends(client_ip),
    rate_key: str = Depends(rate_limit_key),
):
    body = body or JoinRequest()
    user_id = body.user_id or client_identity(request)
    result = await svc.join(user_id, captcha_token=body.captcha_token, client_ip=ip, rate_key=rate_key)
    return _to_response(result)


@router.get("/status", response_model=QueueResultResponse, response_model_exclude_none=True)
async def queue_status(
    request: Request,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    svc: QueueService = Depends(get_queue_service),
    rate_key: str = Depends(rate_limit_key),
):
    result = await svc.status(user_id or client_identity(request), rate_key=rate_key)
    return _to_response(result)


@router.post("/leave", response_model=LeaveResponse)
async def leave_queue(
    request: Request,
    body: Optional[LeaveRequest] = None,
    svc: QueueService = Depends(get_queue_service),
):
    user_id = (body.user_id if body else None) or client_identity(request)
    result = svc.leave(user_id)
    return LeaveResponse(success=result.success, remaining_in_queue=result.remaining_in_queue)


@router.get("/monitor", response_model=MonitorResponse)
async def queue_monitor(svc: QueueService = Depends(get_queue_service)):
    m = svc.monitor()
    m["scheduler"] = SchedulerStatusOut.of(m["scheduler"])
    return MonitorResponse(**m)


# ---------- admin ----------

admin = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@admin.post("/process", response_model=AdminProcessResponse)
async def admin_process(
    body: Optional[AdminProcessRequest] = None,
    svc: QueueService = Depends(get_queue_service),
):
    result = svc.admin_process(body.count if body else None)
    return AdminProcessResponse(
        message=f"Processed {result.processed_count} users from queue",
        processed_count=result.processed_count,
        remaining_in_queue=result.remaining_in_queue,
        processed_users=result.processed_users,
    )


@admin.get("/stats", response_model=AdminStatsResponse)
async def admin_stats(svc: QueueService = Depends(get_queue_service)):
    s = svc.admin_stats()
    s["scheduler"] = SchedulerStatusOut.of(s["scheduler"])
    s["circuits"] = {name: CircuitOut.of(snap) for name, snap in s["circuits"].items()}
    return AdminStatsResponse(**s)


@admin.put("/config", response_model=SchedulerConfigResponse)
async def admin_update_config(
    body: SchedulerConfigPatch,
    svc: QueueService = Depends(get_queue_service),
):
    cfg = await svc.update_scheduler_config(body.model_dump(exclude_none=True))
    return SchedulerConfigResponse(
        message="Auto-queue configuration updated",
        config=cfg,
        is_running=svc.scheduler.is_running,
    )


@admin.post("/scheduler/start", response_model=SimpleMessageResponse)
async def admin_scheduler_start(svc: QueueService = Depends(get_queue_service)):
    started = svc.scheduler.start()
    if started:
        return SimpleMessageResponse(message="Auto-queue processing started")
    if svc.scheduler.is_running:
        return SimpleMessageResponse(message="Auto-queue processing already running")
    return SimpleMessageResponse(success=False, message="Auto-queue processing is disabled")


@admin.post("/scheduler/stop", response_model=SimpleMessageResponse)
async def admin_scheduler_stop(svc: QueueService = Depends(get_queue_service)):
    await svc.stop_scheduler()
    return SimpleMessageResponse(message="Auto-queue processing stopped")


@admin.post("/fallback", response_model=FallbackToggleResponse)
async def admin_fallback(body: FallbackToggleRequest, svc: QueueService = Depends(get_queue_service)):
    restored = svc.set_fallback(body.enabled)
    return FallbackToggleResponse(fallback_mode=svc.fallback.is_in_fallback_mode(), restored_count=restored)


@admin.post("/reset", response_model=SimpleMessageResponse)
async def admin_reset(svc: QueueService = Depends(get_queue_service)):
    svc.reset()
    return SimpleMessageResponse(message="Queue state cleared")


router.include_router(admin)
