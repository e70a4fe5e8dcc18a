# tests/infrastructure/test_scheduler.py
import asyncio
from datetime import datetime, timezone

import pytest

from domain.queue.errors import QueueFull
from infrastructure.queue.config import AutoPromotionConfig, BusinessHours
from infrastructure.queue.repo import InMemoryQueueStore
from infrastructure.queue.scheduler import AutoPromotionScheduler


def _store_with(clock, ids):
    store = InMemoryQueueStore(clock=clock)
    for cid in ids:
        store.enqueue(cid)
    return store


@pytest.mark.asyncio
async def test_tick_respects_batch_size_and_free_slots(clock):
    store = _store_with(clock, ["C1", "C2", "C3", "C4", "C5"])
    sched = AutoPromotionScheduler(
        store, config=AutoPromotionConfig(batch_size=2, max_concurrent_admitted=3), clock=clock
    )

    first = await sched.tick()
    assert first.promoted == ["C1", "C2"]
    assert store.waiting_ids() == ["C3", "C4", "C5"]
    assert store.admitted_count() == 2

    second = await sched.tick()
    assert second.promoted == ["C3"]
    assert store.waiting_ids() == ["C4", "C5"]

    # 빈 자리가 없으면 대기열은 그대로
    assert await sched.tick() is None
    assert store.waiting_count() == 2
    assert sched.status().total_promoted == 3


@pytest.mark.asyncio
async def test_tick_outside_business_hours_never_promotes(clock):
    # 10:00 방콕 기준, 영업시간 13:00~17:00
    store = _store_with(clock, ["a", "b", "c"])
    cfg = AutoPromotionConfig(
        batch_size=5,
        business_hours=BusinessHours(enabled=True, start="13:00", end="17:00", timezone="Asia/Bangkok"),
    )
    sched = AutoPromotionScheduler(store, config=cfg, clock=clock)

    for _ in range(3):
        assert await sched.tick() is None
    assert store.waiting_count() == 3
    assert sched.is_within_business_hours() is False

    clock.advance(3 * 3600)
    result = await sched.tick()
    assert result.promoted == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_tick_with_empty_queue_is_noop(clock):
    sched = AutoPromotionScheduler(InMemoryQueueStore(clock=clock), clock=clock)
    assert await sched.tick() is None
    assert sched.status().last_tick_at == clock.now()


@pytest.mark.asyncio
async def test_tick_error_is_logged_and_swallowed(clock, caplog):
    store = _store_with(clock, ["a"])

    def broken(n):
        raise QueueFull()

    store.promote_batch = broken
    sched = AutoPromotionScheduler(store, clock=clock)

    assert await sched.tick() is None
    assert sched.status().tick_errors == 1
    assert "AUTO_QUEUE_ERROR" in caplog.text

    # 다음 tick은 정상 진행
    del store.promote_batch
    result = await sched.tick()
    assert result.promoted == ["a"]


@pytest.mark.asyncio
async def test_start_stop_lifecycle(clock):
    sched = AutoPromotionScheduler(InMemoryQueueStore(clock=clock), clock=clock)
    assert sched.start() is True
    assert sched.is_running
    assert sched.start() is False

    await sched.stop()
    assert not sched.is_running
    await sched.stop()


@pytest.mark.asyncio
async def test_disabled_scheduler_does_not_start(clock):
    sched = AutoPromotionScheduler(
        InMemoryQueueStore(clock=clock), config=AutoPromotionConfig(enabled=False), clock=clock
    )
    assert sched.start() is False
    assert not sched.is_running


@pytest.mark.asyncio
async def test_run_loop_ticks_after_each_interval(clock):
    store = _store_with(clock, ["a", "b"])
    intervals = []
    ticked = asyncio.Event()

    async def fake_sleep(sec):
        intervals.append(sec)
        if store.waiting_count() == 0:
            ticked.set()
        await asyncio.sleep(0)

    sched = AutoPromotionScheduler(
        store, config=AutoPromotionConfig(interval_ms=250, batch_size=1), clock=clock, sleep=fake_sleep
    )
    sched.start()
    await asyncio.wait_for(ticked.wait(), timeout=1)
    await sched.stop()

    assert store.admitted_count() == 2
    assert set(intervals) == {0.25}


@pytest.mark.asyncio
async def test_update_config_restarts_with_new_values(clock):
    sched = AutoPromotionScheduler(InMemoryQueueStore(clock=clock), clock=clock)
    sched.start()

    cfg = await sched.update_config({"batch_size": 10, "business_hours": {"enabled": True}})

    assert cfg.batch_size == 10
    assert cfg.business_hours.enabled is True
    assert cfg.business_hours.start == "09:00"
    assert sched.is_running
    await sched.stop()


@pytest.mark.asyncio
async def test_update_config_invalid_keeps_running_timer(clock):
    sched = AutoPromotionScheduler(InMemoryQueueStore(clock=clock), clock=clock)
    sched.start()
    task = sched._task

    with pytest.raises(ValueError):
        await sched.update_config({"batch_size": 0})

    assert sched._task is task
    assert sched.config.batch_size == 5
    await sched.stop()


@pytest.mark.asyncio
async def test_update_config_disable_stops_timer(clock):
    sched = AutoPromotionScheduler(InMemoryQueueStore(clock=clock), clock=clock)
    sched.start()
    await sched.update_config({"enabled": False})
    assert not sched.is_running


# ---------- business hours ----------


@pytest.mark.parametrize(
    "utc_hour,utc_minute,expected",
    [
        (1, 59, False),  # 08:59 방콕
        (2, 0, True),  # 09:00
        (9, 59, True),  # 16:59
        (10, 0, False),  # 17:00 (끝은 포함하지 않음)
    ],
)
def test_business_hours_half_open_window(utc_hour, utc_minute, expected):
    bh = BusinessHours(enabled=True, start="09:00", end="17:00", timezone="Asia/Bangkok")
    now = datetime(2026, 1, 5, utc_hour, utc_minute, tzinfo=timezone.utc)
    assert bh.contains(now) is expected


def test_business_hours_wrapping_midnight():
    bh = BusinessHours(enabled=True, start="22:00", end="02:00", timezone="UTC")
    assert bh.contains(datetime(2026, 1, 5, 23, 0, tzinfo=timezone.utc))
    assert bh.contains(datetime(2026, 1, 5, 1, 30, tzinfo=timezone.utc))
    assert not bh.contains(datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc))


def test_business_hours_disabled_is_always_open():
    bh = BusinessHours(enabled=False, start="09:00", end="10:00")
    assert bh.contains(datetime(2026, 1, 5, 20, 0, tzinfo=timezone.utc))


@pytest.mark.parametrize(
    "patch",
    [
        {"start": "9am"},
        {"end": "25:00"},
        {"timezone": "Mars/Olympus"},
    ],
)
def test_business_hours_validation(patch):
    with pytest.raises(ValueError):
        BusinessHours(**patch)


def test_config_merge_rejects_unknown_fields():
    with pytest.raises(ValueError):
        AutoPromotionConfig().merged({"speed": 3})
