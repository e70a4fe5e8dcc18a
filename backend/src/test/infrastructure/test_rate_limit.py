# tests/infrastructure/test_rate_limit.py
import pytest

from infrastructure.queue.rate_limit import SCOPE_JOIN, SCOPE_STATUS, FixedWindowRateLimiter


def test_window_allows_ceiling_then_denies(clock):
    limiter = FixedWindowRateLimiter(window_sec=60, ceilings={SCOPE_JOIN: 3, SCOPE_STATUS: 5}, clock=clock)

    decisions = [limiter.check("u1", SCOPE_JOIN) for _ in range(3)]
    assert all(d.allowed for d in decisions)
    assert [d.count for d in decisions] == [1, 2, 3]

    denied = limiter.check("u1", SCOPE_JOIN)
    assert denied.allowed is False
    assert denied.reset_at == decisions[0].reset_at


def test_window_resets_after_expiry(clock):
    limiter = FixedWindowRateLimiter(window_sec=60, ceilings={SCOPE_JOIN: 1, SCOPE_STATUS: 1}, clock=clock)
    assert limiter.check("u1", SCOPE_JOIN).allowed
    assert not limiter.check("u1", SCOPE_JOIN).allowed

    clock.advance(60)
    again = limiter.check("u1", SCOPE_JOIN)
    assert again.allowed
    assert again.count == 1


def test_scopes_and_clients_are_independent(clock):
    limiter = FixedWindowRateLimiter(window_sec=60, ceilings={SCOPE_JOIN: 1, SCOPE_STATUS: 2}, clock=clock)
    assert limiter.check("u1", SCOPE_JOIN).allowed
    assert not limiter.check("u1", SCOPE_JOIN).allowed

    assert limiter.check("u1", SCOPE_STATUS).allowed
    assert limiter.check("u2", SCOPE_JOIN).allowed


def test_sweep_removes_only_expired_windows(clock):
    limiter = FixedWindowRateLimiter(window_sec=60, clock=clock)
    limiter.check("old", SCOPE_JOIN)
    clock.advance(30)
    limiter.check("new", SCOPE_JOIN)
    clock.advance(31)

    assert limiter.sweep() == 1
    assert len(limiter) == 1
    assert limiter.window_for("new", SCOPE_JOIN) is not None
    assert limiter.window_for("old", SCOPE_JOIN) is None


def test_unknown_scope_and_bad_ceiling(clock):
    limiter = FixedWindowRateLimiter(clock=clock)
    with pytest.raises(ValueError):
        limiter.check("u1", "delete")
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(ceilings={SCOPE_JOIN: 0}, clock=clock)
