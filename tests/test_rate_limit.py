from __future__ import annotations

import pytest

from todolist import rate_limit
from todolist.rate_limit import RateLimiter


class _Clock:
  def __init__(self, now: float) -> None:
    self.now = now

  def __call__(self) -> float:
    return self.now


@pytest.fixture
def clock(monkeypatch) -> _Clock:
  c = _Clock(1000.0)
  monkeypatch.setattr(rate_limit.time, "time", c)
  return c


@pytest.mark.anyio
async def test_fixed_window_blocks_then_reopens(clock: _Clock) -> None:
  rl = RateLimiter()
  assert rl.hit("auth:login:a", limit=2, window_seconds=10) == (True, 0)
  assert rl.hit("auth:login:a", limit=2, window_seconds=10) == (True, 0)

  clock.now = 1004.0
  assert rl.hit("auth:login:a", limit=2, window_seconds=10) == (False, 6)

  clock.now = 1010.0
  assert rl.hit("auth:login:a", limit=2, window_seconds=10) == (True, 0)


@pytest.mark.anyio
async def test_closed_windows_are_swept_on_later_hits(clock: _Clock) -> None:
  rl = RateLimiter()
  rl.hit("auth:login:a", limit=5, window_seconds=10)
  rl.hit("auth:login:b", limit=5, window_seconds=10)
  assert set(rl._buckets) == {"auth:login:a", "auth:login:b"}

  clock.now = 1100.0
  rl.hit("auth:login:c", limit=5, window_seconds=10)
  assert set(rl._buckets) == {"auth:login:c"}


@pytest.mark.anyio
async def test_open_windows_survive_a_sweep(clock: _Clock) -> None:
  rl = RateLimiter()
  rl.hit("auth:otp:a", limit=1, window_seconds=600)

  clock.now = 1100.0
  rl.hit("auth:otp:b", limit=1, window_seconds=600)
  assert set(rl._buckets) == {"auth:otp:a", "auth:otp:b"}
  assert rl.hit("auth:otp:a", limit=1, window_seconds=600)[0] is False


@pytest.mark.anyio
async def test_reset_prefix_only_drops_matching_keys(clock: _Clock) -> None:
  rl = RateLimiter()
  rl.hit("auth:login:a", limit=1, window_seconds=60)
  rl.hit("other:a", limit=1, window_seconds=60)
  rl.reset_prefix("auth:")
  assert set(rl._buckets) == {"other:a"}
