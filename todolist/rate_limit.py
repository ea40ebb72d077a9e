from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock

import redis

from todolist.config import settings


@dataclass
class _Bucket:
  reset_at: float
  count: int


# How often hit() sweeps windows that have already closed.
_PRUNE_EVERY_SECONDS = 60.0


class RateLimiter:
  """
  Fixed-window rate limiter for the auth endpoints.

  Counts live in Redis when REDIS_URL is set, otherwise in process memory.
  A Redis outage degrades to the in-memory window instead of failing requests.
  """

  def __init__(self, redis_url: str | None = None) -> None:
    self._lock = Lock()
    self._buckets: dict[str, _Bucket] = {}
    self._next_prune = 0.0
    self._redis: redis.Redis | None = None
    if redis_url:
      self._redis = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=1)

  def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    """
    if self._redis is not None:
      try:
        return self._hit_redis(key, limit=limit, window_seconds=window_seconds)
      except redis.RedisError:
        pass

    now = time.time()
    with self._lock:
      if now >= self._next_prune:
        self._prune(now)
      b = self._buckets.get(key)
      if b is None or now >= b.reset_at:
        self._buckets[key] = _Bucket(reset_at=now + window_seconds, count=1)
        return True, 0
      if b.count >= limit:
        retry = max(1, int(b.reset_at - now))
        return False, retry
      b.count += 1
      return True, 0

  def _prune(self, now: float) -> None:
    for k in [k for k, b in self._buckets.items() if b.reset_at <= now]:
      del self._buckets[k]
    self._next_prune = now + _PRUNE_EVERY_SECONDS

  def _hit_redis(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    rk = f"rl:{key}"
    pipe = self._redis.pipeline()
    pipe.incr(rk, 1)
    pipe.ttl(rk)
    count, ttl = pipe.execute()
    if int(count) == 1:
      self._redis.expire(rk, int(window_seconds))
      ttl = int(window_seconds)
    retry = max(1, int(ttl)) if int(ttl) > 0 else int(window_seconds)
    if int(count) > int(limit):
      return False, retry
    return True, 0

  def reset_prefix(self, prefix: str) -> None:
    with self._lock:
      for k in list(self._buckets.keys()):
        if k.startswith(prefix):
          del self._buckets[k]


limiter = RateLimiter(settings.redis_url)
