# tourney_stats/util/freshness_cache.py
import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

log = logging.getLogger("freshness_cache")
if not log.handlers:
  h = logging.StreamHandler()
  h.setFormatter(logging.Formatter("[FC] %(levelname)s: %(message)s"))
  log.addHandler(h)
  log.setLevel(logging.INFO)

_MISS = object()


def key_for(namespace: str, payload: dict) -> str:
  """Canonical signature of a request: same payload, same key, regardless of dict order."""
  h = hashlib.sha1(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()
  return f"{namespace}:{h}"


@dataclass(frozen=True)
class CacheEntry:
  key: str
  value: Any
  inserted_at: float
  ttl: float

  def valid_at(self, now: float) -> bool:
    return now < self.inserted_at + self.ttl


class FreshnessCache:
  """
  TTL store + single-flight coordination per key.

  Concurrent get_or_compute calls for one key share a single in-flight task.
  A failed computation reaches every waiter and leaves nothing behind.
  """

  def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 256):
    self._clock = clock
    # every `sweep_every` puts, expired entries of keys nobody reads again are dropped
    self._sweep_every = max(1, sweep_every)
    self._puts = 0
    self._m: Dict[str, CacheEntry] = {}
    self._inflight: Dict[str, asyncio.Task] = {}

  def __len__(self) -> int:
    return len(self._m)

  def entry(self, key: str) -> Optional[CacheEntry]:
    return self._m.get(key)

  def get(self, key: str, default: Any = None) -> Any:
    e = self._m.get(key)
    if e is None:
      return default
    if not e.valid_at(self._clock()):
      self._m.pop(key, None)
      return default
    return e.value

  def put(self, key: str, value: Any, ttl: float) -> None:
    if ttl <= 0:
      self._m.pop(key, None)
      return
    self._m[key] = CacheEntry(key=key, value=value, inserted_at=self._clock(), ttl=ttl)
    self._puts += 1
    if self._puts % self._sweep_every == 0:
      self.sweep()

  def sweep(self) -> int:
    """Drop every expired entry; returns how many went."""
    now = self._clock()
    stale = [k for k, e in self._m.items() if not e.valid_at(now)]
    for k in stale:
      del self._m[k]
    return len(stale)

  def invalidate(self, key: str) -> None:
    self._m.pop(key, None)

  def clear(self) -> None:
    self._m.clear()

  def inflight(self, key: str) -> bool:
    return key in self._inflight

  async def get_or_compute(
      self,
      key: str,
      ttl: float,
      fresh: bool,
      compute: Callable[[], Awaitable[Any]],
  ) -> Any:
    if not fresh:
      hit = self.get(key, _MISS)
      if hit is not _MISS:
        return hit

    task = self._inflight.get(key)
    if task is None:
      log.info("compute %s (fresh=%s)", key, fresh)
      task = asyncio.ensure_future(self._run(key, ttl, compute))
      self._inflight[key] = task
    # shield: one waiter being cancelled must not cancel the shared computation
    return await asyncio.shield(task)

  async def _run(self, key: str, ttl: float, compute: Callable[[], Awaitable[Any]]) -> Any:
    try:
      value = await compute()
      self.put(key, value, ttl)
      return value
    finally:
      self._inflight.pop(key, None)
