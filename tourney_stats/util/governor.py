# tourney_stats/util/governor.py
import asyncio
import hashlib
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from tourney_stats.config import (
  FETCH_TIMEOUT,
  RETRY_BASE_DELAY,
  RETRY_MAX_ATTEMPTS,
  RETRY_MAX_DELAY,
  UPSTREAM_BURST,
  UPSTREAM_MAX_CONCURRENCY,
  UPSTREAM_RATE_PER_SEC,
)
from tourney_stats.errors import BadRequest, NotFound, UpstreamUnavailable

log = logging.getLogger("governor")
if not log.handlers:
  h = logging.StreamHandler()
  h.setFormatter(logging.Formatter("[RG] %(levelname)s: %(message)s"))
  log.addHandler(h)
  log.setLevel(logging.INFO)

RETRYABLE_STATUS = (429, 502, 503, 504)


# ----------------------------
# Async token bucket
# ----------------------------
class _AsyncTokenBucket:
  def __init__(self, rate_per_sec: float, capacity: int):
    self.rate = rate_per_sec
    self.capacity = capacity
    self.tokens = float(capacity)
    self.updated = time.monotonic()
    self.lock = asyncio.Lock()

  async def acquire(self):
    if self.rate <= 0:
      return
    while True:
      async with self.lock:
        now = time.monotonic()
        elapsed = now - self.updated
        self.updated = now
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        if self.tokens >= 1.0:
          self.tokens -= 1.0
          return
        wait = (1.0 - self.tokens) / self.rate
      # sleep outside lock to let others progress
      await asyncio.sleep(min(wait, 1.0))


@dataclass(frozen=True)
class RetryPolicy:
  max_attempts: int = RETRY_MAX_ATTEMPTS
  base_delay: float = RETRY_BASE_DELAY
  max_delay: float = RETRY_MAX_DELAY
  jitter: float = 0.25

  def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
    """Backoff before retry number `attempt` (1-based)."""
    d = self.base_delay * (2 ** (attempt - 1))
    if self.jitter:
      d += random.uniform(0, self.jitter * d)
    if retry_after is not None:
      d = max(d, retry_after)
    return min(d, self.max_delay)


def _retry_after(r: httpx.Response) -> Optional[float]:
  raw = r.headers.get("Retry-After")
  if raw is None:
    return None
  try:
    return max(0.0, float(raw))
  except ValueError:
    return None


def _upstream_detail(r: httpx.Response) -> str:
  try:
    body = r.json()
  except ValueError:
    return r.text[:200]
  errors = body.get("errors") if isinstance(body, dict) else None
  if errors and isinstance(errors, list):
    first = errors[0] or {}
    return first.get("detail") or first.get("title") or str(first)
  return str(body)[:200]


class RateGovernor:
  """
  Wraps every upstream call:
    - bounded in-flight requests,
    - a timeout on each send (not on time spent queued),
    - token bucket pacing,
    - exponential backoff for 429/5xx/transport errors,
    - 4xx mapped straight to NotFound/BadRequest.
  """

  def __init__(
      self,
      *,
      max_concurrency: int = UPSTREAM_MAX_CONCURRENCY,
      rate_per_sec: float = UPSTREAM_RATE_PER_SEC,
      burst: int = UPSTREAM_BURST,
      policy: Optional[RetryPolicy] = None,
      timeout: float = FETCH_TIMEOUT,
      sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
  ):
    self.policy = policy or RetryPolicy()
    self._sem = asyncio.Semaphore(max_concurrency)
    self._bucket = _AsyncTokenBucket(rate_per_sec, burst)
    self.timeout = timeout
    self._sleep = sleep

  async def call(self, send: Callable[[], Awaitable[httpx.Response]], *, what: str = "request") -> Any:
    """Run `send` until it yields a 2xx; returns the decoded JSON body."""
    attempts = 0
    while True:
      attempts += 1
      retry_after = None
      async with self._sem:
        await self._bucket.acquire()
        try:
          # the clock starts once a slot and a token are held; queueing is free
          r = await asyncio.wait_for(send(), self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
          raise UpstreamUnavailable(f"{what}: timed out after {self.timeout}s ({e.__class__.__name__})") from e
        except httpx.TransportError as e:
          failure = f"transport error ({e.__class__.__name__}: {e})"
          r = None

      if r is not None:
        if r.status_code < 400:
          try:
            return r.json()
          except ValueError as e:
            raise UpstreamUnavailable(f"{what}: response was not JSON") from e
        if r.status_code == 404:
          raise NotFound(f"{what}: {_upstream_detail(r)}")
        if r.status_code not in RETRYABLE_STATUS:
          if r.status_code < 500:
            raise BadRequest(f"{what}: {_upstream_detail(r)}")
          raise UpstreamUnavailable(f"{what}: HTTP {r.status_code}", upstream_status=r.status_code)
        failure = f"HTTP {r.status_code}"
        retry_after = _retry_after(r)

      if attempts >= self.policy.max_attempts:
        status = r.status_code if r is not None else None
        raise UpstreamUnavailable(
          f"{what}: gave up after {attempts} attempts ({failure})", upstream_status=status)
      delay = self.policy.delay(attempts, retry_after)
      log.warning("%s: %s, retry %d/%d in %.2fs", what, failure, attempts, self.policy.max_attempts - 1, delay)
      await self._sleep(delay)


# one governor per API key: PUBG rate limits are per key
_GOVERNORS: Dict[str, RateGovernor] = {}


def _key_digest(api_key: str) -> str:
  return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


def governor_for(api_key: str) -> RateGovernor:
  k = _key_digest(api_key)
  g = _GOVERNORS.get(k)
  if g is None:
    g = _GOVERNORS[k] = RateGovernor()
  return g
