"""Sliding dual-window admission control keyed by (identity, pack).

Each key keeps two ordered timestamp sequences, one for the last minute and
one for the last hour. A check evicts expired entries, evaluates both
counts, and only on admission appends ``now`` to both windows. The whole
sequence is indivisible per key.

The store is an injected object so a single-process deployment can use the
in-memory store while replicas share a Redis store.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock
from typing import Final, Protocol

from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

MINUTE_WINDOW_SECONDS: Final[int] = 60
HOUR_WINDOW_SECONDS: Final[int] = 3600
REASON_MINUTE: Final[str] = "rate_limit_minute"
REASON_HOUR: Final[str] = "rate_limit_hour"


@dataclass(frozen=True)
class RateLimits:
    """Admission thresholds per (identity, pack) key."""

    per_minute: int = 60
    per_hour: int = 300


@dataclass(frozen=True)
class Admission:
    """Result of an admission check."""

    allowed: bool
    reason: str | None = None
    retry_after: int | None = None


@dataclass
class RateWindow:
    """Timestamps of admitted requests for one key."""

    minute: deque[float] = field(default_factory=deque)
    hour: deque[float] = field(default_factory=deque)
    last_seen: float = 0.0

    def evict(self, now: float) -> None:
        while self.minute and now - self.minute[0] >= MINUTE_WINDOW_SECONDS:
            self.minute.popleft()
        while self.hour and now - self.hour[0] >= HOUR_WINDOW_SECONDS:
            self.hour.popleft()


def _retry_after(oldest: float, window: int, now: float) -> int:
    return max(1, math.ceil(oldest + window - now))


class WindowStore(Protocol):
    """Storage for rate windows with an atomic check-and-record."""

    async def hit(self, key: str, now: float, limits: RateLimits) -> Admission:
        """Evict, evaluate and (on admission) record a request for ``key``."""
        ...


class InMemoryWindowStore:
    """Process-local window store.

    A registry lock guards the key map; each key has its own lock so checks
    for different keys never wait on each other. Nothing here awaits, so
    the critical sections never span a suspension point.
    """

    def __init__(self, idle_seconds: float = HOUR_WINDOW_SECONDS) -> None:
        self._idle_seconds = idle_seconds
        self._windows: dict[str, RateWindow] = {}
        self._locks: dict[str, Lock] = {}
        self._registry_lock = Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._windows)

    def _acquire_window(self, key: str, now: float) -> tuple[RateWindow, Lock]:
        with self._registry_lock:
            window = self._windows.get(key)
            if window is None:
                window = RateWindow()
                self._windows[key] = window
                self._locks[key] = Lock()
            # Touched under the registry lock so a concurrent sweep keeps it
            window.last_seen = now
            return window, self._locks[key]

    def check_and_record(self, key: str, now: float, limits: RateLimits) -> Admission:
        window, lock = self._acquire_window(key, now)
        with lock:
            window.evict(now)
            if len(window.minute) >= limits.per_minute:
                return Admission(
                    allowed=False,
                    reason=REASON_MINUTE,
                    retry_after=_retry_after(window.minute[0], MINUTE_WINDOW_SECONDS, now),
                )
            if len(window.hour) >= limits.per_hour:
                return Admission(
                    allowed=False,
                    reason=REASON_HOUR,
                    retry_after=_retry_after(window.hour[0], HOUR_WINDOW_SECONDS, now),
                )
            window.minute.append(now)
            window.hour.append(now)
            return Admission(allowed=True)

    async def hit(self, key: str, now: float, limits: RateLimits) -> Admission:
        return self.check_and_record(key, now, limits)

    def sweep(self, now: float) -> int:
        """Drop keys idle for longer than the hour window. Returns the count removed."""
        with self._registry_lock:
            stale = [
                key
                for key, window in self._windows.items()
                if now - window.last_seen >= self._idle_seconds
            ]
            for key in stale:
                del self._windows[key]
                del self._locks[key]
        if stale:
            logger.debug("Swept %d idle rate limit keys", len(stale))
        return len(stale)


# Evict, evaluate and append atomically over two sorted sets
SLIDING_WINDOW_SCRIPT = """
local minute_key = KEYS[1]
local hour_key = KEYS[2]
local now = tonumber(ARGV[1])
local per_minute = tonumber(ARGV[2])
local per_hour = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', minute_key, '-inf', now - 60)
redis.call('ZREMRANGEBYSCORE', hour_key, '-inf', now - 3600)

if redis.call('ZCARD', minute_key) >= per_minute then
    local oldest = redis.call('ZRANGE', minute_key, 0, 0, 'WITHSCORES')
    return {0, 1, math.max(1, math.ceil(tonumber(oldest[2]) + 60 - now))}
end

if redis.call('ZCARD', hour_key) >= per_hour then
    local oldest = redis.call('ZRANGE', hour_key, 0, 0, 'WITHSCORES')
    return {0, 2, math.max(1, math.ceil(tonumber(oldest[2]) + 3600 - now))}
end

redis.call('ZADD', minute_key, now, member)
redis.call('ZADD', hour_key, now, member)
redis.call('EXPIRE', minute_key, 120)
redis.call('EXPIRE', hour_key, 7200)
return {1, 0, 0}
"""

_REASON_CODES: Final[dict[int, str]] = {1: REASON_MINUTE, 2: REASON_HOUR}


class RedisWindowStore:
    """Window store shared across replicas through Redis sorted sets.

    Idle keys expire through Redis TTLs. When Redis is unreachable the
    check falls back to an in-process store so admission keeps working
    per instance.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        key_prefix: str = "ratelimit:pack",
        fallback: InMemoryWindowStore | None = None,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._script = client.register_script(SLIDING_WINDOW_SCRIPT)
        self.fallback = fallback or InMemoryWindowStore()

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> RedisWindowStore:
        return cls(aioredis.Redis.from_url(url), **kwargs)  # type: ignore[arg-type]

    async def hit(self, key: str, now: float, limits: RateLimits) -> Admission:
        member = f"{now:.6f}:{uuid.uuid4().hex}"
        try:
            allowed, reason_code, retry_after = await self._script(
                keys=[f"{self._key_prefix}:{key}:m", f"{self._key_prefix}:{key}:h"],
                args=[now, limits.per_minute, limits.per_hour, member],
            )
        except RedisError as err:
            logger.warning("Redis rate limit store unavailable, using local windows: %s", err)
            return self.fallback.check_and_record(key, now, limits)

        if int(allowed):
            return Admission(allowed=True)
        return Admission(
            allowed=False,
            reason=_REASON_CODES.get(int(reason_code), REASON_MINUTE),
            retry_after=int(retry_after),
        )

    def sweep(self, now: float) -> int:
        return self.fallback.sweep(now)

    async def close(self) -> None:
        await self._client.aclose()


class RateLimiter:
    """Admission gate guarding the watermark renderer from abusive polling."""

    def __init__(
        self,
        store: WindowStore | None = None,
        *,
        limits: RateLimits | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store if store is not None else InMemoryWindowStore()
        self.limits = limits or RateLimits()
        self._clock = clock

    @staticmethod
    def key(identity_id: str, pack_id: str) -> str:
        return f"{identity_id}:{pack_id}"

    async def admit(self, identity_id: str, pack_id: str) -> Admission:
        """Check and record one request for (identity, pack)."""
        admission = await self.store.hit(
            self.key(identity_id, pack_id),
            self._clock(),
            self.limits,
        )
        if not admission.allowed:
            logger.info(
                "Rate limit denied user %s pack %s: %s",
                identity_id,
                pack_id,
                admission.reason,
            )
        return admission

    def sweep(self) -> int:
        """Remove idle in-process keys; returns how many were dropped."""
        sweep = getattr(self.store, "sweep", None)
        if sweep is None:
            return 0
        return int(sweep(self._clock()))


class RateWindowSweeper:
    """Background task that periodically sweeps idle rate limit keys."""

    def __init__(self, limiter: RateLimiter, interval_seconds: float = 300.0) -> None:
        self.limiter = limiter
        self.interval_seconds = max(1.0, float(interval_seconds))
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the sweep loop and wait for it to exit."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            if self._stopping.is_set():
                return
            self.limiter.sweep()
