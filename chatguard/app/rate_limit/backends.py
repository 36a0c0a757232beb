"""Counting store backends for rate limiting.

A backend owns the sliding window counters. Its single operation, consume,
records an attempt and reports whether it fit in the window in one atomic
step. Backends are shared by all roles; keys are namespaced per role by the
caller.
"""

import asyncio
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict, deque
from typing import Any, Callable, Optional

from chatguard.app.core.config import Settings, settings as default_settings
from chatguard.app.core.logging import get_logger
from chatguard.app.rate_limit.models import CounterDecision
from chatguard.app.rate_limit.redis_lua import SLIDING_WINDOW_SCRIPT

logger = get_logger(__name__)


def _ms_to_epoch_seconds(value_ms: int) -> int:
    return -(-int(value_ms) // 1000)


class CountingBackend(ABC):
    """Abstract base class for counting store backends."""

    name: str = "abstract"

    @abstractmethod
    async def consume(self, key: str, limit: int, window_seconds: int) -> CounterDecision:
        """Record one request for key and check it against the window.

        Args:
            key: Fully namespaced counter key
            limit: Requests allowed per window
            window_seconds: Sliding window length

        Returns:
            CounterDecision with allowed flag, remaining budget and the epoch
            second at which the window frees its next slot
        """
        pass

    async def ping(self) -> bool:
        """Check the store is reachable."""
        return True

    async def close(self) -> None:
        """Release connections held by the backend."""
        pass


class InMemorySlidingWindowBackend(CountingBackend):
    """Single-process sliding window log.

    Suitable for local development and tests; counters are not shared
    between processes.

    Memory optimization:
    - Uses OrderedDict for LRU cache behavior
    - Limits max keys to prevent unbounded memory growth
    """

    name = "memory"
    DEFAULT_MAX_KEYS = 10000

    def __init__(
        self,
        max_keys: int = DEFAULT_MAX_KEYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_keys = max_keys
        self._clock = clock
        self._windows: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = asyncio.Lock()

    def _enforce_lru_limit(self) -> None:
        if len(self._windows) > self._max_keys:
            # Remove oldest 20% of keys
            remove_count = max(1, int(self._max_keys * 0.2))
            for _ in range(min(remove_count, len(self._windows))):
                self._windows.popitem(last=False)

    async def consume(self, key: str, limit: int, window_seconds: int) -> CounterDecision:
        async with self._lock:
            now = self._clock()
            window_start = now - window_seconds

            timestamps = self._windows.get(key)
            if timestamps is None:
                timestamps = deque()
                self._windows[key] = timestamps
                self._enforce_lru_limit()
            else:
                self._windows.move_to_end(key)

            while timestamps and timestamps[0] <= window_start:
                timestamps.popleft()

            allowed = len(timestamps) < limit
            if allowed:
                timestamps.append(now)

            reset_at = (timestamps[0] if timestamps else now) + window_seconds
            return CounterDecision(
                allowed=allowed,
                remaining=max(0, limit - len(timestamps)),
                reset_epoch_seconds=math.ceil(reset_at),
            )


class RedisSlidingWindowBackend(CountingBackend):
    """Redis-based distributed sliding window.

    Each consume is a single EVAL of SLIDING_WINDOW_SCRIPT, so the check and
    the increment happen atomically on the Redis server.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        redis_token: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._redis_url = redis_url or default_settings.rate_limit_redis_url
        self._redis_token = redis_token if redis_token is not None else default_settings.rate_limit_redis_token
        self._clock = clock

    def _get_redis(self) -> Any:
        """Get or create Redis connection."""
        if self._redis is None:
            import redis.asyncio as aioredis

            kwargs: dict[str, Any] = {}
            if self._redis_token:
                kwargs["password"] = self._redis_token
            self._redis = aioredis.from_url(self._redis_url, **kwargs)
        return self._redis

    async def consume(self, key: str, limit: int, window_seconds: int) -> CounterDecision:
        redis_client = self._get_redis()
        now_ms = int(self._clock() * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex}"

        allowed, remaining, reset_ms = await redis_client.eval(
            SLIDING_WINDOW_SCRIPT,
            1,
            key,
            limit,
            window_seconds * 1000,
            now_ms,
            member,
        )
        return CounterDecision(
            allowed=int(allowed) == 1,
            remaining=max(0, int(remaining)),
            reset_epoch_seconds=_ms_to_epoch_seconds(reset_ms),
        )

    async def ping(self) -> bool:
        return bool(await self._get_redis().ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_counting_backend(config: Optional[Settings] = None) -> Optional[CountingBackend]:
    """Create the counting store selected in settings.

    Returns:
        The backend, or None when no counting store is configured
    """
    config = config or default_settings
    if config.rate_limit_backend == "memory":
        logger.info("Using in-memory rate limit backend")
        return InMemorySlidingWindowBackend(max_keys=config.rate_limit_memory_max_keys)
    if not config.rate_limit_configured:
        return None
    logger.info("Using Redis rate limit backend")
    return RedisSlidingWindowBackend(
        redis_url=config.rate_limit_redis_url,
        redis_token=config.rate_limit_redis_token,
    )
