"""
Window counters stored in Redis

Each window is a hash with ``requests`` and ``tokens`` fields. Increments run
in a MULTI/EXEC pipeline, and keys expire on their own once the retention
period has passed.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional
import logging
import redis.asyncio as redis

from app.core.config import settings
from app.core.windows import WindowType, WINDOW_ORDER, WINDOW_DURATIONS, floor_to_window, to_utc_naive
from app.schemas.rate_limit import Principal, WindowUsage

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None

# Add to the token field, clamp at zero, refresh the TTL
ADD_TOKENS_SCRIPT = """
local value = redis.call('HINCRBY', KEYS[1], 'tokens', ARGV[1])
if value < 0 then
  redis.call('HSET', KEYS[1], 'tokens', 0)
  value = 0
end
redis.call('EXPIRE', KEYS[1], ARGV[2])
return value
"""


def get_redis_client() -> redis.Redis:
    """Shared redis.asyncio client built from settings"""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
            password=settings.REDIS_PASSWORD,
            decode_responses=True,
        )
    return _redis_client


class RedisUsageCounter:
    """Fixed-window request and token counters backed by Redis"""

    def __init__(self, client: redis.Redis):
        self.client = client

    @staticmethod
    def window_key(principal: Principal, window_type: WindowType, now: datetime) -> str:
        start = floor_to_window(now, window_type)
        return (
            f"rate_limit:{principal.kind}:{principal.principal_id}:"
            f"{WindowType(window_type).value}:{start.strftime('%Y%m%d%H%M')}"
        )

    @staticmethod
    def key_ttl(window_type: WindowType) -> int:
        retention = timedelta(days=settings.USAGE_RETENTION_DAYS)
        return int((WINDOW_DURATIONS[WindowType(window_type)] + retention).total_seconds())

    async def _increment_windows(self, principal, now, window_types, tokens_used) -> Dict[WindowType, int]:
        now = to_utc_naive(now)
        async with self.client.pipeline(transaction=True) as pipe:
            for window_type in window_types:
                key = self.window_key(principal, window_type, now)
                pipe.hincrby(key, "requests", 1)
                pipe.hincrby(key, "tokens", tokens_used)
                pipe.expire(key, self.key_ttl(window_type))
            results = await pipe.execute()

        # Three replies per window; the first is the new request count
        return {
            WindowType(window_type): int(results[index * 3])
            for index, window_type in enumerate(window_types)
        }

    async def increment(
        self,
        principal: Principal,
        window_type: WindowType,
        now: datetime,
        tokens_used: int = 0,
    ) -> int:
        """Count one request in a single window and return the new count"""
        counts = await self._increment_windows(principal, now, [WindowType(window_type)], tokens_used)
        return counts[WindowType(window_type)]

    async def increment_all(self, principal: Principal, now: datetime, tokens_used: int = 0) -> Dict[WindowType, int]:
        """Count one request in the minute, hour and day windows at once"""
        return await self._increment_windows(principal, now, list(WINDOW_ORDER), tokens_used)

    async def current_usage(self, principal: Principal, now: datetime) -> Dict[WindowType, WindowUsage]:
        """Read all three windows; missing keys report zero"""
        now = to_utc_naive(now)
        async with self.client.pipeline(transaction=False) as pipe:
            for window_type in WINDOW_ORDER:
                pipe.hmget(self.window_key(principal, window_type, now), "requests", "tokens")
            results = await pipe.execute()

        usage = {}
        for window_type, (requests, tokens) in zip(WINDOW_ORDER, results):
            usage[window_type] = WindowUsage(
                window_type=window_type,
                window_start=floor_to_window(now, window_type),
                request_count=int(requests or 0),
                token_count=int(tokens or 0),
            )
        return usage

    async def current_count(self, principal: Principal, window_type: WindowType, now: datetime) -> int:
        """Request count of the window containing ``now``"""
        value = await self.client.hget(self.window_key(principal, window_type, now), "requests")
        return int(value or 0)

    async def add_tokens(self, principal: Principal, now: datetime, tokens_delta: int):
        """Adjust token counters of all windows; never below zero"""
        if tokens_delta == 0:
            return
        now = to_utc_naive(now)
        for window_type in WINDOW_ORDER:
            await self.client.eval(
                ADD_TOKENS_SCRIPT,
                1,
                self.window_key(principal, window_type, now),
                tokens_delta,
                self.key_ttl(window_type),
            )
