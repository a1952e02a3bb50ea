from __future__ import annotations
import logging
import time
import redis.asyncio as redis
from redis.exceptions import RedisError
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_r: redis.Redis | None = None

def get_redis() -> redis.Redis:
    global _r
    if _r is None:
        _r = redis.from_url(_settings.redis_url, decode_responses=True)
    return _r

async def ping_redis() -> bool:
    try:
        return bool(await get_redis().ping())
    except (RedisError, OSError):
        return False

async def close_redis() -> None:
    global _r
    if _r is not None:
        await _r.aclose()
        _r = None

def _window_key(route_key: str, ip: str, now: float | None = None) -> str:
    window = int(now if now is not None else time.time()) // _settings.rl_window_seconds
    return f"rl:{route_key}:{ip}:{window}"

# ---- Fixed-window rate limit per client IP and route ----
async def allow_request(ip: str, route_key: str) -> bool:
    """
    Count this request in the current window's bucket; allow while the count
    stays within RL_MAX_REQS. Fails open when Redis is unreachable.
    """
    if not _settings.rl_enabled:
        return True
    key = _window_key(route_key, ip)
    try:
        async with get_redis().pipeline(transaction=True) as pipe:
            # the bucket outlives its window once, then disappears
            count, _ = await pipe.incr(key).expire(key, _settings.rl_window_seconds * 2).execute()
    except RedisError as exc:
        logger.warning("Rate limiter unavailable, allowing %s %s: %s", route_key, ip, exc)
        return True
    return int(count) <= _settings.rl_max_reqs
