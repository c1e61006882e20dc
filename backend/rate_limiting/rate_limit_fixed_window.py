import time
from typing import NamedTuple
from backend.rate_limiting.constants import FAIL_OPEN, USE_IN_MEMORY_FALLBACK, logger
from backend.rate_limiting.lua_scripts import LUA_FIXED_WINDOW_INCR_AND_PEXPIRE
from backend.rate_limiting.redis_client import redis_client
from backend.rate_limiting.utils import _ensure_lua_loaded, _in_memory_allow


class WindowDecision(NamedTuple):
    allowed: bool
    remaining: int
    reset_ts: int


def _from_counter(count: int, ttl_ms: int, limit: int, window: int) -> WindowDecision:
    now = int(time.time())
    reset_ts = now + (ttl_ms // 1000) if ttl_ms > 0 else now + window
    if count > limit:
        return WindowDecision(False, 0, reset_ts)
    return WindowDecision(True, limit - count, reset_ts)


async def redis_allow(key: str, limit: int, window: int) -> WindowDecision:
    """
    Count one hit for `key` in the current fixed window.
    Redis is authoritative; on a redis outage the in-process counter decides,
    otherwise FAIL_OPEN picks between letting the payment call through and denying it.
    """
    try:
        sha = await _ensure_lua_loaded("fixed_window")
        if sha:
            res = await redis_client.evalsha(sha, 1, key, window * 1000)
        else:
            res = await redis_client.eval(LUA_FIXED_WINDOW_INCR_AND_PEXPIRE, 1, key, window * 1000)
    except Exception as e:
        logger.warning("rate_limit.redis_unavailable", extra={"key": key, "error": str(e)})
        if USE_IN_MEMORY_FALLBACK:
            return WindowDecision(*await _in_memory_allow(key, limit, window))
        return WindowDecision(FAIL_OPEN, limit - 1 if FAIL_OPEN else 0, int(time.time()) + window)

    if not res or len(res) < 2:
        # script returned nothing usable
        return WindowDecision(True, max(0, limit - 1), int(time.time()) + window)
    return _from_counter(int(res[0]), int(res[1]), limit, window)
