import time
from typing import Optional, Tuple
from fastapi import Request
from backend.rate_limiting import constants
from backend.rate_limiting.constants import _in_memory_counters, _in_memory_lock, _redis_lock, logger
from backend.rate_limiting.lua_scripts import LUA_SCRIPTS
from backend.rate_limiting.redis_client import redis_client


async def _ensure_lua_loaded(script_name: str = "fixed_window") -> Optional[str]:
    """
    Load the Lua script into Redis script cache and store SHA.
    Called once lazily.
    """
    sha = constants._script_sha.get(script_name)
    if sha:
        return sha
    async with _redis_lock:
        sha = constants._script_sha.get(script_name)
        if sha:
            return sha
        try:
            sha = await redis_client.script_load(LUA_SCRIPTS[script_name])
        except Exception as e:
            # If script_load fails, we'll fallback to EVAL (slower) in calls
            logger.debug("rate_limit.lua_load_failed", extra={"script": script_name, "error": str(e)})
            return None
        constants._script_sha[script_name] = sha
        return sha


def _identifier_from_request(request: Request, prefer_user: bool = True) -> Tuple[str, str]:
    """
    authenticated user_id or fallback to ip
    """
    if prefer_user:
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            return str(user_id), "user"
    # X-Forwarded-For: trust only when behind proper proxy; adapt as needed
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        client_host = xff.split(",")[0].strip()
    else:
        client_host = request.client.host if request.client else "unknown"
    return client_host or "unknown", "ip"


# simple non distributed fallback for redis unavailability , use only for short outages
async def _in_memory_allow(key: str, limit: int, window: int):
    """
    Simple per-process fixed-window counter fallback.
    Returns (allowed, remaining, reset_ts).
    """
    async with _in_memory_lock:
        now = int(time.time())
        # drop expired windows so the map doesn't grow with every ip ever seen
        for k in [k for k, v in _in_memory_counters.items() if v["expires_at"] <= now]:
            del _in_memory_counters[k]

        existing = _in_memory_counters.get(key)
        if not existing:
            _in_memory_counters[key] = {"count": 1, "expires_at": now + window}
            return True, max(0, limit - 1), now + window
        if existing["count"] >= limit:
            return False, 0, existing["expires_at"]
        existing["count"] += 1
        return True, max(0, limit - existing["count"]), existing["expires_at"]
