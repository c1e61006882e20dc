import time
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from backend.common.constants import request_id_ctx
from backend.common.utils import build_error, json_error
from backend.rate_limiting.constants import DEFAULT_LIMIT, DEFAULT_WINDOW, RATE_LIMIT_PREFIX
from backend.rate_limiting.rate_limit_fixed_window import redis_allow
from backend.rate_limiting.utils import _identifier_from_request
from backend.middlewares.constants import logger


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-ip fixed-window throttle on the payment endpoints.
    Backed by redis, falls back to an in-process counter when redis is unreachable.
    """

    def __init__(self, app, *, paths, limit: int = DEFAULT_LIMIT, window: int = DEFAULT_WINDOW, enabled: bool = True):
        super().__init__(app)
        self.paths = paths
        self.limit = limit
        self.window = window
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next):

        if not self.enabled or not any(request.url.path.startswith(p) for p in self.paths):
            return await call_next(request)

        # per-app override set on app.state
        rl_cfg = getattr(request.app.state, "rate_limit", None)
        limit = rl_cfg.get("limit", self.limit) if rl_cfg else self.limit
        window = rl_cfg.get("window", self.window) if rl_cfg else self.window

        identifier, scope = _identifier_from_request(request, prefer_user=False)
        key = f"{RATE_LIMIT_PREFIX}:{scope}:{identifier}:payments"
        allowed, remaining, reset = await redis_allow(key, limit, window)

        if not allowed:
            retry_after = max(1, reset - int(time.time()))
            logger.warning("rate_limit.ip_exceeded", extra={"ip_address": identifier, "path": request.url.path})
            audit = getattr(request.app.state, "audit", None)
            if audit is not None:
                audit.log("rate_limit_hit", request=request, metadata={"scope": "ip", "path": request.url.path})
            payload = build_error(code="RATE_LIMITED",
                                  details={"message": "Too many requests from this address", "retryable": True,
                                           "retry_after": retry_after},
                                  request_id=request_id_ctx.get(None))
            return json_error(payload, status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                              headers={"Retry-After": str(retry_after)})

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset)
        return response
