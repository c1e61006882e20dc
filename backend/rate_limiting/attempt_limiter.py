import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from backend.rate_limiting.constants import VERIFY_MAX_ATTEMPTS, VERIFY_WINDOW_SECONDS


@dataclass
class _Window:
    count: int
    started_at: float


class AttemptLimiter:
    """
    Per-reference fixed-window cap on verification attempts.

    State is process-local and guarded by an asyncio.Lock, so concurrent
    callers in one worker never lose an increment. It only throttles
    hammering of a single reference; exactly-once fulfillment is enforced by
    the order tables' unique constraints, not here.
    """

    def __init__(self, max_attempts: int = VERIFY_MAX_ATTEMPTS, window_seconds: float = VERIFY_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = asyncio.Lock()

    def _prune(self, now: float):
        expired = [ref for ref, w in self._windows.items() if now - w.started_at >= self.window_seconds]
        for ref in expired:
            del self._windows[ref]

    async def allow(self, reference: str) -> bool:
        """Count one attempt for `reference`; False once the window's cap is exceeded."""
        async with self._lock:
            now = self._clock()
            self._prune(now)
            window = self._windows.get(reference)
            if window is None:
                self._windows[reference] = _Window(count=1, started_at=now)
                return True
            if window.count >= self.max_attempts:
                return False
            window.count += 1
            return True

    async def retry_after(self, reference: str) -> int:
        """Whole seconds until the reference's current window resets."""
        async with self._lock:
            window = self._windows.get(reference)
            if window is None:
                return 0
            remaining = self.window_seconds - (self._clock() - window.started_at)
            return max(1, math.ceil(remaining))

    async def status(self, reference: str) -> Dict[str, Optional[float]]:
        async with self._lock:
            now = self._clock()
            window = self._windows.get(reference)
            if window is None or now - window.started_at >= self.window_seconds:
                return {"count": 0, "limit": self.max_attempts, "remaining": self.max_attempts, "reset_in": None}
            return {
                "count": window.count,
                "limit": self.max_attempts,
                "remaining": max(0, self.max_attempts - window.count),
                "reset_in": max(0.0, self.window_seconds - (now - window.started_at)),
            }

    async def reset(self, reference: str) -> bool:
        """Forget a reference's attempts (admin intervention). True if there was anything to forget."""
        async with self._lock:
            return self._windows.pop(reference, None) is not None

    def clear(self):
        self._windows.clear()
