import asyncio
import time
from typing import Optional
from backend.config.settings import config_settings


class CircuitOpenError(RuntimeError):
    pass


class CircuitBreaker:
    """
    Simple async in-memory circuit breaker.

    Usage:
      cb = CircuitBreaker(name="paystack", failure_threshold=5, recovery_timeout=30)
      await cb.before_call()        # raises CircuitOpenError while OPEN
      ...
      await cb.after_call(success)

    Behavior:
      - CLOSED: normal operation; consecutive failures increment fail_count.
      - OPEN: before_call() fails fast until recovery_timeout has elapsed.
      - HALF_OPEN: a single probe is let through; success closes, failure re-opens.
    """

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: float = 30.0):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.recovery_timeout = float(recovery_timeout)
        self._fail_count = 0
        self._state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> str:
        return self._state

    def _maybe_transition(self):
        if self._state == "OPEN" and self._opened_at is not None:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = "HALF_OPEN"
                self._probe_in_flight = False

    async def before_call(self):
        async with self._lock:
            self._maybe_transition()

            if self._state == "OPEN":
                raise CircuitOpenError(f"circuit {self.name} is open")

            if self._state == "HALF_OPEN":
                if self._probe_in_flight:
                    raise CircuitOpenError(f"circuit {self.name} is half-open and a probe is running")
                self._probe_in_flight = True

    async def after_call(self, success: bool):
        async with self._lock:
            self._probe_in_flight = False

            if success:
                self._fail_count = 0
                self._state = "CLOSED"
                self._opened_at = None
                return

            self._fail_count += 1
            # a failing probe re-opens immediately
            if self._fail_count >= self.failure_threshold or self._state == "HALF_OPEN":
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._fail_count = 0

    def reset(self):
        self._state = "CLOSED"
        self._fail_count = 0
        self._opened_at = None
        self._probe_in_flight = False


gateway_circuit = CircuitBreaker(
    name="paystack",
    failure_threshold=config_settings.GATEWAY_CB_FAILURE_THRESHOLD,
    recovery_timeout=config_settings.GATEWAY_CB_RECOVERY_SECONDS,
)
