import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional, Union
from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker
from backend.audit.constants import ERROR_TEXT_MAX, USER_AGENT_MAX, AuditEvent, logger
from backend.background_workers.audit_worker import AuditSinkWorker
from backend.common.utils import now
from backend.rate_limiting.utils import _identifier_from_request


class AuditLogger:
    """
    Fire-and-forget payment audit trail.

    `log()` never awaits and never raises: entries go onto the sink worker's
    bounded queue and are written to storage in the background. When the queue
    is full the entry is dropped with a warning so a slow or failing sink can't
    stall verification.
    """

    def __init__(self, session_factory: async_sessionmaker, max_queue_size: int = 1000, workers_count: int = 1):
        self.sink = AuditSinkWorker(session_factory, workers_count=workers_count, max_queue_size=max_queue_size)

    def start(self):
        self.sink.start()

    async def shutdown(self):
        await self.sink.shutdown(drain_first=True)

    async def flush(self, timeout: float = 5.0):
        """Wait until everything queued so far has been written. Used by tests and shutdown."""
        await asyncio.wait_for(self.sink.queue.join(), timeout=timeout)

    @property
    def dropped(self) -> int:
        return self.sink._dropped

    def log(
        self,
        event: Union[AuditEvent, str],
        *,
        reference: Optional[str] = None,
        user_id: Optional[str] = None,
        amount: Optional[Union[Decimal, float, int]] = None,
        expected_amount: Optional[Union[Decimal, float, int]] = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> None:
        event_value = event.value if isinstance(event, AuditEvent) else str(event)
        ip_address = None
        user_agent = None
        if request is not None:
            ip_address, _ = _identifier_from_request(request, prefer_user=False)
            user_agent = (request.headers.get("user-agent") or "")[:USER_AGENT_MAX] or None

        entry = {
            "reference": reference,
            "user_id": str(user_id) if user_id is not None else None,
            "event": event_value,
            "amount": Decimal(str(amount)) if amount is not None else None,
            "expected_amount": Decimal(str(expected_amount)) if expected_amount is not None else None,
            "error": error[:ERROR_TEXT_MAX] if error else None,
            "meta": metadata,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "created_at": now(),
        }

        if not self.sink.running:
            logger.warning("audit.sink.not_running", extra={"event": event_value, "reference": reference})
            return

        if not self.sink.submit_nowait(entry):
            logger.warning("audit.queue.full_dropped", extra={"event": event_value, "reference": reference})
            return

        logger.debug("audit.queued", extra={"event": event_value, "reference": reference})
