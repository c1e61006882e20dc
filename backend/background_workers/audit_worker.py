from typing import Any, Callable, Dict
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from backend.background_workers.base_worker import BaseWorker
from backend.background_workers.constants import logger
from backend.common.retries import retry_async
from backend.schema.full_schema import PaymentAuditLog


class AuditSinkWorker(BaseWorker):
    """Drains queued audit entries into the paymentauditlog table."""

    name = "audit-sink"

    def __init__(self, session_factory: Callable[[], AsyncSession] | async_sessionmaker, **kwargs):
        super().__init__(**kwargs)
        self.session_factory = session_factory

    async def task_executor(self, task: Dict[str, Any], wname) -> None:
        try:
            await self._write(task)
        except Exception as exc:
            # sink failures never reach the payment flow, the entry is lost and logged
            logger.error("audit.sink.write_failed", extra={
                "worker": wname,
                "event": task.get("event"),
                "reference": task.get("reference"),
                "error": str(exc),
            })

    @retry_async(attempts=3, base_delay=0.05)
    async def _write(self, task: Dict[str, Any]) -> None:
        async with self.session_factory() as session:
            session.add(PaymentAuditLog(**task))
            await session.commit()
