from datetime import timedelta
from typing import Any, Dict, List
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from backend.audit.constants import ALERT_SEVERITY, ALERT_THRESHOLDS, AuditEvent
from backend.common.utils import iso, money, now
from backend.schema.full_schema import PaymentAuditLog


def _entry_dict(row: PaymentAuditLog) -> Dict[str, Any]:
    return {
        "reference": row.reference,
        "user_id": row.user_id,
        "event": row.event,
        "amount": money(row.amount),
        "expected_amount": money(row.expected_amount),
        "error": row.error,
        "metadata": row.meta,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "timestamp": iso(row.created_at),
    }


async def get_audit_trail(session: AsyncSession, reference: str, limit: int = 200) -> List[Dict[str, Any]]:
    """All audit entries for a reference, newest first."""
    stmt = (
        select(PaymentAuditLog)
        .where(PaymentAuditLog.reference == reference)
        .order_by(PaymentAuditLog.created_at.desc(), PaymentAuditLog.id.desc())
        .limit(limit)
    )
    res = await session.execute(stmt)
    return [_entry_dict(r) for r in res.scalars().all()]


async def get_event_counts(session: AsyncSession, hours: int = 24) -> Dict[str, int]:
    since = now() - timedelta(hours=hours)
    stmt = (
        select(PaymentAuditLog.event, func.count(PaymentAuditLog.id))
        .where(PaymentAuditLog.created_at >= since)
        .where(PaymentAuditLog.event.in_(list(ALERT_THRESHOLDS)))
        .group_by(PaymentAuditLog.event)
    )
    res = await session.execute(stmt)
    counts = {event: 0 for event in ALERT_THRESHOLDS}
    for event, cnt in res.all():
        counts[event] = int(cnt)
    return counts


async def get_suspicious_activity(session: AsyncSession, hours: int = 24) -> Dict[str, Any]:
    counts = await get_event_counts(session, hours)
    since = now() - timedelta(hours=hours)
    stmt = (
        select(PaymentAuditLog)
        .where(PaymentAuditLog.created_at >= since)
        .where(PaymentAuditLog.event == AuditEvent.VERIFICATION_FAILED.value)
        .order_by(PaymentAuditLog.created_at.desc(), PaymentAuditLog.id.desc())
        .limit(50)
    )
    res = await session.execute(stmt)
    return {
        "hours": hours,
        "amount_mismatches": counts[AuditEvent.AMOUNT_MISMATCH.value],
        "rate_limit_hits": counts[AuditEvent.RATE_LIMIT_HIT.value],
        "verification_failures": counts[AuditEvent.VERIFICATION_FAILED.value],
        "recent_failures": [_entry_dict(r) for r in res.scalars().all()],
    }


async def check_for_alerts(session: AsyncSession) -> List[Dict[str, Any]]:
    """Events whose count over the last hour has reached its threshold."""
    counts = await get_event_counts(session, hours=1)
    alerts = []
    for event, threshold in ALERT_THRESHOLDS.items():
        if counts[event] >= threshold:
            alerts.append({"event": event, "severity": ALERT_SEVERITY[event], "count": counts[event],
                           "threshold": threshold, "window_hours": 1})
    return alerts
