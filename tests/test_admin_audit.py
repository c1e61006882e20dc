from datetime import timedelta
from sqlalchemy import select
from backend.audit.audit_logger import AuditLogger
from backend.audit.repository import check_for_alerts, get_audit_trail
from backend.common.utils import now
from backend.db.connection import async_session
from backend.main import app
from backend.schema.full_schema import PaymentAuditLog
from tests.factories import admin_headers, auth_headers, make_product, make_store, order_metadata

ADMIN = "/api/v1/admin/payments"
VERIFY = "/api/v1/payments/verify"


async def test_audit_trail_for_reference(ac_client, db_session, fake_gateway):
    store = await make_store(db_session)
    product = await make_product(db_session, store, price="1000.00", stock=5)
    fake_gateway.add("ref_trail", amount="1000", metadata=order_metadata([(store.id, [(product.id, 1)])]))
    await ac_client.post(VERIFY, json={"reference": "ref_trail"},
                         headers={**auth_headers("buyer-1"), "User-Agent": "pytest-agent"})
    await app.state.audit.flush()

    resp = await ac_client.get(f"{ADMIN}/audit/ref_trail", headers=admin_headers())

    assert resp.status_code == 200
    entries = resp.json()["data"]["entries"]
    # newest first
    assert entries[0]["event"] == "verification_success"
    assert entries[-1]["event"] == "verification_started"
    created = next(e for e in entries if e["event"] == "order_created")
    assert created["amount"] == 1000.0
    assert created["expected_amount"] == 1000.0
    assert created["user_id"] == "buyer-1"
    assert created["user_agent"] == "pytest-agent"
    assert created["metadata"]["order_number"].startswith("ORD-")


async def test_admin_routes_require_admin_role(ac_client):
    anonymous = await ac_client.get(f"{ADMIN}/audit/ref_x")
    buyer = await ac_client.get(f"{ADMIN}/audit/ref_x", headers=auth_headers("buyer-1"))

    assert anonymous.status_code == 401
    assert buyer.status_code == 403
    assert buyer.json()["error"]["code"] == "FORBIDDEN"


async def test_suspicious_activity_counts_and_alerts(ac_client, db_session, fake_gateway):
    store = await make_store(db_session)
    product = await make_product(db_session, store, price="1000.00", stock=50)
    for i in range(6):
        ref = f"ref_short_{i}"
        fake_gateway.add(ref, amount="10", metadata=order_metadata([(store.id, [(product.id, 1)])]))
        resp = await ac_client.post(VERIFY, json={"reference": ref}, headers=auth_headers())
        assert resp.json()["error"]["code"] == "AMOUNT_MISMATCH"
    await app.state.audit.flush()

    resp = await ac_client.get(f"{ADMIN}/suspicious-activity", params={"hours": 24}, headers=admin_headers())

    assert resp.status_code == 200
    report = resp.json()["data"]
    assert report["hours"] == 24
    assert report["amount_mismatches"] == 6
    assert report["rate_limit_hits"] == 0
    assert {"event": "amount_mismatch", "severity": "critical", "count": 6, "threshold": 5,
            "window_hours": 1} in report["alerts"]


async def test_attempt_status_and_reset(ac_client, db_session, fake_gateway):
    store = await make_store(db_session)
    fake_gateway.add("ref_stuck", amount="10", metadata={"plan": "basic", "storeId": store.id}, status="failed")
    for _ in range(5):
        await ac_client.post(VERIFY, json={"reference": "ref_stuck"}, headers=auth_headers())
    blocked = await ac_client.post(VERIFY, json={"reference": "ref_stuck"}, headers=auth_headers())
    assert blocked.status_code == 429

    status = await ac_client.get(f"{ADMIN}/attempts/ref_stuck", headers=admin_headers())
    assert status.json()["data"]["remaining"] == 0

    reset = await ac_client.delete(f"{ADMIN}/attempts/ref_stuck", headers=admin_headers())
    assert reset.json()["data"]["cleared"] is True

    again = await ac_client.post(VERIFY, json={"reference": "ref_stuck"}, headers=auth_headers())
    assert again.status_code == 400


async def test_alerts_only_count_the_last_hour(db_session):
    old = now() - timedelta(hours=3)
    for i in range(12):
        db_session.add(PaymentAuditLog(event="verification_failed", reference=f"old_{i}", created_at=old))
    await db_session.commit()

    assert await check_for_alerts(db_session) == []


async def test_alert_fires_once_the_threshold_is_reached(db_session):
    recent = now() - timedelta(minutes=10)
    for i in range(4):
        db_session.add(PaymentAuditLog(event="amount_mismatch", reference=f"short_{i}", created_at=recent))
    await db_session.commit()
    assert await check_for_alerts(db_session) == []

    db_session.add(PaymentAuditLog(event="amount_mismatch", reference="short_4", created_at=recent))
    await db_session.commit()

    assert await check_for_alerts(db_session) == [
        {"event": "amount_mismatch", "severity": "critical", "count": 5, "threshold": 5, "window_hours": 1},
    ]


async def test_audit_logger_writes_in_background():
    audit = AuditLogger(async_session, max_queue_size=10)
    audit.start()
    try:
        audit.log("verification_started", reference="ref_bg", user_id=77, amount=12.5,
                  error="x" * 5000, metadata={"mode": "verify"})
        await audit.flush()
    finally:
        await audit.shutdown()

    async with async_session() as session:
        [entry] = await get_audit_trail(session, "ref_bg")
        row = (await session.execute(select(PaymentAuditLog).where(PaymentAuditLog.reference == "ref_bg"))).scalar_one()

    assert entry["user_id"] == "77"
    assert entry["amount"] == 12.5
    assert len(row.error) == 1024


async def test_audit_logger_drops_when_queue_is_full():
    audit = AuditLogger(async_session, max_queue_size=1)
    audit.start()
    try:
        # the worker only gets to run once we yield, so the second entry finds the queue full
        audit.log("webhook_received", reference="ref_q1")
        audit.log("webhook_received", reference="ref_q2")
        assert audit.dropped == 1
        await audit.flush()
    finally:
        await audit.shutdown()


async def test_log_without_running_sink_is_a_noop():
    audit = AuditLogger(async_session)

    audit.log("webhook_received", reference="ref_idle")

    assert audit.sink.queue.qsize() == 0
