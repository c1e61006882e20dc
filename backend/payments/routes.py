from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from backend.audit.repository import check_for_alerts, get_audit_trail, get_suspicious_activity
from backend.auth.dependencies import Identity, optional_identity, require_admin, require_identity
from backend.common.constants import request_id_ctx
from backend.common.utils import iso, money, success_response
from backend.db.dependencies import get_session, get_session_factory
from backend.payments.constants import logger
from backend.payments.models import VerificationOutcome, VerifyRequest
from backend.payments.services import MODE_POLL, MODE_VERIFY, verify_payment

payments_router = APIRouter()
payments_admin_router = APIRouter()


def render_outcome(outcome: VerificationOutcome, *, private: bool) -> tuple[Dict[str, Any], str]:
    """Response body for a verification outcome. `private` callers also see order identifiers and totals."""
    data: Dict[str, Any] = {
        "reference": outcome.reference,
        "paymentStatus": "success",
        "amount": money(outcome.amount),
    }

    if outcome.subscription is not None:
        sub = outcome.subscription
        data.update({
            "type": "subscription",
            "storeId": sub.store_id,
            "subscriptionUpdated": True,
            "alreadyProcessed": not sub.updated,
            "plan": sub.plan,
            "status": sub.status,
            "expiryDate": iso(sub.expiry_date),
            "productLimit": sub.product_limit,
        })
        message = "Subscription updated successfully" if sub.updated else "Subscription already applied for this payment"
        return data, message

    data["type"] = "order"
    if outcome.order is None:
        data["orderExists"] = False
        if private:
            data["metadata"] = outcome.pending_metadata
        return data, "Payment verified, order not created yet"

    summary = outcome.order.summary
    data["orderExists"] = True
    data["alreadyProcessed"] = outcome.order.already_fulfilled
    if private:
        data.update({
            "orderNumber": summary.order_number,
            "grandTotal": money(summary.grand_total),
            "subOrderCount": summary.sub_order_count,
            "status": summary.status,
            "createdAt": iso(summary.created_at),
        })
    message = "Payment already processed" if outcome.order.already_fulfilled else "Payment verified and orders created successfully"
    return data, message


@payments_router.post("/verify")
async def verify_payment_route(
    request: Request,
    payload: Optional[VerifyRequest] = Body(None),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    outcome = await verify_payment(
        payload.reference if payload else None,
        mode=MODE_VERIFY,
        session=session,
        session_factory=session_factory,
        audit=request.app.state.audit,
        limiter=request.app.state.attempt_limiter,
        resolve_identity=lambda: require_identity(request),
        request=request,
    )
    data, message = render_outcome(outcome, private=True)
    return success_response(data, message=message, request_id=request_id_ctx.get(None))


@payments_router.get("/verify")
async def poll_payment_route(
    request: Request,
    reference: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    outcome = await verify_payment(
        reference,
        mode=MODE_POLL,
        session=session,
        session_factory=session_factory,
        audit=request.app.state.audit,
        limiter=request.app.state.attempt_limiter,
        resolve_identity=lambda: optional_identity(request),
        request=request,
    )
    data, message = render_outcome(outcome, private=outcome.viewer_id is not None)
    return success_response(data, message=message, request_id=request_id_ctx.get(None))


# ---------------------------------------------- admin ----------------------------------------------

@payments_admin_router.get("/audit/{reference}")
async def audit_trail_route(
    reference: str,
    limit: int = Query(200, ge=1, le=1000),
    admin: Identity = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    entries = await get_audit_trail(session, reference, limit=limit)
    logger.info("payments.admin.audit_trail", extra={"reference": reference, "user_id": admin.user_id})
    return success_response({"reference": reference, "entries": entries}, request_id=request_id_ctx.get(None))


@payments_admin_router.get("/suspicious-activity")
async def suspicious_activity_route(
    hours: int = Query(24, ge=1, le=24 * 30),
    admin: Identity = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    report = await get_suspicious_activity(session, hours=hours)
    report["alerts"] = await check_for_alerts(session)
    return success_response(report, request_id=request_id_ctx.get(None))


@payments_admin_router.get("/attempts/{reference}")
async def attempt_status_route(reference: str, request: Request, admin: Identity = Depends(require_admin)):
    status = await request.app.state.attempt_limiter.status(reference)
    return success_response({"reference": reference, **status}, request_id=request_id_ctx.get(None))


@payments_admin_router.delete("/attempts/{reference}")
async def reset_attempts_route(reference: str, request: Request, admin: Identity = Depends(require_admin)):
    cleared = await request.app.state.attempt_limiter.reset(reference)
    logger.info("payments.admin.attempts_reset", extra={"reference": reference, "user_id": admin.user_id, "cleared": cleared})
    return success_response({"reference": reference, "cleared": cleared}, request_id=request_id_ctx.get(None))
