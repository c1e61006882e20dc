import json
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from backend.audit.constants import AuditEvent
from backend.common.constants import request_id_ctx
from backend.common.utils import build_error, json_error, json_ok
from backend.config.settings import config_settings
from backend.db.dependencies import get_session, get_session_factory
from backend.payments.constants import PAYSTACK_SIGNATURE_HEADER, logger
from backend.payments.exceptions import PaymentPipelineError
from backend.payments.services import MODE_WEBHOOK, handle_failed_charge, verify_payment
from backend.payments.utils import verify_paystack_signature

webhooks_router = APIRouter()


async def _no_identity():
    return None


@webhooks_router.post("/paystack")
async def paystack_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    body = await request.body()
    audit = request.app.state.audit
    rid = request_id_ctx.get(None)

    signature = request.headers.get(PAYSTACK_SIGNATURE_HEADER)
    if not verify_paystack_signature(body, signature, config_settings.PAYSTACK_SECRET_KEY):
        audit.log(AuditEvent.WEBHOOK_SIGNATURE_INVALID, request=request,
                  metadata={"signature_present": bool(signature)})
        logger.warning("webhook.signature_invalid", extra={"path": request.url.path})
        return json_error(build_error(code="INVALID_SIGNATURE", details={"message": "Invalid webhook signature"},
                                      request_id=rid),
                          status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        payload = json.loads(body)
    except ValueError:
        return json_error(build_error(code="INVALID_PAYLOAD", details={"message": "Webhook body is not valid JSON"},
                                      request_id=rid),
                          status_code=status.HTTP_400_BAD_REQUEST)

    event = payload.get("event") if isinstance(payload, dict) else None
    data = (payload.get("data") if isinstance(payload, dict) else None) or {}
    reference = str(data.get("reference") or "").strip() or None
    audit.log(AuditEvent.WEBHOOK_RECEIVED, reference=reference, request=request, metadata={"event": event})

    if not reference:
        # nothing to reconcile against; acknowledge so the gateway stops retrying
        return json_ok({"status": "ok", "note": "ignored: missing reference"})

    try:
        if event == "charge.success":
            outcome = await verify_payment(
                reference,
                mode=MODE_WEBHOOK,
                session=session,
                session_factory=session_factory,
                audit=audit,
                limiter=request.app.state.webhook_limiter,
                resolve_identity=_no_identity,
                request=request,
            )
            note = "processed"
            if outcome.order is not None and outcome.order.status_restored:
                note = "orders marked paid"
            elif outcome.order is not None and outcome.order.already_fulfilled:
                note = "already processed"
            elif outcome.subscription is not None and not outcome.subscription.updated:
                note = "already processed"
            return json_ok({"status": "ok", "note": note})

        if event == "charge.failed":
            await handle_failed_charge(reference, session=session, audit=audit, request=request,
                                       error=data.get("gateway_response"))
            return json_ok({"status": "ok", "note": "marked failed"})

    except PaymentPipelineError as exc:
        # the pipeline already audited the failure; a non-2xx would only make the gateway replay it
        logger.warning("webhook.processing_failed", extra={
            "reference": reference, "event": event, "code": exc.code, "retryable": exc.retryable,
        })
        return json_ok({"status": "ok", "note": f"not processed: {exc.code}"})

    return json_ok({"status": "ok", "note": f"ignored: {event}"})
