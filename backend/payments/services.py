import dataclasses
from typing import Awaitable, Callable, Optional, assert_never
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from backend.audit.audit_logger import AuditLogger
from backend.audit.constants import AuditEvent
from backend.auth.dependencies import Identity
from backend.payments import gateway
from backend.payments.constants import logger
from backend.payments.exceptions import (
    AmountMismatch, InsufficientStock, InvalidMetadata, MissingReference, PaymentPipelineError, ProductUnavailable, RateLimited,
    Unauthorized,
)
from backend.payments.metadata import extract_intent, normalize_metadata
from backend.payments.models import (
    FulfillmentResult, GatewayTransaction, OrderIntent, SubscriptionIntent, VerificationOutcome,
)
from backend.payments.fulfillment import fulfill_order
from backend.payments.pricing import reconcile_amount, verify_order_pricing
from backend.payments.repository import find_existing_orders, mark_orders_failed, mark_orders_paid
from backend.payments.subscriptions import apply_plan
from backend.payments.utils import parse_entity_key, payment_details, payment_method_for_channel
from backend.rate_limiting.attempt_limiter import AttemptLimiter
from backend.schema.full_schema import OrderStatus, PaymentStatus

MODE_VERIFY = "verify"      # buyer POST after redirect: fulfills
MODE_POLL = "poll"          # GET polling: applies subscriptions, reports order state only
MODE_WEBHOOK = "webhook"    # gateway push: fulfills, buyer id comes from metadata


def clean_reference(reference: Optional[str]) -> str:
    ref = (reference or "").strip()
    if not ref:
        raise MissingReference("Payment reference is required")
    return ref


async def check_attempts(limiter: AttemptLimiter, audit: AuditLogger, reference: str,
                         request: Optional[Request] = None) -> None:
    if await limiter.allow(reference):
        return
    retry_after = await limiter.retry_after(reference)
    audit.log(AuditEvent.RATE_LIMIT_HIT, reference=reference, request=request,
              metadata={"max_attempts": limiter.max_attempts, "window_seconds": limiter.window_seconds})
    raise RateLimited("Too many verification attempts for this reference", reference=reference,
                      retry_after=retry_after)


async def _fulfill_order_intent(
    intent: OrderIntent,
    txn: GatewayTransaction,
    *,
    reference: str,
    user_id: Optional[str],
    session: AsyncSession,
    session_factory: async_sessionmaker,
    audit: AuditLogger,
    request: Optional[Request],
    require_buyer: bool = False,
) -> FulfillmentResult:

    existing = await find_existing_orders(session, reference)
    if existing is not None:
        if existing.payment_status != PaymentStatus.PAID.value:
            # the gateway confirms the capture of a charge previously reported as failed
            restored = await mark_orders_paid(session, reference, txn.paid_at)
            await session.commit()
            audit.log(AuditEvent.DUPLICATE_ORDER_UPDATED, reference=reference, user_id=user_id, request=request,
                      metadata={"order_number": existing.order_number, "orders_marked_paid": restored})
            logger.info("payments.orders_marked_paid", extra={"reference": reference, "orders_marked_paid": restored})
            summary = dataclasses.replace(existing, payment_status=PaymentStatus.PAID.value,
                                          status=OrderStatus.PROCESSING.value)
            return FulfillmentResult(summary=summary, already_fulfilled=True, status_restored=True)
        audit.log(AuditEvent.DUPLICATE_DETECTED, reference=reference, user_id=user_id, request=request,
                  metadata={"order_number": existing.order_number, "stage": "pre_check"})
        return FulfillmentResult(summary=existing, already_fulfilled=True)

    if require_buyer and not user_id:
        raise InvalidMetadata("Missing userId in payment metadata", reference=reference)

    try:
        pricing = await verify_order_pricing(session, intent.cart_groups, intent.delivery_fee)
    except (ProductUnavailable, InsufficientStock):
        # a concurrent fulfiller may have just consumed the stock for this very reference
        existing = await find_existing_orders(session, reference)
        if existing is not None:
            audit.log(AuditEvent.DUPLICATE_DETECTED, reference=reference, user_id=user_id, request=request,
                      metadata={"order_number": existing.order_number, "stage": "after_pricing_failure"})
            return FulfillmentResult(summary=existing, already_fulfilled=True)
        raise
    finally:
        # end the read transaction before the write transaction opens its own connection
        await session.rollback()

    try:
        reconcile_amount(reference, txn.amount, pricing.grand_total)
    except AmountMismatch as exc:
        audit.log(AuditEvent.AMOUNT_MISMATCH, reference=reference, user_id=user_id, request=request,
                  amount=txn.amount, expected_amount=pricing.grand_total,
                  metadata={"difference": str(exc.difference)})
        raise

    result = await fulfill_order(
        session_factory, pricing,
        reference=reference,
        user_id=user_id,
        payment_method=payment_method_for_channel(txn.channel, intent.payment_method),
        shipping_info=intent.shipping_info.model_dump(mode="json"),
        payment_details=payment_details(txn),
        paid_at=txn.paid_at,
    )
    if result.already_fulfilled:
        audit.log(AuditEvent.DUPLICATE_DETECTED, reference=reference, user_id=user_id, request=request,
                  metadata={"order_number": result.summary.order_number, "stage": "in_transaction"})
    else:
        audit.log(AuditEvent.ORDER_CREATED, reference=reference, user_id=user_id, request=request,
                  amount=txn.amount, expected_amount=pricing.grand_total,
                  metadata={"order_number": result.summary.order_number,
                            "sub_order_count": result.summary.sub_order_count})
    return result


def _audit_failure(audit: AuditLogger, exc: PaymentPipelineError, *, reference: Optional[str], mode: str,
                   user_id: Optional[str] = None, request: Optional[Request] = None) -> None:
    audit.log(AuditEvent.VERIFICATION_FAILED, reference=reference, user_id=user_id, request=request,
              error=exc.message, metadata={"code": exc.code, "mode": mode})


async def verify_payment(
    reference: Optional[str],
    *,
    mode: str,
    session: AsyncSession,
    session_factory: async_sessionmaker,
    audit: AuditLogger,
    resolve_identity: Callable[[], Awaitable[Optional[Identity]]],
    limiter: Optional[AttemptLimiter] = None,
    request: Optional[Request] = None,
) -> VerificationOutcome:
    """
    Run one verification attempt for `reference` end to end.

    Limiter, identity, gateway, metadata, then either the subscription update
    or the order branch (guard, re-pricing, amount reconciliation, fulfillment).
    Every outcome, success or failure, leaves an audit entry behind.
    """
    try:
        reference = clean_reference(reference)
    except MissingReference as exc:
        _audit_failure(audit, exc, reference=None, mode=mode, request=request)
        raise

    if limiter is not None:
        await check_attempts(limiter, audit, reference, request)

    try:
        identity = await resolve_identity()
    except Unauthorized as exc:
        exc.reference = reference
        _audit_failure(audit, exc, reference=reference, mode=mode, request=request)
        raise
    user_id = identity.user_id if identity else None

    audit.log(AuditEvent.VERIFICATION_STARTED, reference=reference, user_id=user_id, request=request,
              metadata={"mode": mode})
    logger.info("payments.verify.started", extra={"reference": reference, "mode": mode})

    try:
        txn = await gateway.verify_transaction(reference)
        intent = extract_intent(txn.raw_metadata)
        outcome = VerificationOutcome(reference=reference, amount=txn.amount, viewer_id=user_id)

        match intent:
            case SubscriptionIntent():
                store_key = parse_entity_key(intent.store_id)
                if store_key is None:
                    raise InvalidMetadata("Subscription metadata has an invalid storeId", reference=reference)
                result = await apply_plan(session, store_key, intent.plan, txn.amount, reference)
                audit.log(AuditEvent.SUBSCRIPTION_UPDATED if result.updated else AuditEvent.DUPLICATE_DETECTED,
                          reference=reference, user_id=user_id, request=request, amount=txn.amount,
                          metadata={"store_id": result.store_id, "plan": result.plan, "applied": result.updated})
                outcome.subscription = result

            case OrderIntent():
                buyer_id = intent.user_id if mode == MODE_WEBHOOK else (user_id or intent.user_id)
                if mode == MODE_POLL:
                    existing = await find_existing_orders(session, reference)
                    if existing is not None:
                        outcome.order = FulfillmentResult(summary=existing, already_fulfilled=True)
                    else:
                        outcome.pending_metadata = normalize_metadata(txn.raw_metadata)
                else:
                    outcome.order = await _fulfill_order_intent(
                        intent, txn, reference=reference, user_id=buyer_id,
                        session=session, session_factory=session_factory, audit=audit, request=request,
                        require_buyer=mode == MODE_WEBHOOK,
                    )

            case _:
                assert_never(intent)

    except AmountMismatch:
        raise
    except PaymentPipelineError as exc:
        exc.reference = exc.reference or reference
        _audit_failure(audit, exc, reference=reference, mode=mode, user_id=user_id, request=request)
        raise

    audit.log(AuditEvent.VERIFICATION_SUCCESS, reference=reference, user_id=user_id, request=request,
              amount=txn.amount, metadata={"mode": mode})
    logger.info("payments.verify.succeeded", extra={"reference": reference, "mode": mode})
    return outcome


async def handle_failed_charge(reference: str, *, session: AsyncSession, audit: AuditLogger,
                               request: Optional[Request] = None, error: Optional[str] = None) -> int:
    """Mark any orders already written for a charge the gateway reports as failed."""
    touched = await mark_orders_failed(session, reference)
    await session.commit()
    audit.log(AuditEvent.PAYMENT_FAILED, reference=reference, request=request, error=error,
              metadata={"orders_marked_failed": touched})
    logger.warning("payments.charge_failed", extra={"reference": reference, "orders_marked_failed": touched})
    return touched
