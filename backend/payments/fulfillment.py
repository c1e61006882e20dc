import asyncio
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from backend.db.utils import is_postgres
from backend.payments.constants import FULFILLMENT_TIMEOUT_SECONDS, ORDER_NUMBER_MAX_ATTEMPTS, logger
from backend.payments.exceptions import FulfillmentFailed
from backend.payments.models import FulfillmentResult, OrderSummary, VerifiedPricing
from backend.payments.repository import decrement_inventory, find_existing_orders
from backend.payments.utils import acquire_pglock, generate_order_number, idempotency_lock_key
from backend.schema.full_schema import MainOrder, OrderStatus, PaymentStatus, SubOrder, SubOrderItem


class _StockConflict(Exception):
    """A conditional decrement matched no row inside the write transaction."""

    def __init__(self, product_id: int):
        super().__init__(f"stock changed for product {product_id}")
        self.product_id = product_id


async def _write_order_set(
    session_factory: async_sessionmaker,
    pricing: VerifiedPricing,
    *,
    reference: str,
    order_number: str,
    user_id: Optional[str],
    payment_method: str,
    shipping_info: Dict[str, Any],
    payment_details: Dict[str, Any],
    paid_at: Optional[datetime],
) -> FulfillmentResult:
    async with session_factory() as session:
        async with session.begin():
            if is_postgres(session):
                # serializes concurrent fulfillers of one reference; released at commit/rollback
                await acquire_pglock(session, idempotency_lock_key(f"fulfill:{reference}"))

            existing = await find_existing_orders(session, reference)
            if existing is not None:
                return FulfillmentResult(summary=existing, already_fulfilled=True)

            sub_order_ids = []
            for group in pricing.groups:
                sub = SubOrder(
                    store_id=group.store_id,
                    user_id=user_id,
                    reference=reference,
                    total_price=group.total,
                    status=OrderStatus.PROCESSING.value,
                    payment_status=PaymentStatus.PAID.value,
                    payment_method=payment_method,
                    paid_at=paid_at,
                    payment_details=payment_details,
                    shipping_info=shipping_info,
                )
                session.add(sub)
                # flush now so a replayed reference trips uq_suborder_reference_store before any stock moves
                await session.flush()
                sub_order_ids.append(sub.id)

                for line in group.lines:
                    session.add(SubOrderItem(
                        sub_order_id=sub.id,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        quantity=line.quantity,
                        price_at_purchase=line.unit_price,
                        item_total=line.line_total,
                    ))
                    if not await decrement_inventory(session, line.product_id, line.quantity):
                        raise _StockConflict(line.product_id)

            main = MainOrder(
                order_number=order_number,
                user_id=user_id,
                reference=reference,
                sub_order_ids=sub_order_ids,
                total_amount=pricing.subtotal,
                delivery_fee=pricing.delivery_fee,
                grand_total=pricing.grand_total,
                shipping_info=shipping_info,
                payment_method=payment_method,
                payment_status=PaymentStatus.PAID.value,
                status=OrderStatus.PROCESSING.value,
                paid_at=paid_at,
                payment_details=payment_details,
            )
            session.add(main)
            await session.flush()

        summary = OrderSummary(
            order_number=main.order_number,
            reference=reference,
            grand_total=main.grand_total,
            sub_order_count=len(sub_order_ids),
            status=main.status,
            payment_status=main.payment_status,
            created_at=main.created_at,
            sub_order_ids=sub_order_ids,
        )
        return FulfillmentResult(summary=summary, already_fulfilled=False)


async def _existing_after_conflict(session_factory: async_sessionmaker, reference: str) -> Optional[OrderSummary]:
    async with session_factory() as session:
        return await find_existing_orders(session, reference)


async def fulfill_order(
    session_factory: async_sessionmaker,
    pricing: VerifiedPricing,
    *,
    reference: str,
    user_id: Optional[str],
    payment_method: str,
    shipping_info: Dict[str, Any],
    payment_details: Dict[str, Any],
    paid_at: Optional[datetime] = None,
    timeout: float = FULFILLMENT_TIMEOUT_SECONDS,
    max_attempts: int = ORDER_NUMBER_MAX_ATTEMPTS,
) -> FulfillmentResult:
    """
    Materialize the verified order set for `reference` in one transaction.

    Either every sub-order, item snapshot, stock decrement and the main order
    commit together, or none do. A unique violation on the reference means a
    concurrent caller won: the existing order set is returned flagged
    already_fulfilled. A unique violation on the order number is retried with
    a fresh number. Everything else raises FulfillmentFailed.
    """
    for attempt in range(1, max_attempts + 1):
        order_number = generate_order_number()
        try:
            return await asyncio.wait_for(
                _write_order_set(
                    session_factory, pricing,
                    reference=reference, order_number=order_number, user_id=user_id,
                    payment_method=payment_method, shipping_info=shipping_info,
                    payment_details=payment_details, paid_at=paid_at,
                ),
                timeout=timeout,
            )
        except IntegrityError as exc:
            existing = await _existing_after_conflict(session_factory, reference)
            if existing is not None:
                logger.info("fulfillment.conflict_already_fulfilled", extra={"reference": reference})
                return FulfillmentResult(summary=existing, already_fulfilled=True)
            logger.warning("fulfillment.order_number_conflict", extra={
                "reference": reference, "attempt": attempt, "error": str(exc.orig),
            })
            continue
        except _StockConflict as exc:
            logger.error("fulfillment.stock_conflict", extra={"reference": reference, "product_id": exc.product_id})
            existing = await _existing_after_conflict(session_factory, reference)
            if existing is not None:
                return FulfillmentResult(summary=existing, already_fulfilled=True)
            raise FulfillmentFailed(reference=reference, details={"reason": "stock changed during fulfillment"})
        except asyncio.TimeoutError:
            logger.error("fulfillment.timeout", extra={"reference": reference, "timeout": timeout})
            raise FulfillmentFailed(reference=reference, details={"reason": "timeout"})
        except SQLAlchemyError as exc:
            logger.exception("fulfillment.db_error", extra={"reference": reference})
            raise FulfillmentFailed(reference=reference, details={"reason": type(exc).__name__})

    logger.error("fulfillment.order_number_exhausted", extra={"reference": reference, "attempts": max_attempts})
    raise FulfillmentFailed(reference=reference, details={"reason": "could not allocate an order number"})
