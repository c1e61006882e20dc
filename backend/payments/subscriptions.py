import calendar
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from backend.common.utils import now
from backend.payments.constants import PLAN_PRODUCT_LIMITS, logger
from backend.payments.exceptions import InvalidMetadata, StoreNotFound
from backend.payments.models import SubscriptionResult
from backend.payments.repository import EntityId, get_store
from backend.schema.full_schema import Product, Store, SubscriptionStatus


def add_one_month(start: datetime) -> datetime:
    """Same day next month, clamped to the month's last day (Jan 31 -> Feb 28/29)."""
    year = start.year + (1 if start.month == 12 else 0)
    month = 1 if start.month == 12 else start.month + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


async def enforce_product_limit(session: AsyncSession, store_id: int, limit: Optional[int]) -> int:
    """
    Keep the newest `limit` non-deleted products active and deactivate the rest.
    An unbounded plan reactivates everything. Returns how many products were deactivated.
    """
    ts = now()
    if limit is None:
        await session.execute(
            update(Product)
            .where(Product.store_id == store_id, Product.is_deleted.is_(False), Product.is_active.is_(False))
            .values(is_active=True, deactivated_at=None, updated_at=ts)
            .execution_options(synchronize_session=False)
        )
        return 0

    res = await session.execute(
        select(Product.id)
        .where(Product.store_id == store_id, Product.is_deleted.is_(False))
        .order_by(Product.created_at.desc(), Product.id.desc())
    )
    ordered_ids = list(res.scalars().all())
    keep, drop = ordered_ids[:limit], ordered_ids[limit:]

    if keep:
        await session.execute(
            update(Product)
            .where(Product.id.in_(keep), Product.is_active.is_(False))
            .values(is_active=True, deactivated_at=None, updated_at=ts)
            .execution_options(synchronize_session=False)
        )
    deactivated = 0
    if drop:
        out = await session.execute(
            update(Product)
            .where(Product.id.in_(drop), Product.is_active.is_(True))
            .values(is_active=False, deactivated_at=ts, updated_at=ts)
            .execution_options(synchronize_session=False)
        )
        deactivated = out.rowcount or 0
    return deactivated


def _result(store: Store, updated: bool, deactivated: int = 0) -> SubscriptionResult:
    return SubscriptionResult(
        store_id=store.id,
        plan=store.subscription_plan,
        status=store.subscription_status,
        expiry_date=store.subscription_expiry_date,
        product_limit=store.product_limit,
        updated=updated,
        deactivated_products=deactivated,
    )


async def apply_plan(session: AsyncSession, store_key: EntityId, plan: str, amount: Decimal,
                     reference: str) -> SubscriptionResult:
    """
    Activate `plan` for the store for one month from now, exactly once per reference.

    The UPDATE only matches while the store's last_payment_reference differs
    from `reference`, so a replayed reference (sequential or concurrent) leaves
    the expiry untouched and reports updated=False. Commits on success.
    """
    if plan not in PLAN_PRODUCT_LIMITS:
        raise InvalidMetadata(f"Unknown subscription plan: {plan}")

    store = await get_store(session, store_key)
    if store is None:
        raise StoreNotFound(f"Store {store_key} not found", reference=reference)

    limit = PLAN_PRODUCT_LIMITS[plan]
    started = now()
    stmt = (
        update(Store)
        .where(
            Store.id == store.id,
            or_(Store.last_payment_reference.is_(None), Store.last_payment_reference != reference),
        )
        .values(
            subscription_plan=plan,
            subscription_status=SubscriptionStatus.ACTIVE.value,
            subscription_start_date=started,
            subscription_expiry_date=add_one_month(started),
            product_limit=limit,
            last_payment_reference=reference,
            last_payment_amount=amount,
            last_payment_date=started,
            updated_at=started,
        )
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    updated = res.rowcount == 1

    deactivated = 0
    if updated:
        deactivated = await enforce_product_limit(session, store.id, limit)
    await session.commit()

    await session.refresh(store)
    if updated:
        logger.info("subscription.updated", extra={
            "store_id": store.id, "plan": plan, "reference": reference, "deactivated_products": deactivated,
        })
    else:
        logger.info("subscription.already_applied", extra={"store_id": store.id, "reference": reference})
    return _result(store, updated, deactivated)
