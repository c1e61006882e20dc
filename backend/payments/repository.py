import uuid
from datetime import datetime
from typing import Dict, Iterable, Optional, Union
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from backend.common.utils import now
from backend.payments.models import OrderSummary
from backend.schema.full_schema import MainOrder, OrderStatus, PaymentStatus, Product, Store, SubOrder

EntityId = Union[int, uuid.UUID]


def _split_keys(keys: Iterable[EntityId]):
    ids = [k for k in keys if isinstance(k, int)]
    pids = [k for k in keys if isinstance(k, uuid.UUID)]
    return ids, pids


async def load_products(session: AsyncSession, keys: Iterable[EntityId]) -> Dict[EntityId, Product]:
    """Products keyed by whichever key (id or public uuid) they were asked for."""
    keys = list(keys)
    ids, pids = _split_keys(keys)
    if not ids and not pids:
        return {}
    conds = []
    if ids:
        conds.append(Product.id.in_(ids))
    if pids:
        conds.append(Product.public_id.in_(pids))
    res = await session.execute(select(Product).where(or_(*conds)))
    rows = res.scalars().all()
    by_id = {p.id: p for p in rows}
    by_pid = {p.public_id: p for p in rows}
    out = {}
    for k in keys:
        p = by_id.get(k) if isinstance(k, int) else by_pid.get(k)
        if p is not None:
            out[k] = p
    return out


async def load_store_ids(session: AsyncSession, keys: Iterable[EntityId]) -> Dict[EntityId, int]:
    keys = list(keys)
    ids, pids = _split_keys(keys)
    out: Dict[EntityId, int] = {}
    if ids:
        res = await session.execute(select(Store.id).where(Store.id.in_(ids)))
        for sid in res.scalars().all():
            out[sid] = sid
    if pids:
        res = await session.execute(select(Store.id, Store.public_id).where(Store.public_id.in_(pids)))
        for sid, pid in res.all():
            out[pid] = sid
    return out


async def get_store(session: AsyncSession, key: EntityId) -> Optional[Store]:
    if isinstance(key, int):
        stmt = select(Store).where(Store.id == key)
    else:
        stmt = select(Store).where(Store.public_id == key)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def find_existing_orders(session: AsyncSession, reference: str) -> Optional[OrderSummary]:
    """Idempotency guard: the order set already materialized for this reference, if any."""
    res = await session.execute(select(MainOrder).where(MainOrder.reference == reference))
    main = res.scalar_one_or_none()

    sub_res = await session.execute(select(SubOrder.id).where(SubOrder.reference == reference).order_by(SubOrder.id))
    sub_ids = list(sub_res.scalars().all())

    if main is None and not sub_ids:
        return None
    if main is None:
        # sub-orders without a main order only happen for rows written outside the fulfillment transaction
        return OrderSummary(order_number="", reference=reference, grand_total=None, sub_order_count=len(sub_ids),
                            status=OrderStatus.PROCESSING.value, payment_status=PaymentStatus.PAID.value,
                            created_at=None, sub_order_ids=sub_ids)
    return OrderSummary(
        order_number=main.order_number,
        reference=main.reference,
        grand_total=main.grand_total,
        sub_order_count=len(sub_ids),
        status=main.status,
        payment_status=main.payment_status,
        created_at=main.created_at,
        sub_order_ids=sub_ids,
    )


async def decrement_inventory(session: AsyncSession, product_id: int, quantity: int) -> bool:
    """Conditional decrement; False when the row no longer has `quantity` in stock (or was pulled from sale)."""
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.inventory_quantity >= quantity,
            Product.is_active.is_(True),
            Product.is_deleted.is_(False),
        )
        .values(inventory_quantity=Product.inventory_quantity - quantity, updated_at=now())
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def mark_orders_failed(session: AsyncSession, reference: str) -> int:
    """Flip every order row for a reference to failed/cancelled. Returns the number of sub-orders touched."""
    values = {"payment_status": PaymentStatus.FAILED.value, "status": OrderStatus.CANCELLED.value, "updated_at": now()}
    res = await session.execute(
        update(SubOrder).where(SubOrder.reference == reference).values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(MainOrder).where(MainOrder.reference == reference).values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount or 0


async def mark_orders_paid(session: AsyncSession, reference: str, paid_at: Optional[datetime]) -> int:
    """Restore paid/processing on order rows of a reference that are not paid. Returns the sub-orders touched."""
    values = {"payment_status": PaymentStatus.PAID.value, "status": OrderStatus.PROCESSING.value,
              "paid_at": paid_at or now(), "updated_at": now()}
    res = await session.execute(
        update(SubOrder)
        .where(SubOrder.reference == reference, SubOrder.payment_status != PaymentStatus.PAID.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(MainOrder)
        .where(MainOrder.reference == reference, MainOrder.payment_status != PaymentStatus.PAID.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount or 0
