from datetime import datetime, timedelta, timezone
from decimal import Decimal
import pytest
from sqlalchemy import select
from backend.common.utils import as_utc
from backend.payments.exceptions import InvalidMetadata, StoreNotFound
from backend.payments.subscriptions import add_one_month, apply_plan, enforce_product_limit
from backend.schema.full_schema import Product, Store
from tests.factories import make_product, make_store


@pytest.mark.parametrize("start, expected", [
    (datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc), datetime(2026, 2, 28, 9, 0, tzinfo=timezone.utc)),
    (datetime(2028, 1, 31, 9, 0, tzinfo=timezone.utc), datetime(2028, 2, 29, 9, 0, tzinfo=timezone.utc)),
    (datetime(2026, 12, 15, 9, 0, tzinfo=timezone.utc), datetime(2027, 1, 15, 9, 0, tzinfo=timezone.utc)),
    (datetime(2026, 3, 31, 9, 0, tzinfo=timezone.utc), datetime(2026, 4, 30, 9, 0, tzinfo=timezone.utc)),
])
def test_add_one_month_clamps_to_month_end(start, expected):
    assert add_one_month(start) == expected


async def _active_ids(session, store_id):
    res = await session.execute(
        select(Product.id).where(Product.store_id == store_id, Product.is_active.is_(True)).order_by(Product.id)
    )
    return list(res.scalars().all())


async def test_basic_plan_activates_store(db_session):
    store = await make_store(db_session)

    result = await apply_plan(db_session, store.id, "basic", Decimal("5000"), "sub_ref_1")

    assert result.updated is True
    assert result.plan == "basic"
    assert result.status == "active"
    assert result.product_limit == 20
    expiry = as_utc(result.expiry_date)
    assert timedelta(days=27) < expiry - datetime.now(timezone.utc) < timedelta(days=32)

    row = (await db_session.execute(select(Store).where(Store.id == store.id))).scalar_one()
    assert row.last_payment_reference == "sub_ref_1"
    assert row.last_payment_amount == Decimal("5000.00")


async def test_same_reference_does_not_extend_again(db_session):
    store = await make_store(db_session)

    first = await apply_plan(db_session, store.id, "standard", Decimal("10000"), "sub_ref_2")
    second = await apply_plan(db_session, store.id, "standard", Decimal("10000"), "sub_ref_2")

    assert first.updated is True
    assert second.updated is False
    assert as_utc(second.expiry_date) == as_utc(first.expiry_date)
    assert second.product_limit == 50


async def test_new_reference_renews(db_session):
    store = await make_store(db_session)

    await apply_plan(db_session, store.id, "basic", Decimal("5000"), "sub_ref_a")
    renewed = await apply_plan(db_session, store.id, "premium", Decimal("20000"), "sub_ref_b")

    assert renewed.updated is True
    assert renewed.plan == "premium"
    assert renewed.product_limit is None


async def test_store_addressed_by_public_id(db_session):
    store = await make_store(db_session)

    result = await apply_plan(db_session, store.public_id, "basic", Decimal("5000"), "sub_ref_pid")

    assert result.store_id == store.id


async def test_unknown_store_and_plan(db_session):
    store = await make_store(db_session)

    with pytest.raises(StoreNotFound):
        await apply_plan(db_session, 424242, "basic", Decimal("5000"), "sub_ref_x")
    with pytest.raises(InvalidMetadata):
        await apply_plan(db_session, store.id, "gold", Decimal("5000"), "sub_ref_y")


async def test_limit_keeps_newest_products_active(db_session):
    store = await make_store(db_session)
    products = [await make_product(db_session, store, name=f"Item {i}") for i in range(5)]

    deactivated = await enforce_product_limit(db_session, store.id, 3)
    await db_session.commit()

    assert deactivated == 2
    assert await _active_ids(db_session, store.id) == sorted(p.id for p in products[2:])


async def test_unbounded_plan_reactivates_everything(db_session):
    store = await make_store(db_session)
    for i in range(4):
        await make_product(db_session, store, name=f"Item {i}", is_active=False)
    deleted = await make_product(db_session, store, name="Gone", is_active=False, is_deleted=True)

    await enforce_product_limit(db_session, store.id, None)
    await db_session.commit()

    active = await _active_ids(db_session, store.id)
    assert len(active) == 4
    assert deleted.id not in active


async def test_downgrade_deactivates_overflow(db_session):
    store = await make_store(db_session)
    for i in range(12):
        await make_product(db_session, store, name=f"Item {i}")

    result = await apply_plan(db_session, store.id, "free", Decimal("0"), "sub_ref_free")

    assert result.product_limit == 10
    assert result.deactivated_products == 2
    assert len(await _active_ids(db_session, store.id)) == 10
