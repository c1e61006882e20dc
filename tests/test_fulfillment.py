import asyncio
from decimal import Decimal
import pytest
from sqlalchemy import update
from backend.db.connection import async_session
from backend.payments import fulfillment
from backend.payments.exceptions import FulfillmentFailed
from backend.payments.models import CartGroupIn
from backend.payments.pricing import verify_order_pricing
from backend.schema.full_schema import MainOrder, OrderStatus, PaymentStatus, Product
from tests.factories import SHIPPING, make_product, make_store, order_rows, stock_of


async def _priced_cart(db_session, *, stock=5, quantity=2):
    store = await make_store(db_session)
    other = await make_store(db_session, name="Craft Corner")
    oil = await make_product(db_session, store, price="1000.00", stock=stock)
    basket = await make_product(db_session, other, name="Woven Basket", price="2500.00", stock=1)
    groups = [
        CartGroupIn(storeId=store.id, items=[{"productId": oil.id, "quantity": quantity}]),
        CartGroupIn(storeId=other.id, items=[{"productId": basket.id, "quantity": 1}]),
    ]
    pricing = await verify_order_pricing(db_session, groups, Decimal("200"))
    return pricing, oil, basket


async def _fulfill(pricing, reference, **kwargs):
    return await fulfillment.fulfill_order(
        async_session, pricing,
        reference=reference,
        user_id="buyer-1",
        payment_method="card",
        shipping_info=dict(SHIPPING),
        payment_details={"reference": reference},
        **kwargs,
    )


async def test_creates_sub_orders_items_main_order_and_decrements_stock(db_session):
    pricing, oil, basket = await _priced_cart(db_session)

    result = await _fulfill(pricing, "ref_multi")

    assert result.already_fulfilled is False
    assert result.summary.sub_order_count == 2
    assert result.summary.grand_total == Decimal("4700.00")
    assert result.summary.order_number.startswith("ORD-")

    mains, subs, items = await order_rows(db_session, "ref_multi")
    assert len(mains) == 1 and len(subs) == 2 and len(items) == 2
    assert sorted(mains[0].sub_order_ids) == sorted(s.id for s in subs)
    assert {s.payment_status for s in subs} == {PaymentStatus.PAID.value}
    assert {s.status for s in subs} == {OrderStatus.PROCESSING.value}
    assert sum((s.total_price for s in subs), Decimal("0")) == Decimal("4500.00")
    assert {i.product_name for i in items} == {"Palm Oil 1L", "Woven Basket"}

    assert await stock_of(db_session, oil.id) == 3
    assert await stock_of(db_session, basket.id) == 0


async def test_second_fulfillment_returns_existing_orders(db_session):
    pricing, oil, _ = await _priced_cart(db_session)

    first = await _fulfill(pricing, "ref_twice")
    second = await _fulfill(pricing, "ref_twice")

    assert second.already_fulfilled is True
    assert second.summary.order_number == first.summary.order_number
    assert await stock_of(db_session, oil.id) == 3
    mains, subs, _ = await order_rows(db_session, "ref_twice")
    assert len(mains) == 1 and len(subs) == 2


async def test_concurrent_fulfillment_writes_once(db_session):
    pricing, oil, _ = await _priced_cart(db_session, stock=10)

    results = await asyncio.gather(*[_fulfill(pricing, "ref_race") for _ in range(3)])

    assert sorted(r.already_fulfilled for r in results) == [False, True, True]
    assert len({r.summary.order_number for r in results}) == 1
    assert await stock_of(db_session, oil.id) == 8
    mains, subs, items = await order_rows(db_session, "ref_race")
    assert len(mains) == 1 and len(subs) == 2 and len(items) == 2


async def test_stock_taken_after_pricing_rolls_everything_back(db_session):
    pricing, oil, basket = await _priced_cart(db_session)
    # someone else bought the last basket between pricing and fulfillment
    await db_session.execute(update(Product).where(Product.id == basket.id).values(inventory_quantity=0))
    await db_session.commit()

    with pytest.raises(FulfillmentFailed) as exc_info:
        await _fulfill(pricing, "ref_stock")

    assert exc_info.value.retryable is True
    mains, subs, items = await order_rows(db_session, "ref_stock")
    assert (mains, subs, items) == ([], [], [])
    # the first store's decrement was rolled back with the rest
    assert await stock_of(db_session, oil.id) == 5


async def test_order_number_collision_is_retried(db_session, monkeypatch):
    pricing, _, _ = await _priced_cart(db_session, stock=10)
    taken = await _fulfill(pricing, "ref_first")

    numbers = iter([taken.summary.order_number, "ORD-261019-FRESH001"])
    monkeypatch.setattr(fulfillment, "generate_order_number", lambda: next(numbers))

    pricing_again, _, _ = await _priced_cart(db_session, stock=10)
    result = await _fulfill(pricing_again, "ref_second")

    assert result.already_fulfilled is False
    assert result.summary.order_number == "ORD-261019-FRESH001"


async def test_order_number_exhaustion_fails(db_session, monkeypatch):
    pricing, _, _ = await _priced_cart(db_session, stock=10)
    taken = await _fulfill(pricing, "ref_first")
    monkeypatch.setattr(fulfillment, "generate_order_number", lambda: taken.summary.order_number)

    pricing_again, _, _ = await _priced_cart(db_session, stock=10)
    with pytest.raises(FulfillmentFailed):
        await _fulfill(pricing_again, "ref_second", max_attempts=2)

    mains, _, _ = await order_rows(db_session, "ref_second")
    assert mains == []


async def test_timeout_is_reported_as_retryable_failure(db_session, monkeypatch):
    pricing, oil, _ = await _priced_cart(db_session)

    async def _slow(*args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(fulfillment, "_write_order_set", _slow)

    with pytest.raises(FulfillmentFailed) as exc_info:
        await _fulfill(pricing, "ref_slow", timeout=0.01)

    assert exc_info.value.details["reason"] == "timeout"
    assert await stock_of(db_session, oil.id) == 5
    assert (await db_session.get(MainOrder, 1)) is None


async def test_second_item_of_one_sub_order_failing_rolls_back_the_first(db_session):
    store = await make_store(db_session)
    oil = await make_product(db_session, store, price="1000.00", stock=5)
    rice = await make_product(db_session, store, name="Rice 5kg", price="3000.00", stock=2)
    groups = [CartGroupIn(storeId=store.id, items=[{"productId": oil.id, "quantity": 2},
                                                    {"productId": rice.id, "quantity": 2}])]
    pricing = await verify_order_pricing(db_session, groups, Decimal("0"))
    await db_session.execute(update(Product).where(Product.id == rice.id).values(inventory_quantity=1))
    await db_session.commit()

    with pytest.raises(FulfillmentFailed):
        await _fulfill(pricing, "ref_half")

    assert await order_rows(db_session, "ref_half") == ([], [], [])
    assert await stock_of(db_session, oil.id) == 5
    assert await stock_of(db_session, rice.id) == 1
