from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from backend.payments.constants import AMOUNT_TOLERANCE, logger
from backend.payments.exceptions import AmountMismatch, InsufficientStock, ProductUnavailable
from backend.payments.models import CartGroupIn, PricedLine, PricedStoreGroup, VerifiedPricing
from backend.payments.repository import load_products, load_store_ids
from backend.payments.utils import parse_entity_key, quantize
from backend.schema.full_schema import Product


def _merge_cart(cart_groups: List[CartGroupIn]):
    """
    Resolve keys and fold duplicates: one bucket per store key, one quantity per product key.
    A store listed twice would otherwise produce two sub-orders for the same (reference, store).
    """
    merged: "OrderedDict[object, OrderedDict[object, int]]" = OrderedDict()
    for group in cart_groups:
        store_key = parse_entity_key(group.storeId)
        if store_key is None:
            raise ProductUnavailable(f"Store {group.storeId} is not available")
        bucket = merged.setdefault(store_key, OrderedDict())
        for item in group.items:
            product_key = parse_entity_key(item.productId)
            if product_key is None:
                raise ProductUnavailable(f"Product {item.productId} not found")
            bucket[product_key] = bucket.get(product_key, 0) + int(item.quantity)
    return merged


async def verify_order_pricing(session: AsyncSession, cart_groups: List[CartGroupIn],
                               delivery_fee: Decimal) -> VerifiedPricing:
    """
    Re-price the cart from the live catalog.

    Client-sent prices never enter the computation. Every product must exist,
    be active and not deleted, belong to the store it was grouped under, and
    have enough stock for the (merged) requested quantity.
    """
    merged = _merge_cart(cart_groups)

    store_ids = await load_store_ids(session, merged.keys())
    product_keys = [pk for bucket in merged.values() for pk in bucket]
    products = await load_products(session, product_keys)

    # the same store/product can be named by id and by uuid, fold again on resolved ids
    wanted: "OrderedDict[int, OrderedDict[int, int]]" = OrderedDict()
    resolved: Dict[int, Product] = {}
    for store_key, bucket in merged.items():
        store_id = store_ids.get(store_key)
        if store_id is None:
            raise ProductUnavailable(f"Store {store_key} is not available")
        per_store = wanted.setdefault(store_id, OrderedDict())
        for product_key, quantity in bucket.items():
            product = products.get(product_key)
            if product is None or product.is_deleted or product.store_id != store_id:
                raise ProductUnavailable(f"Product {product_key} not found", details={"product_id": str(product_key)})
            resolved[product.id] = product
            per_store[product.id] = per_store.get(product.id, 0) + quantity

    priced: List[PricedStoreGroup] = []
    for store_id, per_store in wanted.items():
        lines: List[PricedLine] = []
        for product_id, quantity in per_store.items():
            product = resolved[product_id]
            if not product.is_active:
                raise ProductUnavailable(f"{product.name} is no longer available", details={"product_id": product.id})
            if product.inventory_quantity < quantity:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}",
                    details={"product_id": product.id, "requested": quantity, "available": product.inventory_quantity},
                )
            unit_price = quantize(product.price)
            lines.append(PricedLine(product_id=product.id, product_name=product.name, quantity=quantity,
                                    unit_price=unit_price, line_total=quantize(unit_price * quantity)))
        total = quantize(sum((ln.line_total for ln in lines), Decimal("0")))
        priced.append(PricedStoreGroup(store_id=store_id, lines=lines, total=total))

    subtotal = quantize(sum((g.total for g in priced), Decimal("0")))
    fee = quantize(delivery_fee)
    return VerifiedPricing(groups=priced, subtotal=subtotal, delivery_fee=fee, grand_total=quantize(subtotal + fee))


def reconcile_amount(reference: str, paid: Decimal, expected: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE) -> None:
    """Raise AmountMismatch when the settled amount differs from the computed total by more than `tolerance`."""
    difference = abs(Decimal(paid) - Decimal(expected))
    if difference > tolerance:
        logger.warning("pricing.amount_mismatch", extra={
            "reference": reference, "paid": str(paid), "expected": str(expected), "difference": str(difference),
        })
        raise AmountMismatch(reference=reference, paid=Decimal(paid), expected=Decimal(expected))
