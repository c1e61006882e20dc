import json
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from pydantic import TypeAdapter, ValidationError
from backend.payments.constants import PLAN_PRODUCT_LIMITS, logger
from backend.payments.exceptions import InvalidMetadata
from backend.payments.models import CartGroupIn, Intent, OrderIntent, ShippingInfoIn, SubscriptionIntent

_MISSING = object()

_cart_groups_adapter = TypeAdapter(list[CartGroupIn])

SUBSCRIPTION_TYPES = ("subscription", "subscription_payment")
ORDER_TYPES = ("order", "orders", "order_payment")


def _maybe_json(value: Any) -> Any:
    """Custom-field values arrive as strings; decode the ones that hold JSON."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "[", '"') or stripped in ("true", "false", "null"):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value


def normalize_metadata(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise InvalidMetadata("Payment metadata is not valid JSON")
    if not isinstance(raw, dict):
        raise InvalidMetadata("Payment metadata must be an object")
    return raw


def _custom_fields(meta: Dict[str, Any]) -> Dict[str, Any]:
    fields = _maybe_json(meta.get("custom_fields"))
    out: Dict[str, Any] = {}
    if not isinstance(fields, list):
        return out
    for f in fields:
        if not isinstance(f, dict):
            continue
        key = f.get("variable_name") or f.get("name")
        if key and key not in out:
            out[key] = _maybe_json(f.get("value"))
    return out


def lookup(meta: Dict[str, Any], key: str, custom: Optional[Dict[str, Any]] = None) -> Any:
    """Direct field wins over a custom field of the same name."""
    value = meta.get(key, _MISSING)
    if value is not _MISSING and value is not None and value != "":
        return _maybe_json(value)
    if custom is None:
        custom = _custom_fields(meta)
    value = custom.get(key, _MISSING)
    if value is _MISSING or value is None or value == "":
        return None
    return value


def _has_subscription_fields(plan: Any, store_id: Any) -> bool:
    return plan is not None and store_id is not None


def _has_order_fields(orders: Any, shipping: Any) -> bool:
    return isinstance(orders, list) and len(orders) > 0 and shipping is not None


def _build_subscription(plan: Any, store_id: Any) -> SubscriptionIntent:
    plan_value = str(plan).strip().lower()
    if plan_value not in PLAN_PRODUCT_LIMITS:
        raise InvalidMetadata(f"Unknown subscription plan: {plan}")
    if isinstance(store_id, bool) or not isinstance(store_id, (int, str)) or str(store_id).strip() == "":
        raise InvalidMetadata("Subscription metadata has an invalid storeId")
    return SubscriptionIntent(store_id=store_id, plan=plan_value)


def _build_order(orders: Any, shipping: Any, delivery_fee: Any, user_id: Any, payment_method: Any) -> OrderIntent:
    if not isinstance(orders, list) or not orders:
        raise InvalidMetadata("Order metadata must contain at least one store order")
    if not isinstance(shipping, dict):
        raise InvalidMetadata("Order metadata is missing shipping information")
    try:
        cart_groups = _cart_groups_adapter.validate_python(orders)
        shipping_info = ShippingInfoIn.model_validate(shipping)
    except ValidationError as exc:
        raise InvalidMetadata("Order metadata failed validation",
                              details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)})

    try:
        fee = Decimal(str(delivery_fee)) if delivery_fee is not None else Decimal("0")
    except InvalidOperation:
        raise InvalidMetadata("deliveryFee must be a number")
    if not fee.is_finite() or fee < 0:
        raise InvalidMetadata("deliveryFee must be a non-negative number")

    return OrderIntent(
        cart_groups=cart_groups,
        shipping_info=shipping_info,
        delivery_fee=fee,
        user_id=str(user_id) if user_id is not None else None,
        payment_method=str(payment_method) if payment_method is not None else None,
    )


def extract_intent(raw_metadata: Any) -> Intent:
    """
    Turn gateway metadata into exactly one intent.

    An explicit `type` field picks the branch. Without it the metadata must
    resolve to exactly one of subscription (plan + storeId) or order
    (orders + shippingInfo); both or neither is InvalidMetadata.
    """
    meta = normalize_metadata(raw_metadata)
    custom = _custom_fields(meta)

    plan = lookup(meta, "plan", custom)
    store_id = lookup(meta, "storeId", custom)
    orders = lookup(meta, "orders", custom)
    shipping = lookup(meta, "shippingInfo", custom)
    declared = lookup(meta, "type", custom)

    if declared is not None:
        declared = str(declared).strip().lower()
        if declared in SUBSCRIPTION_TYPES:
            if not _has_subscription_fields(plan, store_id):
                raise InvalidMetadata("Subscription metadata requires plan and storeId")
            return _build_subscription(plan, store_id)
        if declared in ORDER_TYPES:
            return _build_order(orders, shipping, lookup(meta, "deliveryFee", custom),
                                lookup(meta, "userId", custom), lookup(meta, "paymentMethod", custom))
        raise InvalidMetadata(f"Unknown payment type: {declared}")

    is_subscription = _has_subscription_fields(plan, store_id)
    is_order = _has_order_fields(orders, shipping)

    if is_subscription and is_order:
        logger.warning("metadata.ambiguous_intent", extra={"store_id": str(store_id)})
        raise InvalidMetadata("Payment metadata describes both a subscription and an order")
    if is_subscription:
        return _build_subscription(plan, store_id)
    if is_order:
        return _build_order(orders, shipping, lookup(meta, "deliveryFee", custom),
                            lookup(meta, "userId", custom), lookup(meta, "paymentMethod", custom))
    raise InvalidMetadata("Payment metadata does not describe a subscription or an order")
