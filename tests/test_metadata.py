import json
from decimal import Decimal
import pytest
from backend.payments.exceptions import InvalidMetadata
from backend.payments.metadata import extract_intent, lookup
from backend.payments.models import OrderIntent, SubscriptionIntent
from tests.factories import SHIPPING, order_metadata, subscription_metadata


def test_subscription_intent_from_direct_fields():
    intent = extract_intent(subscription_metadata(7, plan="Basic"))
    assert intent == SubscriptionIntent(store_id=7, plan="basic")


def test_subscription_intent_without_type_field():
    intent = extract_intent({"plan": "premium", "storeId": "7"})
    assert isinstance(intent, SubscriptionIntent)
    assert intent.plan == "premium"


def test_order_intent_from_json_string_metadata():
    meta = order_metadata([(1, [(10, 2)])], delivery_fee=200, user_id="buyer-9")
    intent = extract_intent(json.dumps(meta))

    assert isinstance(intent, OrderIntent)
    assert intent.delivery_fee == Decimal("200")
    assert intent.user_id == "buyer-9"
    assert intent.cart_groups[0].items[0].quantity == 2
    assert intent.shipping_info.email == SHIPPING["email"]


def test_order_intent_from_custom_fields():
    meta = {
        "custom_fields": [
            {"display_name": "Orders", "variable_name": "orders",
             "value": json.dumps([{"storeId": 1, "items": [{"productId": 3, "quantity": 1}]}])},
            {"display_name": "Shipping", "variable_name": "shippingInfo", "value": json.dumps(SHIPPING)},
            {"display_name": "Delivery", "variable_name": "deliveryFee", "value": "150"},
        ]
    }
    intent = extract_intent(meta)

    assert isinstance(intent, OrderIntent)
    assert intent.delivery_fee == Decimal("150")
    assert intent.cart_groups[0].storeId == 1


def test_direct_field_wins_over_custom_field():
    meta = {"plan": "standard", "custom_fields": [{"variable_name": "plan", "value": "basic"}]}
    assert lookup(meta, "plan") == "standard"


def test_both_intents_is_ambiguous():
    meta = order_metadata([(1, [(10, 1)])])
    meta.update({"plan": "basic", "storeId": 1})
    with pytest.raises(InvalidMetadata):
        extract_intent(meta)


@pytest.mark.parametrize("raw", [None, "", {}, {"foo": "bar"}, "not-json", [1, 2]])
def test_no_intent_is_invalid(raw):
    with pytest.raises(InvalidMetadata):
        extract_intent(raw)


def test_declared_type_selects_branch_even_when_both_present():
    meta = order_metadata([(1, [(10, 1)])], type="order")
    meta.update({"plan": "basic", "storeId": 1})
    assert isinstance(extract_intent(meta), OrderIntent)


def test_unknown_declared_type():
    with pytest.raises(InvalidMetadata):
        extract_intent({"type": "donation", "plan": "basic", "storeId": 1})


def test_unknown_plan():
    with pytest.raises(InvalidMetadata):
        extract_intent(subscription_metadata(1, plan="platinum"))


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "abc"])
def test_bad_quantities_rejected(quantity):
    meta = order_metadata([(1, [(10, 1)])])
    meta["orders"][0]["items"][0]["quantity"] = quantity
    with pytest.raises(InvalidMetadata):
        extract_intent(meta)


def test_negative_delivery_fee_rejected():
    with pytest.raises(InvalidMetadata):
        extract_intent(order_metadata([(1, [(10, 1)])], delivery_fee=-50))


def test_empty_store_group_rejected():
    meta = order_metadata([(1, [])])
    with pytest.raises(InvalidMetadata):
        extract_intent(meta)


def test_client_price_fields_are_ignored():
    meta = order_metadata([(1, [(10, 1)])])
    meta["orders"][0]["items"][0]["price"] = 1
    intent = extract_intent(meta)
    assert not hasattr(intent.cart_groups[0].items[0], "price")
