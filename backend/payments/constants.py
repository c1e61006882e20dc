from decimal import Decimal
from typing import Dict, Optional
from backend.common.logging_setup import get_logger
from backend.config.settings import config_settings
from backend.schema.full_schema import SubscriptionPlan

logger = get_logger("marketplace.payments")

MINOR_UNIT_FACTOR = config_settings.CURRENCY_MINOR_UNIT_FACTOR
# paid-vs-expected slack, configured in minor units (1 kobo by default)
AMOUNT_TOLERANCE = Decimal(config_settings.AMOUNT_TOLERANCE_MINOR) / Decimal(MINOR_UNIT_FACTOR)
MONEY_QUANT = Decimal("0.01")

FULFILLMENT_TIMEOUT_SECONDS = config_settings.FULFILLMENT_TIMEOUT_SECONDS
ORDER_NUMBER_MAX_ATTEMPTS = config_settings.ORDER_NUMBER_MAX_ATTEMPTS
ORDER_NUMBER_PREFIX = "ORD"

# None means no cap on active products
PLAN_PRODUCT_LIMITS: Dict[str, Optional[int]] = {
    SubscriptionPlan.FREE.value: 10,
    SubscriptionPlan.BASIC.value: 20,
    SubscriptionPlan.STANDARD.value: 50,
    SubscriptionPlan.PREMIUM.value: None,
}

# gateway channel -> stored payment method
CHANNEL_PAYMENT_METHODS = {
    "card": "card",
    "bank": "bank_transfer",
    "bank_transfer": "bank_transfer",
    "ussd": "ussd",
    "qr": "qr",
    "mobile_money": "mobile_money",
    "transfer": "transfer",
}
DEFAULT_PAYMENT_METHOD = "card"

PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"
