import base64
import hashlib
import hmac
import secrets
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional, Union
from sqlalchemy import text
from backend.common.utils import iso, now
from backend.payments.constants import CHANNEL_PAYMENT_METHODS, DEFAULT_PAYMENT_METHOD, MONEY_QUANT, ORDER_NUMBER_PREFIX
from backend.payments.models import GatewayTransaction


def parse_entity_key(value: Any) -> Optional[Union[int, uuid.UUID]]:
    """Stores/products are addressed by integer id or by public uuid."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        s = value.strip()
        if s.isdigit():
            return int(s) if int(s) > 0 else None
        try:
            return uuid.UUID(s)
        except ValueError:
            return None
    return None


def quantize(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(MONEY_QUANT)


def generate_order_number() -> str:
    """ORD-<yymmdd>-<8 base32 chars>; 40 random bits per day keeps collisions rare, the unique index catches the rest."""
    suffix = base64.b32encode(secrets.token_bytes(5)).decode("ascii")
    return f"{ORDER_NUMBER_PREFIX}-{now():%y%m%d}-{suffix}"


def payment_method_for_channel(channel: Optional[str], fallback: Optional[str] = None) -> str:
    if channel and channel.lower() in CHANNEL_PAYMENT_METHODS:
        return CHANNEL_PAYMENT_METHODS[channel.lower()]
    if fallback and fallback.lower() in CHANNEL_PAYMENT_METHODS:
        return CHANNEL_PAYMENT_METHODS[fallback.lower()]
    return DEFAULT_PAYMENT_METHOD


def payment_details(txn: GatewayTransaction) -> Dict[str, Any]:
    return {
        "transactionId": txn.transaction_id,
        "reference": txn.reference,
        "amount": float(txn.amount),
        "currency": txn.currency,
        "channel": txn.channel,
        "fees": float(txn.fees),
        "paidAt": iso(txn.paid_at),
    }


def idempotency_lock_key(ikey: str) -> int:
    h = hashlib.sha256(ikey.encode()).digest()[:8]
    val = int.from_bytes(h, "big", signed=False)
    # convert to signed 64-bit
    if val > (1 << 63) - 1:
        val = val - (1 << 64)
    return val


async def acquire_pglock(session, lock_key: int):
    """Blocking transaction-scoped advisory lock; released on commit/rollback."""
    await session.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": lock_key})


def verify_paystack_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)
