from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import quote
import httpx
from backend.common.circuit_breaker import CircuitOpenError, gateway_circuit
from backend.config.settings import config_settings
from backend.payments.constants import MINOR_UNIT_FACTOR, logger
from backend.payments.exceptions import GatewayUnavailable, PaymentNotSuccessful
from backend.payments.models import GatewayTransaction

PSP_API_BASE = config_settings.PAYSTACK_BASE_URL.rstrip("/")
PSP_SECRET_KEY = config_settings.PAYSTACK_SECRET_KEY
GATEWAY_TIMEOUT_SECONDS = config_settings.GATEWAY_TIMEOUT_SECONDS

TRANSIENT_EXCEPTIONS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


def _parse_paid_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_major(minor: Any) -> Decimal:
    return Decimal(int(minor)) / Decimal(MINOR_UNIT_FACTOR)


def parse_transaction(reference: str, body: Dict[str, Any]) -> GatewayTransaction:
    """Map a verify-transaction response body; anything structurally off is GatewayUnavailable."""
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict) or "status" not in data:
        raise GatewayUnavailable("Malformed response from payment processor", reference=reference)

    try:
        amount_minor = int(data.get("amount") or 0)
        fees = _to_major(data.get("fees") or 0)
    except (TypeError, ValueError, InvalidOperation):
        raise GatewayUnavailable("Malformed amount in payment processor response", reference=reference)

    return GatewayTransaction(
        reference=str(data.get("reference") or reference),
        status=str(data.get("status")),
        amount=_to_major(amount_minor),
        amount_minor=amount_minor,
        currency=str(data.get("currency") or "NGN"),
        channel=data.get("channel"),
        fees=fees,
        paid_at=_parse_paid_at(data.get("paid_at") or data.get("paidAt")),
        transaction_id=str(data["id"]) if data.get("id") is not None else None,
        raw_metadata=data.get("metadata"),
    )


async def fetch_transaction(reference: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> GatewayTransaction:
    """
    GET /transaction/verify/{reference} with the secret key.

    Transport errors, timeouts, non-2xx and unparseable bodies all surface as
    GatewayUnavailable. No automatic retry here, the caller decides.
    """
    try:
        await gateway_circuit.before_call()
    except CircuitOpenError:
        logger.warning("gateway.circuit_open", extra={"reference": reference})
        raise GatewayUnavailable("Payment processor temporarily unavailable", reference=reference)

    url = f"{PSP_API_BASE}/transaction/verify/{quote(reference, safe='')}"
    headers = {"Authorization": f"Bearer {PSP_SECRET_KEY}", "Accept": "application/json"}

    success = False
    try:
        async with httpx.AsyncClient(timeout=GATEWAY_TIMEOUT_SECONDS, transport=transport) as client:
            resp = await client.get(url, headers=headers)
        if resp.status_code >= 500:
            raise GatewayUnavailable("Payment processor error", reference=reference,
                                     details={"gateway_status": resp.status_code})
        try:
            body = resp.json()
        except ValueError:
            raise GatewayUnavailable("Malformed response from payment processor", reference=reference)
        # the processor answered, only 5xx/transport failures count against the breaker
        success = True

        if resp.status_code >= 400:
            raise GatewayUnavailable(
                str(body.get("message") or "Payment processor rejected the verification request")
                if isinstance(body, dict) else "Payment processor rejected the verification request",
                reference=reference,
                details={"gateway_status": resp.status_code},
            )
        return parse_transaction(reference, body)
    except TRANSIENT_EXCEPTIONS as exc:
        logger.warning("gateway.transport_error", extra={"reference": reference, "error": repr(exc)})
        raise GatewayUnavailable("Payment processor unreachable", reference=reference)
    finally:
        await gateway_circuit.after_call(success)


async def verify_transaction(reference: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> GatewayTransaction:
    """Fetch the transaction and insist it settled successfully."""
    txn = await fetch_transaction(reference, transport=transport)
    logger.info("gateway.transaction_fetched", extra={
        "reference": reference, "gateway_status": txn.status, "amount": str(txn.amount), "channel": txn.channel,
    })
    if txn.status != "success":
        raise PaymentNotSuccessful(f"Payment not successful (status: {txn.status})", reference=reference,
                                   details={"gateway_status": txn.status})
    return txn
