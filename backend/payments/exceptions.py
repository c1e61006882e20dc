from decimal import Decimal
from typing import Any, Dict, Optional
from fastapi import status


class PaymentPipelineError(Exception):
    """
    Base for every failure the verification pipeline reports to a caller.

    `code` is the stable machine-readable error code, `retryable` tells the
    client whether polling/resubmitting the same reference can succeed later.
    """
    code: str = "PAYMENT_ERROR"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, message: str, *, reference: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.reference = reference
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable

    def to_details(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "retryable": self.retryable}
        if self.reference:
            body["reference"] = self.reference
        body.update(self.details)
        return body


class MissingReference(PaymentPipelineError):
    code = "MISSING_REFERENCE"


class RateLimited(PaymentPipelineError):
    code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    retryable = True

    def __init__(self, message: str = "Too many verification attempts", *, retry_after: int = 60, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.details.setdefault("retry_after", retry_after)


class Unauthorized(PaymentPipelineError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(PaymentPipelineError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class GatewayUnavailable(PaymentPipelineError):
    code = "GATEWAY_UNAVAILABLE"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = True


class PaymentNotSuccessful(PaymentPipelineError):
    code = "PAYMENT_NOT_SUCCESSFUL"


class InvalidMetadata(PaymentPipelineError):
    code = "INVALID_METADATA"


class StoreNotFound(PaymentPipelineError):
    code = "STORE_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ProductUnavailable(PaymentPipelineError):
    code = "PRODUCT_UNAVAILABLE"


class InsufficientStock(PaymentPipelineError):
    code = "INSUFFICIENT_STOCK"


class AmountMismatch(PaymentPipelineError):
    code = "AMOUNT_MISMATCH"

    def __init__(self, *, reference: str, paid: Decimal, expected: Decimal):
        difference = abs(Decimal(paid) - Decimal(expected))
        super().__init__(
            "Payment amount does not match order total",
            reference=reference,
            details={"paid": float(paid), "expected": float(expected), "difference": float(difference)},
        )
        self.paid = Decimal(paid)
        self.expected = Decimal(expected)
        self.difference = difference


class FulfillmentFailed(PaymentPipelineError):
    code = "FULFILLMENT_FAILED"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = True

    def __init__(self, message: str = "Order creation failed, verify again with the same reference", *,
                 reference: str, **kwargs):
        super().__init__(message, reference=reference, **kwargs)
