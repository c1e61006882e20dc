import enum
from backend.common.logging_setup import get_logger

logger = get_logger("marketplace.audit")


class AuditEvent(str, enum.Enum):
    VERIFICATION_STARTED = "verification_started"
    VERIFICATION_SUCCESS = "verification_success"
    VERIFICATION_FAILED = "verification_failed"
    AMOUNT_MISMATCH = "amount_mismatch"
    DUPLICATE_DETECTED = "duplicate_detected"
    DUPLICATE_ORDER_UPDATED = "duplicate_order_updated"
    ORDER_CREATED = "order_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    WEBHOOK_RECEIVED = "webhook_received"
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    PAYMENT_FAILED = "payment_failed"
    RATE_LIMIT_HIT = "rate_limit_hit"


# per-hour counts at which suspicious-activity reports raise an alert
ALERT_THRESHOLDS = {
    AuditEvent.AMOUNT_MISMATCH.value: 5,
    AuditEvent.RATE_LIMIT_HIT.value: 20,
    AuditEvent.VERIFICATION_FAILED.value: 10,
}

ERROR_TEXT_MAX = 1024
USER_AGENT_MAX = 512

ALERT_SEVERITY = {
    AuditEvent.AMOUNT_MISMATCH.value: "critical",
    AuditEvent.RATE_LIMIT_HIT.value: "warning",
    AuditEvent.VERIFICATION_FAILED.value: "warning",
}
