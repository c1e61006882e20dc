import json
import logging
from backend.common import logging_setup
from backend.common.constants import request_id_ctx
from backend.common.logging_setup import JSONFormatter, sanitize_message_text


def _record(msg, **extra):
    record = logging.LogRecord("marketplace.payments", logging.INFO, __file__, 10, msg, (), None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_sanitize_redacts_credentials():
    out = sanitize_message_text('calling psp with secret_key=sk_live_abc123 and {"authorization": "Bearer xyz"}')

    assert "sk_live_abc123" not in out
    assert "Bearer xyz" not in out
    assert out.count("[REDACTED]") == 2


def test_json_formatter_carries_extra_fields_and_request_id():
    token = request_id_ctx.set("req-1")
    try:
        line = JSONFormatter().format(_record("payments.verify.started", reference="ref_123", mode="verify"))
    finally:
        request_id_ctx.reset(token)

    data = json.loads(line)
    assert data["message"] == "payments.verify.started"
    assert data["reference"] == "ref_123"
    assert data["mode"] == "verify"
    assert data["request_id"] == "req-1"


def test_json_formatter_masks_identifiers_outside_dev(monkeypatch):
    monkeypatch.setattr(logging_setup, "ENV", "prod")

    data = json.loads(JSONFormatter().format(
        _record("token=abcdef0123 seen", user_id="user-000000000042", ip_address="203.0.113.9")))

    assert data["user_id"] == "user-0...0042"
    assert data["ip_address"] == "203.0.113.9"[:4] + "..."
    assert "abcdef0123" not in data["message"]
