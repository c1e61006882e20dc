import logging
import sys
import json
import re
from typing import Any, Dict, Optional
from logging.handlers import QueueHandler, QueueListener
from queue import Queue
from backend.config.admin_config import admin_config
from backend.common.constants import request_id_ctx

ENV = getattr(admin_config, "ENV", "dev").lower()

SENSITIVE_PATTERNS = [
    r"secret", r"secret_key", r"token", r"authorization", r"signature",
    r"api_key", r"card_number", r"cvv", r"pin", r"bvn", r"authorization_code",
]

# stdlib LogRecord attributes, everything else on the record came in through `extra`
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName", "message", "asctime",
))

# buyer/store identifiers and client ips are shortened outside dev
_MASKED_FIELDS = ("user_id", "ip_address", "owner_id")


def sanitize_message_text(msg: str) -> str:
    """Redact `key=value` and `"key": "value"` pairs whose key looks like a credential."""
    out = msg
    for p in SENSITIVE_PATTERNS:
        out = re.sub(rf'("{p}"\s*:\s*")[^"]+(")', rf'\1[REDACTED]\2', out, flags=re.IGNORECASE)
        out = re.sub(rf'(\b{p}\s*[=:]\s*)[\w\-\./+]+', rf'\1[REDACTED]', out, flags=re.IGNORECASE)
    return out


def _mask(value: Any) -> str:
    val = str(value)
    if len(val) > 12:
        return val[:6] + "..." + val[-4:]
    return val[:4] + "..."


class JSONFormatter(logging.Formatter):
    """Structured JSON formatter for staging/prod"""
    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "env": ENV,
            "service": getattr(admin_config, "SERVICE_NAME", "marketplace-payments"),
        }

        rid = request_id_ctx.get()
        if rid:
            log_data["request_id"] = rid

        extra_fields = {
            k: v for k, v in record.__dict__.items()
            if k not in _RESERVED_ATTRS and not k.startswith("_")
        }

        if ENV != "dev":
            for field in _MASKED_FIELDS:
                if extra_fields.get(field) is not None:
                    extra_fields[field] = _mask(extra_fields[field])
        log_data.update(extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if ENV != "dev":
            log_data["message"] = sanitize_message_text(log_data.get("message", ""))

        return json.dumps(log_data, default=str)


class SecurityFilter(logging.Filter):
    """Redact credential-looking text from the rendered message in non-dev envs"""

    def filter(self, record: logging.LogRecord) -> bool:
        if ENV != "dev":
            record.msg = sanitize_message_text(record.getMessage())
            record.args = ()
        return True


# Non-blocking queue-based logging. Use once at app startup.
_queue_listener: Optional[QueueListener] = None


def setup_logging():

    global _queue_listener

    if ENV in ("prod", "staging"):
        log_level = logging.INFO
    else:
        log_level = logging.DEBUG

    # lifespan can run more than once per process (tests), stop the previous listener first
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    q: Queue = Queue(-1)
    qh = QueueHandler(q)

    console_handler = logging.StreamHandler(sys.stdout)
    if ENV != "dev":
        console_handler.setFormatter(JSONFormatter())
        console_handler.addFilter(SecurityFilter())
    else:
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)8s] %(name)s:%(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    root.setLevel(log_level)
    root.addHandler(qh)

    _queue_listener = QueueListener(q, console_handler, respect_handler_level=True)
    _queue_listener.start()

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if ENV != "dev" else logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("marketplace.app")


def shutdown_logging():
    """Flush and stop the queue listener."""
    global _queue_listener
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


class ContextLogger:
    """Thin wrapper that stamps the current request id onto every record's `extra`."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _with_ctx(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        extra = dict(extra or {})
        rid = request_id_ctx.get()
        if rid:
            extra.setdefault("request_id", rid)
        return extra

    def _log(self, level: int, msg: str, *args, **kwargs):
        kwargs["extra"] = self._with_ctx(kwargs.pop("extra", None))
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_logger(name: str = "marketplace.app") -> ContextLogger:
    return ContextLogger(name)
