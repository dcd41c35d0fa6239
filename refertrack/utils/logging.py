"""
Structured JSON logging for ReferTrack.

One JSON object per line. Two request-scoped values ride along on every
record without being passed explicitly:
- correlation_id: set by CorrelationIdMiddleware from X-Correlation-ID
- actor: "<role>:<user id>" of the authenticated caller, bound by the auth dependency

Referral identifiers passed through `extra=` (referral_id, contractor_id, ...)
are copied to the top level so log search can filter on them.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
actor_ctx: ContextVar[Optional[str]] = ContextVar("actor", default=None)

REFERRAL_LOG_FIELDS = (
    "referral_id",
    "referral_code",
    "contractor_id",
    "user_id",
    "provider",
    "error_code",
)

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "twilio.http_client")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """32-char hex, same shape clients may send in X-Correlation-ID."""
    return uuid.uuid4().hex


def bind_actor(role: str, user_id) -> None:
    """Tag the rest of this request's log lines with the caller."""
    actor_ctx.set(f"{role}:{user_id}")


def mask_email(email: Optional[str]) -> str:
    """Keep the first 3 chars of the local part and the whole domain."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    if not domain:
        return local[:3] + "***"
    return f"{local[:3]}***@{domain}"


class StructuredJsonFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "timestamp": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        actor = actor_ctx.get()
        if actor:
            entry["actor"] = actor

        entry.update({
            field: getattr(record, field)
            for field in REFERRAL_LOG_FIELDS
            if getattr(record, field, None) is not None
        })

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install a single stdout JSON handler on the root logger. Call once at startup."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
