"""
Structured logging with correlation IDs.

A request's correlation ID is set by middleware, stored on the queued job and
restored (correlation_scope) while a worker processes that job, so the ingest
line and the processing lines of one webhook share an ID.

LOG_FORMAT=json (default) emits one JSON object per line; LOG_FORMAT=text is a
readable single line for local development.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes copied from `extra=` onto the JSON line
EXTRA_FIELDS = (
    "endpoint",
    "job_id",
    "webhook_id",
    "idempotency_key",
    "client_ip",
    "key_version",
    "signature_preview",
    "worker_id",
)

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "aiosqlite")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: Optional[str]) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


@contextmanager
def correlation_scope(cid: Optional[str]) -> Iterator[Optional[str]]:
    """Run a block under `cid`, restoring the previous ID afterwards."""
    token = correlation_id_ctx.set(cid)
    try:
        yield cid
    finally:
        correlation_id_ctx.reset(token)


def redact(value: Optional[str], visible: int = 8) -> str:
    """Preview of a sensitive value: first few characters then '...'."""
    if not value:
        return ""
    return value[:visible] + "..."


class StructuredJsonFormatter(logging.Formatter):
    """
    {"timestamp": "...", "level": "INFO", "service": "hookgate", "correlation_id": "...",
     "module": "...", "message": "...", <extra fields>}
    """

    def __init__(self, service: str = "hookgate"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%S.%fZ"
            ),
            "level": record.levelname,
            "service": self.service,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PlainFormatter(logging.Formatter):
    """`12:00:01 WARNING [3f2a9c1e] hookgate.api.webhooks: message endpoint=netbanx`"""

    def __init__(self):
        super().__init__(datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        cid = get_correlation_id()
        fields = " ".join(
            f"{key}={getattr(record, key)}" for key in EXTRA_FIELDS if getattr(record, key, None) is not None
        )
        line = "%s %s [%s] %s: %s" % (
            self.formatTime(record, self.datefmt),
            record.levelname,
            cid[:8] if cid else "-",
            record.name,
            record.getMessage(),
        )
        if fields:
            line = f"{line} {fields}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_structured_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Install a single stdout handler on the root logger.
    Call once at application startup before any log calls.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(PlainFormatter() if log_format == "text" else StructuredJsonFormatter())
    root_logger.addHandler(handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
