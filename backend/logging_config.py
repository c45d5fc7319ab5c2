"""Structured JSON logging configuration with PHI redaction.

When DEBUG=true, logs in human-readable format for local development.
When DEBUG=false, logs as single-line JSON for production log aggregators.

Every handler carries a ``PHIRedactionFilter`` so protected fields passed via
``extra=`` never reach a log sink in the clear.
"""

import json
import logging
import sys
from collections.abc import Mapping
from datetime import datetime, timezone

from config import get_settings
from services.phi_records import ENTITY_FIELD_MANIFESTS

PHI_LOG_KEYS = frozenset(
    {field for fields in ENTITY_FIELD_MANIFESTS.values() for field in fields}
    | {"dob", "member_id", "ssn", "social_security_number", "patient_name"}
)

REDACTED = "[REDACTED]"
MAX_REDACTION_DEPTH = 5

# Attributes every LogRecord has; anything else came in through ``extra=``
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def redact_value(key: str, value):
    if key not in PHI_LOG_KEYS:
        return value
    if isinstance(value, str) and len(value) > 2:
        return f"{value[0]}***{value[-1]}"
    return REDACTED


def redact(data, depth: int = 0):
    """Return a copy of ``data`` with PHI keys masked, walking nested containers."""
    if depth > MAX_REDACTION_DEPTH or data is None:
        return data
    if isinstance(data, (list, tuple)):
        return type(data)(redact(item, depth + 1) for item in data)
    if not isinstance(data, Mapping):
        return data

    redacted = {}
    for key, value in data.items():
        if isinstance(value, (Mapping, list, tuple)) and key not in PHI_LOG_KEYS:
            redacted[key] = redact(value, depth + 1)
        else:
            redacted[key] = redact_value(key, value)
    return redacted


def extra_fields(record: logging.LogRecord) -> dict:
    return {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}


class PHIRedactionFilter(logging.Filter):
    """Mask PHI in ``extra=`` fields and mapping-style message args."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in extra_fields(record).items():
            setattr(record, key, redact({key: value})[key])
        if isinstance(record.args, Mapping):
            record.args = redact(record.args)
        return True


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        for key, value in extra_fields(record).items():
            payload.setdefault(key, value)

        return json.dumps(payload, default=str)


def setup_logging() -> None:
    """Configure root logger based on the DEBUG setting."""
    settings = get_settings()

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)

    # Remove any pre-existing handlers
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(PHIRedactionFilter())

    if settings.debug:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    else:
        handler.setFormatter(JSONFormatter())

    root.addHandler(handler)
