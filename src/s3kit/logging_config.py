"""Structured logging configuration for s3kit.

The client logs through ``logging.getLogger(__name__)`` in each module and
never configures handlers itself; applications (and the ``s3kit`` CLI) call
``configure_logging`` once at startup.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import IO

# Extra attributes the client attaches to request and upload log records.
EXTRA_FIELDS = (
    "method",
    "url",
    "status",
    "duration_ms",
    "request_id",
    "bucket",
    "key",
    "upload_id",
    "part_number",
)

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_SECRET_QUERY_RE = re.compile(
    r"(X-Amz-Signature|X-Amz-Credential|X-Amz-Security-Token)=[^&\s\"']+",
    re.IGNORECASE,
)


def redact(text: str) -> str:
    """Mask signature, credential, and token values in a URL or message."""
    return _SECRET_QUERY_RE.sub(r"\1=REDACTED", text)


class RedactSecretsFilter(logging.Filter):
    """Strips SigV4 query secrets from the message and the ``url`` extra."""

    def filter(self, record: logging.LogRecord) -> bool:
        url = getattr(record, "url", None)
        if url is not None:
            record.url = redact(str(url))
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Always present: timestamp (UTC, ISO 8601), level, logger, message.
    ``exception`` is added for records logged with exc_info, and each
    name in ``EXTRA_FIELDS`` is copied when the record carries it.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(
            (name, getattr(record, name))
            for name in EXTRA_FIELDS
            if getattr(record, name, None) is not None
        )
        return json.dumps(entry, default=str)


def _make_formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def configure_logging(level: str = "INFO", fmt: str = "text", stream: IO[str] | None = None) -> None:
    """Replace the root handlers with a single redacting stream handler.

    Args:
        level: Log level name; unknown names fall back to INFO.
        fmt: 'text' for human-readable lines or 'json' for JSONFormatter.
        stream: Destination stream. Defaults to stderr.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(_make_formatter(fmt))
    handler.addFilter(RedactSecretsFilter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.setLevel(numeric_level)
    root.addHandler(handler)
