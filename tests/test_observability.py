"""Tests for s3kit logging configuration and Prometheus metrics.

Tests cover:
- JSONFormatter output fields and request extras
- configure_logging handler and level setup
- Redaction of signature, credential, and token query values
- init_metrics idempotency and the record_* helpers
- Metrics recorded by client requests
"""

import io
import json
import logging
import sys

import pytest
from conftest import BUCKET
from prometheus_client import REGISTRY

from s3kit import metrics
from s3kit.logging_config import JSONFormatter, configure_logging, redact


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


# ---- Logging ----


class TestJSONFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="s3kit.client",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="%s %s -> %d",
            args=("GET", "/test-bucket", 200),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_base_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "s3kit.client"
        assert entry["message"] == "GET /test-bucket -> 200"
        assert entry["timestamp"].endswith("+00:00")

    def test_request_extras(self):
        record = self._record(method="GET", status=200, duration_ms=12.5, request_id="REQ1")
        entry = json.loads(JSONFormatter().format(record))
        assert entry["method"] == "GET"
        assert entry["status"] == 200
        assert entry["duration_ms"] == 12.5
        assert entry["request_id"] == "REQ1"
        assert "upload_id" not in entry

    def test_unknown_extras_ignored(self):
        entry = json.loads(JSONFormatter().format(self._record(colour="blue")))
        assert "colour" not in entry

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = self._record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


class TestConfigureLogging:
    def test_json(self, restore_root_logger):
        configure_logging(level="DEBUG", fmt="json")
        (handler,) = restore_root_logger.handlers
        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(handler.formatter, JSONFormatter)

    def test_text(self, restore_root_logger):
        configure_logging(level="warning", fmt="text")
        (handler,) = restore_root_logger.handlers
        assert restore_root_logger.level == logging.WARNING
        assert not isinstance(handler.formatter, JSONFormatter)

    def test_unknown_level_defaults_to_info(self, restore_root_logger):
        configure_logging(level="CHATTY")
        assert restore_root_logger.level == logging.INFO

    def test_json_line_written(self, restore_root_logger):
        stream = io.StringIO()
        configure_logging(fmt="json", stream=stream)
        logging.getLogger("s3kit.test").info("hello", extra={"bucket": BUCKET})
        entry = json.loads(stream.getvalue())
        assert entry["message"] == "hello"
        assert entry["bucket"] == BUCKET

    def test_secrets_redacted(self, restore_root_logger):
        stream = io.StringIO()
        configure_logging(fmt="json", stream=stream)
        url = (
            "http://localhost:9000/test-bucket/a.txt?X-Amz-Credential=minio%2F20260301%2Fus-east-1"
            "&X-Amz-Security-Token=TOKEN&X-Amz-Signature=abc123"
        )
        logging.getLogger("s3kit.test").warning("GET %s failed", url, extra={"url": url})

        output = stream.getvalue()
        assert "abc123" not in output
        assert "TOKEN" not in output
        assert "minio%2F" not in output
        entry = json.loads(output)
        assert "X-Amz-Signature=REDACTED" in entry["message"]
        assert entry["url"].startswith("http://localhost:9000/test-bucket/a.txt?")


class TestRedact:
    def test_masks_query_values(self):
        assert redact("a?X-Amz-Signature=ff00&x-id=1") == "a?X-Amz-Signature=REDACTED&x-id=1"

    def test_leaves_other_text(self):
        assert redact("PUT /test-bucket/a.txt -> 200") == "PUT /test-bucket/a.txt -> 200"


# ---- Metrics ----


class TestMetrics:
    def test_init_is_idempotent(self):
        metrics.init_metrics()
        counter = metrics.requests_total
        metrics.init_metrics()
        assert metrics.requests_total is counter
        assert metrics._initialized is True

    def test_record_request(self):
        metrics.init_metrics()
        labels = {"method": "PUT", "status": "200"}
        before = _sample("s3kit_requests_total", labels)
        before_bytes = _sample("s3kit_bytes_sent_total")

        metrics.record_request("PUT", 200, 0.05, bytes_sent=1024)

        assert _sample("s3kit_requests_total", labels) == before + 1
        assert _sample("s3kit_bytes_sent_total") == before_bytes + 1024

    def test_record_part(self):
        metrics.init_metrics()
        uploaded = _sample("s3kit_parts_uploaded_total")
        skipped = _sample("s3kit_parts_skipped_total")

        metrics.record_part(skipped=False)
        metrics.record_part(skipped=True)
        metrics.record_part(skipped=True)

        assert _sample("s3kit_parts_uploaded_total") == uploaded + 1
        assert _sample("s3kit_parts_skipped_total") == skipped + 2

    async def test_client_requests_recorded(self, client):
        metrics.init_metrics()
        labels = {"method": "HEAD", "status": "200"}
        before = _sample("s3kit_requests_total", labels)

        assert await client.bucket_exists(BUCKET) is True

        assert _sample("s3kit_requests_total", labels) == before + 1
