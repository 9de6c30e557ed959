"""
Tests for logging infrastructure.
"""

import json
import logging
import sys

import pytest

from sbexplorer.core.logging_config import (
    REDACTED,
    JSONFormatter,
    SensitiveDataFilter,
    _parse_size,
    clear_correlation_id,
    set_correlation_id,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Put the root logger back the way the test runner configured it."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
    clear_correlation_id()


def _record(message, *args, **extra):
    record = logging.LogRecord("sbexplorer.test", logging.INFO, __file__, 1, message, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLoggingSetup:
    """Test suite for logging setup."""

    def test_setup_logging_defaults(self):
        """Test setting up logging with defaults."""
        setup_logging()

        root_logger = logging.getLogger()
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)

    def test_setup_logging_with_level(self):
        """Test setting up logging with custom level."""
        setup_logging(level="debug", format_type="text")

        root_logger = logging.getLogger()
        assert root_logger.level == logging.DEBUG
        assert not isinstance(root_logger.handlers[0].formatter, JSONFormatter)

    def test_setup_logging_with_file(self, tmp_path):
        """Test file output is written, redacted and rotated."""
        log_file = tmp_path / "logs" / "explorer.log"
        setup_logging(log_file=str(log_file), rotation_size="1KB")

        logging.getLogger("sbexplorer.test").info(
            "Connecting with Endpoint=sb://x/;SharedAccessKey=abc123;EntityPath=q"
        )
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = log_file.read_text()
        assert "Connecting with" in content
        assert "abc123" not in content
        file_handler = logging.getLogger().handlers[1]
        assert file_handler.maxBytes == 1024

    def test_module_levels(self):
        """Test per-module levels are applied."""
        setup_logging(module_levels={"azure": "WARNING"})
        assert logging.getLogger("azure").level == logging.WARNING
        logging.getLogger("azure").setLevel(logging.NOTSET)


class TestSensitiveDataFilter:
    """Test redaction of key material."""

    @pytest.mark.parametrize("text,secret", [
        ("Endpoint=sb://ns/;SharedAccessKeyName=root;SharedAccessKey=c2VjcmV0=", "c2VjcmV0="),
        ("Authorization: SharedAccessSignature sr=x&sig=abc%3D&se=1&skn=root", "abc%3D"),
        ("token sr=https%3A%2F%2Fns&sig=S1gnature%2B&se=1700000000", "S1gnature%2B"),
        ("SharedAccessSignature=sv-token;Endpoint=sb://ns/", "sv-token"),
    ])
    def test_secrets_redacted(self, text, secret):
        """Test keys, signatures and headers never reach the output."""
        redacted = SensitiveDataFilter.redact(text)
        assert secret not in redacted
        assert REDACTED in redacted

    def test_key_name_kept(self):
        """Test the non-secret key name stays readable."""
        redacted = SensitiveDataFilter.redact("SharedAccessKeyName=root;SharedAccessKey=secret")
        assert "SharedAccessKeyName=root" in redacted

    def test_args_merged_before_redaction(self):
        """Test secrets passed as format arguments are redacted too."""
        record = _record("Using %s", "SharedAccessKey=secret-value")

        assert SensitiveDataFilter().filter(record) is True
        assert "secret-value" not in record.getMessage()
        assert record.args is None


class TestJSONFormatter:
    """Test JSON log output."""

    def test_fields(self):
        """Test the JSON document carries level, module, message and context."""
        clear_correlation_id()
        record = _record("Listed queues", context={"operation": "list_queues", "count": 2})

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["module"] == "sbexplorer.test"
        assert data["message"] == "Listed queues"
        assert data["context"] == {"operation": "list_queues", "count": 2}
        assert "correlation_id" not in data

    def test_correlation_id(self):
        """Test the current correlation id is attached."""
        set_correlation_id("req-42")
        data = json.loads(JSONFormatter().format(_record("hello")))
        assert data["correlation_id"] == "req-42"

    def test_exception(self):
        """Test exception tracebacks are included."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "sbexplorer.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


class TestParseSize:
    """Test rotation size parsing."""

    @pytest.mark.parametrize("size,expected", [
        ("10MB", 10 * 1024 ** 2),
        ("1gb", 1024 ** 3),
        ("512KB", 512 * 1024),
        ("100B", 100),
        ("2048", 2048),
        ("1.5MB", int(1.5 * 1024 ** 2)),
    ])
    def test_parse(self, size, expected):
        """Test supported suffixes."""
        assert _parse_size(size) == expected
