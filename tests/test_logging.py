"""Tests for privacy-safe logging functionality."""

import logging
import os
import pytest

from commandinator.logging import (
    anonymize_id,
    anonymize_phone,
    PrivacyFilter,
    setup_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo setup_logging changes to the root logger."""
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg):
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestAnonymizeId:
    """Tests for identifier anonymization."""

    def test_anonymize_id_normal(self):
        """Test anonymizing a normal UUID."""
        uuid = "a1b2c3d4-e5f6-7890-abcd-ef1234567890"
        result = anonymize_id(uuid)

        assert result == "a1b2..."
        assert uuid not in result

    def test_anonymize_id_empty(self):
        """Test anonymizing empty string."""
        assert anonymize_id("") == "none"
        assert anonymize_id(None) == "none"

    def test_anonymize_id_short(self):
        """Test anonymizing short string."""
        assert anonymize_id("ab") == "ab..."


class TestAnonymizePhone:
    """Tests for phone number anonymization."""

    def test_anonymize_phone_normal(self):
        """Test anonymizing a normal phone number."""
        result = anonymize_phone("+14155551234")

        assert result == "***1234"
        assert "4155" not in result

    def test_anonymize_phone_without_plus(self):
        """Test anonymizing phone without country code prefix."""
        assert anonymize_phone("14155551234") == "***1234"

    def test_anonymize_phone_short(self):
        """Test anonymizing short number."""
        assert anonymize_phone("123") == "***"

    def test_anonymize_phone_empty(self):
        """Test anonymizing empty phone."""
        assert anonymize_phone("") == "none"
        assert anonymize_phone(None) == "none"


class TestPrivacyFilter:
    """Tests for the PrivacyFilter logging filter."""

    def test_filter_redacts_uuid(self):
        """Test that UUIDs are redacted in log messages."""
        record = _record("User a1b2c3d4-e5f6-7890-abcd-ef1234567890 logged in")

        PrivacyFilter(sensitive_logging=False).filter(record)

        assert "a1b2c3d4-e5f6-7890-abcd-ef1234567890" not in record.msg
        assert "a1b2..." in record.msg

    def test_filter_redacts_mention_markup(self):
        """Test that UUIDs inside mention markup are redacted."""
        record = _record("Await armed for <@a1b2c3d4-e5f6-7890-abcd-ef1234567890>")

        PrivacyFilter(sensitive_logging=False).filter(record)

        assert record.msg == "Await armed for <@a1b2...>"

    def test_filter_redacts_phone(self):
        """Test that phone numbers are redacted in log messages."""
        record = _record("Message from +14155551234")

        PrivacyFilter(sensitive_logging=False).filter(record)

        assert "+14155551234" not in record.msg
        assert "***1234" in record.msg

    def test_filter_respects_sensitive_logging(self):
        """Test that sensitive_logging=True preserves full data."""
        uuid = "a1b2c3d4-e5f6-7890-abcd-ef1234567890"
        record = _record(f"User {uuid} logged in")

        PrivacyFilter(sensitive_logging=True).filter(record)

        assert uuid in record.msg

    def test_filter_non_string_message(self):
        """Test filter handles non-string messages."""
        record = _record(12345)

        assert PrivacyFilter(sensitive_logging=False).filter(record) is True


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_default(self, clean_env):
        """Test setup with default settings."""
        setup_logging()
        root = logging.getLogger()

        assert root.level == logging.INFO
        assert any(isinstance(f, PrivacyFilter) for h in root.handlers for f in h.filters)

    def test_setup_logging_custom_level(self, clean_env):
        """Test setup with custom log level."""
        setup_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_from_env(self, clean_env):
        """Test setup reads from environment variables."""
        os.environ["LOG_LEVEL"] = "WARNING"
        os.environ["LOG_SENSITIVE"] = "true"

        setup_logging()
        root = logging.getLogger()

        assert root.level == logging.WARNING
        filters = [f for h in root.handlers for f in h.filters if isinstance(f, PrivacyFilter)]
        assert filters[0].sensitive_logging is True

    def test_setup_logging_quiets_http_libraries(self, clean_env):
        """Test that noisy libraries are raised to WARNING."""
        setup_logging(level="DEBUG")

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("sseclient").level == logging.WARNING


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_returns_logger(self):
        """Test that get_logger returns a logger."""
        logger = get_logger("test.module")

        assert isinstance(logger, logging.Logger)
        assert logger.name == "test.module"

    def test_get_logger_same_name_same_instance(self):
        """Test that same name returns same logger instance."""
        assert get_logger("test.same") is get_logger("test.same")
