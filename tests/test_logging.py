"""Tests for Courier structured logging."""

import logging

import structlog

from courier.logging import (
    REDACTED_KEYS,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    redact_secrets,
    unbind_context,
)


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_with_defaults(self):
        """Should configure with INFO level and JSON format by default."""
        configure_logging()
        logger = get_logger("test")
        # Should not raise
        logger.info("test message")

    def test_configure_with_text_format(self):
        """Should accept text format for development."""
        configure_logging(level="DEBUG", format="text")
        logger = get_logger("test")
        logger.debug("text format message")

    def test_configure_multiple_times(self):
        """Should handle multiple configuration calls."""
        configure_logging(level="INFO")
        configure_logging(level="WARNING")
        get_logger("test").warning("after reconfigure")

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="LOUD")
        get_logger("test").info("still logs")


class TestGetLogger:
    """Tests for logger creation."""

    def test_get_logger_with_name(self):
        assert get_logger("courier.webhooks") is not None

    def test_loggers_are_callable(self):
        """Should return callable logger instances."""
        logger = get_logger("test")
        # structlog returns a lazy proxy that becomes a BoundLogger when used
        assert callable(getattr(logger, "info", None))
        assert callable(getattr(logger, "exception", None))

    def test_bound_logger_keeps_fields(self):
        """bind() carries delivery fields onto every message."""
        configure_logging()
        log = get_logger("test").bind(delivery_id="dlv_1", business_id="biz_1")
        log.info("Webhook delivered", response_code=200)


class TestContextBinding:
    """Tests for context variable binding."""

    def setup_method(self):
        """Clear context before each test."""
        clear_context()

    def teardown_method(self):
        """Clear context after each test."""
        clear_context()

    def test_bind_context(self):
        bind_context(component="retry-scheduler", business_id="biz_1")
        assert structlog.contextvars.get_contextvars() == {
            "component": "retry-scheduler",
            "business_id": "biz_1",
        }

    def test_clear_context(self):
        bind_context(component="retry-scheduler")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_unbind_specific_context(self):
        bind_context(component="retry-scheduler", temp="value")
        unbind_context("temp")
        assert structlog.contextvars.get_contextvars() == {"component": "retry-scheduler"}


class TestModuleLevelLogger:
    """Tests for the pre-configured module-level logger."""

    def test_import_logger(self):
        from courier.logging import logger

        assert logger is not None
        logger.info("using module logger")


class TestRedaction:
    """Secrets passed as log fields are masked."""

    def test_redacts_secret_fields(self):
        event = {"event": "Subscription flagged", "secret": "abc123", "signature": "deadbeef"}
        result = redact_secrets(None, "info", event)
        assert result["secret"] == "***"
        assert result["signature"] == "***"
        assert result["event"] == "Subscription flagged"

    def test_leaves_other_fields(self):
        event = {"event": "Webhook delivered", "delivery_id": "dlv_1", "response_code": 200}
        assert redact_secrets(None, "info", dict(event)) == event

    def test_redacted_keys(self):
        assert {"secret", "signature", "authorization"} <= REDACTED_KEYS


class TestTransportLoggers:
    """httpx request lines are only shown at DEBUG."""

    def test_quiet_at_info(self):
        configure_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_verbose_at_debug(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.DEBUG

    def test_follow_stricter_levels(self):
        configure_logging(level="ERROR")
        assert logging.getLogger("httpx").level == logging.ERROR
        configure_logging(level="INFO")
