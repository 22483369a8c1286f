"""Tests for logging setup and redaction."""

import io
import logging

from mcp_status.log import (
    LOGGER_NAME,
    configure_logging,
    is_sensitive_key,
    redact_args,
    redact_mapping,
)


class TestRedaction:
    """Tests for sensitive value redaction."""

    def test_detects_sensitive_keys(self):
        """Should flag credential-like key names case-insensitively."""
        for key in ("PASSWORD", "client_secret", "API_KEY", "apiKey", "Authorization", "TOKEN"):
            assert is_sensitive_key(key), key
        assert not is_sensitive_key("LOG_LEVEL")

    def test_redacts_nested_mappings(self):
        """Should redact inside nested mappings and keep other values."""
        result = redact_mapping({"env": {"DB_PASSWORD": "p", "PORT": "5432"}, "url": "u"})

        assert result == {"env": {"DB_PASSWORD": "[REDACTED]", "PORT": "5432"}, "url": "u"}

    def test_none_is_empty(self):
        """Should treat None as an empty mapping."""
        assert redact_mapping(None) == {}

    def test_redacts_flag_values(self):
        """Should hide the value after a sensitive flag in either form."""
        args = ["server.js", "--api-key", "k-123", "--token=t-456", "--port", "8080"]

        assert redact_args(args) == [
            "server.js",
            "--api-key",
            "[REDACTED]",
            "--token=[REDACTED]",
            "--port",
            "8080",
        ]

    def test_args_without_secrets_unchanged(self):
        """Should keep positional arguments and ordinary flags."""
        assert redact_args(["-y", "@scope/server", "/tmp/data"]) == [
            "-y",
            "@scope/server",
            "/tmp/data",
        ]
        assert redact_args(None) == []


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_writes_prefixed_records(self):
        """Should format records with the package prefix and level."""
        stream = io.StringIO()
        configure_logging(stream=stream)

        logging.getLogger(f"{LOGGER_NAME}.test").info("hello")

        assert stream.getvalue() == "[McpStatus] [INFO] hello\n"

    def test_debug_level(self):
        """Should emit debug records only in debug mode."""
        stream = io.StringIO()
        configure_logging(debug=False, stream=stream)
        logging.getLogger(LOGGER_NAME).debug("hidden")
        assert stream.getvalue() == ""

        configure_logging(debug=True, stream=stream)
        logging.getLogger(LOGGER_NAME).debug("shown")
        assert "[DEBUG] shown" in stream.getvalue()

    def test_replaces_previous_handler(self):
        """Should not duplicate output when called twice."""
        stream = io.StringIO()
        configure_logging(stream=stream)
        logger = configure_logging(stream=stream)

        assert len(logger.handlers) == 1
