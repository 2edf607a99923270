"""Tests for structured logging."""

import json
import logging

from unifi_audit.logging_config import (
    AuditJsonFormatter,
    SiteLogger,
    ToolInvocationLogger,
    is_sensitive,
    redact,
)


def capture(logger_name):
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = logging.getLogger(logger_name)
    logger.handlers = [ListHandler()]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, records


class TestRedaction:
    """Tests for secret filtering."""

    def test_sensitive_keys(self):
        """Test credential-like keys are flagged."""
        assert is_sensitive("password")
        assert is_sensitive("api_token")
        assert is_sensitive("X-Session-Cookie")
        assert not is_sensitive("site_id")

    def test_issue_key_is_allowed(self):
        """Test finding identifiers are not mistaken for secrets."""
        assert not is_sensitive("issue_key")
        assert redact({"issue_key": "a|b|", "api_key": "x", "score": 3}) == {"issue_key": "a|b|", "score": 3}


class TestAuditJsonFormatter:
    """Tests for the JSON formatter."""

    def test_fields(self):
        """Test records carry level, logger and source location."""
        formatter = AuditJsonFormatter(fmt="%(timestamp)s %(level)s %(name)s %(message)s")
        record = logging.LogRecord("unifi_audit.test", logging.WARNING, "engine.py", 12, "scored %d", (87,), None)
        record.site_id = "default"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "scored 87"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "unifi_audit.test"
        assert payload["source"]["line"] == 12
        assert payload["site_id"] == "default"
        assert payload["timestamp"].endswith("+00:00")


class TestSiteLogger:
    """Tests for the per-site adapter."""

    def test_site_id_attached(self):
        """Test every record logged through the adapter names the site."""
        logger, records = capture("unifi_audit.test.site")

        SiteLogger(logger, "branch").info("audit started", extra={"phase": "collect"})

        assert records[0].site_id == "branch"
        assert records[0].phase == "collect"


class TestToolInvocationLogger:
    """Tests for tool invocation events."""

    def test_success_events(self):
        """Test a call logs start then success with its context."""
        logger, records = capture("unifi_audit.test.tool_ok")

        ToolInvocationLogger(logger).start("unifi_audit_summary", site_id="default", password="pw").success(score=87)

        assert [r.event for r in records] == ["tool_start", "tool_success"]
        assert records[1].tool_name == "unifi_audit_summary"
        assert records[1].site_id == "default"
        assert records[1].score == 87
        assert records[1].duration_ms >= 0
        assert not hasattr(records[0], "password")

    def test_failure_event(self):
        """Test a failed call logs at error level with the message."""
        logger, records = capture("unifi_audit.test.tool_fail")

        invocation = ToolInvocationLogger(logger).start("unifi_audit_dismiss_issue", issue_key="a|b|")
        invocation.failure("ledger unavailable", stdout="secret output")

        assert records[1].levelno == logging.ERROR
        assert records[1].event == "tool_failure"
        assert records[1].error == "ledger unavailable"
        assert records[1].issue_key == "a|b|"
        assert not hasattr(records[1], "stdout")
