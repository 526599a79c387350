"""Tests for the structlog processor chain."""

import structlog

from sitescan.core.logging import add_severity, build_processors


class TestProcessors:

    def test_json_chain_renders_last(self):
        processors = build_processors("json")
        assert processors[0] is structlog.contextvars.merge_contextvars
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_chain(self):
        processors = build_processors("console")
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert structlog.processors.format_exc_info not in processors

    def test_json_output_carries_run_context_and_severity(self):
        processors = build_processors("json")
        structlog.contextvars.bind_contextvars(analysis_id="run-1")
        try:
            event = {"event": "Crawl started"}
            for processor in processors[:-1]:
                event = processor(None, "warning", event)
        finally:
            structlog.contextvars.clear_contextvars()

        assert event["analysis_id"] == "run-1"
        assert event["severity"] == "WARNING"
        assert event["level"] == "warning"
        assert "timestamp" in event


class TestSeverity:

    def test_levels_upper_cased(self):
        assert add_severity(None, "error", {})["severity"] == "ERROR"
        assert add_severity(None, "debug", {})["severity"] == "DEBUG"

    def test_warn_alias(self):
        assert add_severity(None, "warn", {})["severity"] == "WARNING"
