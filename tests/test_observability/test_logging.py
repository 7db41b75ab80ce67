"""Tests for logging setup and context binding."""

import logging

import structlog

from changewatch.observability import bind_context, clear_context, setup_logging


class TestSetupLogging:
    def test_level_override(self):
        setup_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_quiets_http_loggers(self):
        setup_logging()
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_production_renders_json(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")

        setup_logging()

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)


class TestContext:
    def test_bind_and_clear(self):
        bind_context(command="check-sources", run_id="abc123")
        assert structlog.contextvars.get_contextvars() == {
            "command": "check-sources",
            "run_id": "abc123",
        }

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
