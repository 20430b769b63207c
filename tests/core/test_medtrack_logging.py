"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from medtrack.core.logging import (
    _NOISE_LOGGERS,
    _user_context,
    add_otel_context,
    add_user_context,
    configure_logging,
    get_user_context,
    set_user_context,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and user context between tests."""
    token = _user_context.set(None)
    yield
    _user_context.reset(token)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    for name in ("uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).handlers.clear()


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


class TestUserContext:
    def test_set_and_get(self):
        set_user_context("u1")
        assert get_user_context() == "u1"

    def test_default_is_none(self):
        assert get_user_context() is None

    def test_processor_injects_user_id(self):
        set_user_context("u1")
        assert add_user_context(None, "info", {"event": "x"})["user_id"] == "u1"

    def test_processor_omits_unset_user(self):
        assert "user_id" not in add_user_context(None, "info", {"event": "x"})


class TestAddOtelContext:
    def test_no_ids_without_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert "trace_id" not in result
        assert "span_id" not in result

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("test-span"):
            result = add_otel_context(None, "info", {"event": "test"})
            assert len(result["trace_id"]) == 32
            assert len(result["span_id"]) == 16
        provider.shutdown()


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter)

    def test_level_is_applied(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_reconfiguring_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_noise_loggers_are_quieted(self):
        configure_logging(level="DEBUG")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_user_id_is_bound(self):
        configure_logging(user_id="u7")
        assert get_user_context() == "u7"

    def test_log_root_writes_json_lines(self, tmp_path):
        configure_logging(fmt="json", log_root=tmp_path / "logs", user_id="u1")

        logging.getLogger("medtrack.test").warning("refill soon")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "medtrack.log").read_text().strip().splitlines()
        record = json.loads(lines[-1])
        assert record["event"] == "refill soon"
        assert record["user_id"] == "u1"
        assert record["level"] == "warning"
        assert (tmp_path / "logs" / "uvicorn.log").exists()
