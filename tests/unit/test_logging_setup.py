"""Tests for the structlog configuration."""

import logging

from taskstake.config import Settings
from taskstake.middleware.logging import _service_context, setup_logging


def test_service_context_stamps_deployment():
    processor = _service_context(Settings(environment="staging", app_version="1.2.3"))

    event = processor(None, "info", {"event": "points_credited"})

    assert event == {
        "event": "points_credited",
        "service": "taskstake",
        "environment": "staging",
        "version": "1.2.3",
    }


def test_service_context_keeps_explicit_fields():
    processor = _service_context(Settings())
    event = processor(None, "info", {"event": "ws_connected", "service": "bridge"})
    assert event["service"] == "bridge"


def test_noisy_loggers_quieted_outside_debug():
    setup_logging(Settings(log_format="console", log_level="INFO", debug=False))
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING
