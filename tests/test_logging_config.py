"""Logging setup tests."""

import io

import pytest
import structlog

from herpkeeper import logging_config


@pytest.fixture()
def fresh_logging(monkeypatch):
    """Let configure_logging() run again, then put the old config back."""
    saved = structlog.get_config()
    monkeypatch.setattr(logging_config, "_configured", False)
    yield
    structlog.configure(**saved)


def test_logs_go_to_the_given_stream(fresh_logging):
    stream = io.StringIO()
    logging_config.configure_logging(level="DEBUG", json_logs=True, stream=stream)

    structlog.get_logger().info("cli.event", username="alice")

    line = stream.getvalue()
    assert '"event": "cli.event"' in line
    assert '"username": "alice"' in line


def test_level_filters_lower_events(fresh_logging):
    stream = io.StringIO()
    logging_config.configure_logging(level="WARNING", json_logs=False, stream=stream)

    log = structlog.get_logger()
    log.debug("hidden.event")
    log.warning("shown.event")

    output = stream.getvalue()
    assert "hidden.event" not in output
    assert "shown.event" in output
