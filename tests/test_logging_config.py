"""
Tests for structlog configuration and secret redaction.
"""
import json

import pytest
import structlog

from storybooks.logging_config import REDACTED, configure_logging, redact_secrets


@pytest.fixture
def restore_structlog():
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def test_redact_secrets_masks_oauth_values():
    event = redact_secrets(None, "info", {
        "event": "auth_callback",
        "code": "4/0AX4XfWh",
        "state": "s1",
        "access_token": "ya29.abc",
        "provider": "google",
    })

    assert event["code"] == REDACTED
    assert event["state"] == REDACTED
    assert event["access_token"] == REDACTED
    assert event["provider"] == "google"
    assert event["event"] == "auth_callback"


def test_configured_logger_emits_redacted_json(settings, capsys, restore_structlog):
    configure_logging(settings)

    structlog.get_logger().info("token_exchanged", token="opaque-token", user_id="u1")

    line = capsys.readouterr().out.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "token_exchanged"
    assert record["token"] == REDACTED
    assert record["user_id"] == "u1"
    assert record["level"] == "info"
    assert record["app"] == "StoryBooks"
    assert record["environment"] == settings.ENVIRONMENT
    assert "opaque-token" not in line
