"""Settings tests.

Learn: Each test builds its own Settings(...) with keyword overrides, so the
module-level singleton the app reads is never mutated.
"""

import pytest
from pydantic import ValidationError

from herpkeeper.config import Settings


def test_defaults():
    s = Settings()
    assert s.messages_channel == "messages"
    assert s.ws_path_prefix == "/ws"
    assert s.jwt_issuer == "Herp Keeper API"
    assert s.jwt_audience == "Herp Keeper User"
    assert s.access_token_expire_minutes == 5
    assert s.subscriber_retry_delay <= s.subscriber_max_retry_delay


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("HERPKEEPER_MESSAGES_CHANNEL", "herp-events")
    monkeypatch.setenv("HERPKEEPER_PORT", "8080")
    s = Settings()
    assert s.messages_channel == "herp-events"
    assert s.port == 8080


def test_production_requires_real_secret():
    with pytest.raises(ValidationError, match="HERPKEEPER_JWT_SECRET"):
        Settings(environment="production")


def test_production_with_secret():
    s = Settings(environment="production", jwt_secret="a-long-random-value")
    assert s.environment == "production"
