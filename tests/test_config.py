"""
tests/test_config.py -- Unit tests for core/config.py.

Settings is instantiated directly with keyword overrides so these tests do
not depend on (or disturb) the cached get_settings() singleton.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from core.config import LOCKOUT_DURATION, MAX_LOGIN_ATTEMPTS, AuthConfig, Settings


class TestSecretKeyPolicy:
    def test_dev_mode_generates_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, secret_key="too-short")

    def test_non_positive_lifetime_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, secret_key="s" * 32, token_expire_seconds=0)


class TestAuthConfig:
    def test_from_settings(self) -> None:
        settings = Settings(debug=True, secret_key="s" * 40, token_expire_seconds=3600)
        config = AuthConfig.from_settings(settings)
        assert config.secret_key == "s" * 40
        assert config.token_lifetime == timedelta(hours=1)
        assert config.max_login_attempts == MAX_LOGIN_ATTEMPTS == 5
        assert config.lockout_duration == LOCKOUT_DURATION == timedelta(minutes=30)

    def test_default_lifetime_is_seven_days(self) -> None:
        settings = Settings(debug=True, secret_key="s" * 32)
        assert AuthConfig.from_settings(settings).token_lifetime == timedelta(days=7)

    def test_frozen(self) -> None:
        config = AuthConfig(secret_key="s" * 32)
        with pytest.raises(AttributeError):
            config.secret_key = "x" * 32
