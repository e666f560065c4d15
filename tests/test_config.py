"""
Unit tests for the config module.

Tests: Settings defaults, environment variable override, validation.
"""

import pytest
from pydantic import ValidationError

from tradingrisk.config import Environment, OverflowPolicy, Settings


class TestSettingsDefaults:
    def test_service_identity(self):
        s = Settings()
        assert s.service_name == "trading-bot-risk"
        assert s.port == 3003

    def test_default_environment(self):
        s = Settings()
        assert s.env == Environment.DEVELOPMENT
        assert s.log_level == "INFO"

    def test_default_var_params(self):
        s = Settings()
        assert s.var_confidence == 0.95
        assert s.var_horizon_days == 1.0
        assert s.default_correlation == 0.0

    def test_default_feed_params(self):
        s = Settings()
        assert s.feed_queue_size == 10_000
        assert s.feed_overflow_policy == OverflowPolicy.DROP_OLDEST
        assert s.kafka_enabled is False


class TestSettingsOverride:
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("VAR_CONFIDENCE", "0.99")
        monkeypatch.setenv("FEED_OVERFLOW_POLICY", "block")
        monkeypatch.setenv("PORT", "8080")
        s = Settings()
        assert s.var_confidence == 0.99
        assert s.feed_overflow_policy == OverflowPolicy.BLOCK
        assert s.port == 8080

    def test_rejects_out_of_range_correlation(self):
        with pytest.raises(ValidationError):
            Settings(default_correlation=1.5)

    def test_rejects_non_positive_half_life(self):
        with pytest.raises(ValidationError):
            Settings(volatility_half_life=0)
