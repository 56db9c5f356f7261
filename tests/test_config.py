"""Settings loading tests."""

from decimal import Decimal

import pytest

from payroll_recon.config import Settings, _parse_weekend_days


class TestWeekendDays:
    def test_parses_and_sorts(self):
        assert _parse_weekend_days("7, 6,6") == (6, 7)

    def test_friday_only(self):
        assert _parse_weekend_days("5") == (5,)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            _parse_weekend_days("0,6")


class TestFromEnv:
    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_TOLERANCE", "2.5")
        monkeypatch.setenv("CRITICAL_MULTIPLIER", "10")
        monkeypatch.setenv("WEEKEND_DAYS", "5,6")
        monkeypatch.setenv("RECEIPT_SEND_CONCURRENCY", "0")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.default_tolerance == Decimal("2.5")
        assert settings.critical_multiplier == Decimal("10")
        assert settings.weekend_days == (5, 6)
        assert settings.receipt_send_concurrency == 1
        assert settings.log_level == "DEBUG"
