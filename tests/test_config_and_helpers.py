"""
Configuration, datetime helper and risk clamping tests
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from config import Config, EscrowSettings
from services.risk_scoring import NoOpRiskScorer, clamp_risk_level
from utils.datetime_helpers import calculate_release_date, ensure_naive_datetime, to_iso


class TestEscrowConfiguration:

    def test_settings_from_config(self, monkeypatch):
        monkeypatch.setattr(Config, "ESCROW_HOLD_DAYS", 7)
        monkeypatch.setattr(Config, "ESCROW_MAX_RETRY_ATTEMPTS", 5)
        monkeypatch.setattr(Config, "ESCROW_MAX_AMOUNT", Decimal("2500"))

        settings = EscrowSettings.from_config()

        assert settings.hold_days == 7
        assert settings.max_retry_attempts == 5
        assert settings.max_amount == Decimal("2500")

    def test_defaults(self):
        settings = EscrowSettings()
        assert settings.hold_days == 5
        assert settings.max_retry_attempts == 3
        assert settings.max_amount == Decimal("10000")

    def test_validate_reports_every_problem(self, monkeypatch):
        monkeypatch.setattr(Config, "ESCROW_HOLD_DAYS", -1)
        monkeypatch.setattr(Config, "ESCROW_MAX_RETRY_ATTEMPTS", 0)

        with pytest.raises(ValueError) as exc_info:
            Config.validate_escrow_configuration()

        assert "ESCROW_HOLD_DAYS" in str(exc_info.value)
        assert "ESCROW_MAX_RETRY_ATTEMPTS" in str(exc_info.value)

    def test_production_requires_gateway_key(self, monkeypatch):
        monkeypatch.setattr(Config, "IS_PRODUCTION", True)
        monkeypatch.setattr(Config, "PAYMENT_GATEWAY_API_KEY", None)

        with pytest.raises(ValueError, match="PAYMENT_GATEWAY_API_KEY"):
            Config.validate_escrow_configuration()


class TestDatetimeHelpers:

    def test_aware_datetimes_become_naive_utc(self):
        aware = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_naive_datetime(aware) == datetime(2024, 3, 1, 12, 0)

    def test_release_date(self):
        created = datetime(2024, 3, 1, 12, 0)
        assert calculate_release_date(created, 5) == datetime(2024, 3, 6, 12, 0)

    def test_iso_format(self):
        assert to_iso(datetime(2024, 3, 1, 12, 0, 0, 123456)) == "2024-03-01T12:00:00.123Z"
        assert to_iso(None) is None


class TestRiskScoring:

    @pytest.mark.parametrize("value, expected", [(-5, 0), (42, 42), (101, 100), ("17", 17), ("high", 100), (None, 100)])
    def test_clamp(self, value, expected):
        assert clamp_risk_level(value) == expected

    @pytest.mark.asyncio
    async def test_noop_scorer(self):
        assert await NoOpRiskScorer().score("cust1", Decimal("500")) == 0
