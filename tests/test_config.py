"""
Tests for settings parsing and validation.
"""
import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError

from parcelhub.core.config import DEFAULT_ACTIVE_CARRIERS, Settings
from parcelhub.core.logging import configure_logging
from parcelhub.models.carrier import CarrierCode


def make_settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestActiveCarriers:

    def test_defaults(self):
        assert make_settings().ACTIVE_CARRIERS == DEFAULT_ACTIVE_CARRIERS

    def test_comma_separated(self):
        settings = make_settings(ACTIVE_CARRIERS=" DHL, ups ,")
        assert settings.ACTIVE_CARRIERS == ["dhl", "ups"]
        assert settings.active_carrier_codes == [CarrierCode.DHL, CarrierCode.UPS]

    def test_json_array(self):
        assert make_settings(ACTIVE_CARRIERS='["fedex", "estafeta"]').ACTIVE_CARRIERS == ["fedex", "estafeta"]

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("ACTIVE_CARRIERS", "estafeta,dhl")
        assert make_settings().ACTIVE_CARRIERS == ["estafeta", "dhl"]

    def test_unknown_carrier_rejected(self):
        with pytest.raises(ValidationError, match="pony"):
            make_settings(ACTIVE_CARRIERS="dhl,pony")


class TestValidation:

    def test_margin_below_one_rejected(self):
        with pytest.raises(ValidationError, match="RATE_MARGIN_MULTIPLIER"):
            make_settings(RATE_MARGIN_MULTIPLIER=Decimal("0.9"))

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError, match="CIRCUIT_MAX_ATTEMPTS"):
            make_settings(CIRCUIT_MAX_ATTEMPTS=0)

    def test_non_positive_call_timeout_rejected(self):
        with pytest.raises(ValidationError, match="CARRIER_CALL_TIMEOUT_SECONDS"):
            make_settings(CARRIER_CALL_TIMEOUT_SECONDS=0)

    def test_margin_parsed_as_decimal(self, monkeypatch):
        monkeypatch.setenv("RATE_MARGIN_MULTIPLIER", "1.20")
        assert make_settings().RATE_MARGIN_MULTIPLIER == Decimal("1.20")


class TestCarrierConfig:

    def test_carrier_config_from_settings(self):
        settings = make_settings(
            UPS_API_KEY="key",
            UPS_API_SECRET="secret",
            UPS_ACCOUNT_NUMBER="A1B2C3",
            UPS_SANDBOX=True,
            CARRIER_HTTP_TIMEOUT_SECONDS=12.5,
            TOKEN_EXPIRY_MARGIN_SECONDS=120,
        )

        config = settings.carrier_config(CarrierCode.UPS)

        assert config.sandbox is True
        assert config.credentials.is_configured
        assert config.credentials.account_number == "A1B2C3"
        assert config.timeout_seconds == 12.5
        assert config.token_expiry_margin_seconds == 120

    def test_missing_credentials_not_configured(self):
        config = make_settings().carrier_config(CarrierCode.DHL)

        assert not config.credentials.is_configured
        assert config.credentials.account_number is None


class TestLogging:

    def test_configure_logging_quiets_httpx(self):
        """httpx request logs carry tracking numbers in URLs and stay at WARNING."""
        configure_logging("debug")

        assert logging.getLogger("httpx").level == logging.WARNING
