"""
Application configuration

Carrier credentials, orchestration tunables and logging level.
All values come from environment variables or a .env file.

SECURITY: Carrier credentials have no defaults. A carrier without
credentials runs in mock mode and logs a warning instead of crashing.
"""
import json
import logging
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from parcelhub.models.carrier import CarrierCode, CarrierConfig, CarrierCredentials

logger = logging.getLogger(__name__)

DEFAULT_ACTIVE_CARRIERS = ["dhl", "fedex", "ups", "estafeta"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # App
    APP_NAME: str = "parcelhub"
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # Carriers queried by the rate aggregator - accepts JSON array or comma-separated string
    ACTIVE_CARRIERS: Union[str, List[str]] = DEFAULT_ACTIVE_CARRIERS

    @field_validator("ACTIVE_CARRIERS", mode="before")
    @classmethod
    def parse_active_carriers(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return list(DEFAULT_ACTIVE_CARRIERS)
            if v.startswith("["):
                try:
                    v = json.loads(v)
                except json.JSONDecodeError:
                    pass
            if isinstance(v, str):
                v = [name for name in v.split(",")]
        return [str(name).strip().lower() for name in v if str(name).strip()]

    # Business margin applied to every raw carrier price (1.15 = 15% markup)
    RATE_MARGIN_MULTIPLIER: Decimal = Decimal("1.15")

    # Deadlines (seconds). Per-carrier call timeout stays below the HTTP timeout
    # so one slow carrier cannot stall the aggregate.
    CARRIER_CALL_TIMEOUT_SECONDS: float = 10.0
    CARRIER_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Fault isolator
    CIRCUIT_MAX_ATTEMPTS: int = 3
    CIRCUIT_RETRY_DELAY_SECONDS: float = 1.0
    CIRCUIT_COOLDOWN_SECONDS: float = 60.0

    # OAuth tokens are treated as expired this many seconds early
    TOKEN_EXPIRY_MARGIN_SECONDS: int = 300

    # DHL Express (MyDHL API)
    DHL_API_KEY: str = ""
    DHL_API_SECRET: str = ""
    DHL_ACCOUNT_NUMBER: str = ""
    DHL_SANDBOX: bool = False
    DHL_BASE_URL: Optional[str] = None

    # FedEx
    FEDEX_API_KEY: str = ""
    FEDEX_API_SECRET: str = ""
    FEDEX_ACCOUNT_NUMBER: str = ""
    FEDEX_SANDBOX: bool = False
    FEDEX_BASE_URL: Optional[str] = None

    # UPS
    UPS_API_KEY: str = ""
    UPS_API_SECRET: str = ""
    UPS_ACCOUNT_NUMBER: str = ""
    UPS_SANDBOX: bool = False
    UPS_BASE_URL: Optional[str] = None

    # Estafeta (regional carrier)
    ESTAFETA_API_KEY: str = ""
    ESTAFETA_API_SECRET: str = ""
    ESTAFETA_ACCOUNT_NUMBER: str = ""
    ESTAFETA_SANDBOX: bool = False
    ESTAFETA_BASE_URL: Optional[str] = None

    @model_validator(mode="after")
    def validate_orchestration_config(self):
        """Catch settings that would silently break pricing or retries."""
        errors = []

        if self.RATE_MARGIN_MULTIPLIER < 1:
            errors.append(
                f"RATE_MARGIN_MULTIPLIER={self.RATE_MARGIN_MULTIPLIER} would sell below carrier cost"
            )
        if self.CIRCUIT_MAX_ATTEMPTS < 1:
            errors.append("CIRCUIT_MAX_ATTEMPTS must be at least 1")
        if self.CARRIER_CALL_TIMEOUT_SECONDS <= 0:
            errors.append("CARRIER_CALL_TIMEOUT_SECONDS must be positive")

        unknown = [name for name in self.ACTIVE_CARRIERS if name not in {c.value for c in CarrierCode}]
        if unknown:
            errors.append(f"ACTIVE_CARRIERS contains unknown carriers: {', '.join(unknown)}")

        if errors:
            raise ValueError(
                "INVALID CARRIER CONFIGURATION:\n" + "\n".join(f"  - {e}" for e in errors)
            )

        return self

    @property
    def active_carrier_codes(self) -> List[CarrierCode]:
        return [CarrierCode.from_name(name) for name in self.ACTIVE_CARRIERS]

    def carrier_config(self, carrier_code: CarrierCode) -> CarrierConfig:
        """Build the adapter configuration object for a carrier."""
        prefix = carrier_code.name
        account_number = getattr(self, f"{prefix}_ACCOUNT_NUMBER") or None

        return CarrierConfig(
            sandbox=getattr(self, f"{prefix}_SANDBOX"),
            credentials=CarrierCredentials(
                api_key=getattr(self, f"{prefix}_API_KEY"),
                api_secret=getattr(self, f"{prefix}_API_SECRET"),
                account_number=account_number,
            ),
            base_url=getattr(self, f"{prefix}_BASE_URL"),
            timeout_seconds=self.CARRIER_HTTP_TIMEOUT_SECONDS,
            token_expiry_margin_seconds=self.TOKEN_EXPIRY_MARGIN_SECONDS,
        )


settings = Settings()
