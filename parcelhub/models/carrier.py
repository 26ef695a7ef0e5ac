"""
Carrier models

Carrier identification and per-carrier configuration.
Credentials arrive as a configuration object at adapter construction.
"""
import enum
from typing import Optional, Union

from pydantic import BaseModel, Field

from parcelhub.core.exceptions import UnknownCarrier


class CarrierCode(str, enum.Enum):
    """
    Supported shipping carriers.

    Each carrier is independently toggleable via ACTIVE_CARRIERS.
    """
    DHL = "dhl"
    FEDEX = "fedex"
    UPS = "ups"
    ESTAFETA = "estafeta"

    @classmethod
    def from_name(cls, name: Union[str, "CarrierCode"]) -> "CarrierCode":
        """Resolve a carrier name (case-insensitive) to its code."""
        if isinstance(name, cls):
            return name
        normalized = str(name).strip().lower()
        for code in cls:
            if code.value == normalized:
                return code
        raise UnknownCarrier(f"Shipping carrier '{name}' not found.", details={"carrier": name})


class CarrierCredentials(BaseModel):
    """API credentials for a carrier."""
    api_key: str = ""
    api_secret: str = ""
    account_number: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)


class CarrierConfig(BaseModel):
    """
    Configuration handed to a carrier adapter at construction.

    Missing credentials put the adapter in mock mode instead of failing.
    """
    sandbox: bool = False
    credentials: CarrierCredentials = Field(default_factory=CarrierCredentials)
    base_url: Optional[str] = None
    timeout_seconds: float = 30.0
    token_expiry_margin_seconds: int = 300
