"""
Shipping Module

- BaseCarrier interface for all carrier implementations
- Carriers individually toggleable through ACTIVE_CARRIERS
- CarrierFactory for dependency injection
"""
from parcelhub.modules.shipping.carriers import CarrierFactory, get_carrier
from parcelhub.modules.shipping.carriers.base import BaseCarrier

__all__ = [
    "CarrierFactory",
    "get_carrier",
    "BaseCarrier",
]
