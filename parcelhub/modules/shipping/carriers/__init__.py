"""
Carrier Registry and Factory

- Adapters register themselves with @register_carrier
- CarrierFactory builds one adapter and one circuit breaker per carrier,
  lazily, and caches them for the life of the factory
- Only carriers listed in ACTIVE_CARRIERS take part in rate aggregation
"""
from typing import Dict, List, Optional, Type, Union
import logging

import httpx

from parcelhub.core.circuit_breaker import CircuitBreaker
from parcelhub.core.config import Settings
from parcelhub.core.exceptions import UnknownCarrier
from parcelhub.models.carrier import CarrierCode
from parcelhub.modules.shipping.carriers.base import BaseCarrier

logger = logging.getLogger(__name__)

# Registry of carrier implementations
_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.UPS)
        class UPSCarrier(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.debug(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


class CarrierFactory:
    """
    Factory and cache for carrier adapters and their circuit breakers.

    Adapter state (HTTP client, token cache) and breaker state belong to the
    factory instance, so two factories never share a circuit.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._http_client = http_client
        self._carriers: Dict[CarrierCode, BaseCarrier] = {}
        self._breakers: Dict[CarrierCode, CircuitBreaker] = {}

    def get_carrier(self, carrier: Union[str, CarrierCode]) -> BaseCarrier:
        """
        Get (or build) the adapter for a carrier.

        Raises:
            UnknownCarrier: name does not resolve or has no registered adapter
        """
        code = CarrierCode.from_name(carrier)
        if code in self._carriers:
            return self._carriers[code]

        carrier_cls = _CARRIER_REGISTRY.get(code)
        if not carrier_cls:
            logger.warning(f"No implementation registered for carrier: {code.value}")
            raise UnknownCarrier(f"Shipping carrier '{code.value}' not found.", details={"carrier": code.value})

        instance = carrier_cls(self.settings.carrier_config(code), http_client=self._http_client)
        self._carriers[code] = instance
        return instance

    def register_instance(self, carrier: BaseCarrier) -> None:
        """Use a pre-built adapter (tests, embedding) instead of building one."""
        self._carriers[carrier.carrier_code] = carrier
        self._breakers.pop(carrier.carrier_code, None)

    def get_breaker(self, carrier: Union[str, CarrierCode]) -> CircuitBreaker:
        code = CarrierCode.from_name(carrier)
        breaker = self._breakers.get(code)
        if breaker is None:
            breaker = CircuitBreaker(
                code.value,
                max_attempts=self.settings.CIRCUIT_MAX_ATTEMPTS,
                retry_delay=self.settings.CIRCUIT_RETRY_DELAY_SECONDS,
                cooldown=self.settings.CIRCUIT_COOLDOWN_SECONDS,
            )
            self._breakers[code] = breaker
        return breaker

    def get_active_carriers(self) -> List[BaseCarrier]:
        """Adapters for every carrier in ACTIVE_CARRIERS, in configured order."""
        return [self.get_carrier(code) for code in self.settings.active_carrier_codes]

    @staticmethod
    def get_registered_carriers() -> List[CarrierCode]:
        """Get list of all registered carrier codes."""
        return list(_CARRIER_REGISTRY.keys())

    def get_breaker_metrics(self) -> List[dict]:
        return [breaker.get_metrics() for breaker in self._breakers.values()]

    async def close(self) -> None:
        """Close every adapter built or registered by this factory."""
        for carrier in self._carriers.values():
            await carrier.close()
        self._carriers.clear()


_default_factory: Optional[CarrierFactory] = None


def get_carrier(carrier: Union[str, CarrierCode]) -> BaseCarrier:
    """
    Convenience function to get a carrier from the default factory.

    The default factory is built from the module-level settings on first use.
    """
    global _default_factory
    if _default_factory is None:
        from parcelhub.core.config import settings
        _default_factory = CarrierFactory(settings)
    return _default_factory.get_carrier(carrier)


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from parcelhub.modules.shipping.carriers.dhl import DHLCarrier  # noqa: E402, F401
from parcelhub.modules.shipping.carriers.fedex import FedExCarrier  # noqa: E402, F401
from parcelhub.modules.shipping.carriers.ups import UPSCarrier  # noqa: E402, F401
from parcelhub.modules.shipping.carriers.estafeta import EstafetaCarrier  # noqa: E402, F401
