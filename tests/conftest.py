"""
Pytest configuration and fixtures for parcelhub tests.
"""
import asyncio
import os
from decimal import Decimal
from typing import List, Optional

import pytest

# Carrier credentials must not leak in from the developer's environment
for _prefix in ("DHL", "FEDEX", "UPS", "ESTAFETA"):
    os.environ.pop(f"{_prefix}_API_KEY", None)
    os.environ.pop(f"{_prefix}_API_SECRET", None)
os.environ["ENVIRONMENT"] = "development"

from parcelhub.core.config import Settings
from parcelhub.models.carrier import CarrierCode, CarrierConfig
from parcelhub.models.shipment import ShipmentStatus
from parcelhub.modules.shipping.carriers import CarrierFactory
from parcelhub.modules.shipping.carriers.base import (
    Address,
    BaseCarrier,
    CarrierRate,
    Package,
    ShipmentRequest,
    ShipmentResult,
    TrackingInfo,
)


def make_rate(
    carrier: str,
    price: str,
    days: int = 2,
    service_code: str = "STD",
) -> CarrierRate:
    """Build a quote for tests; price given as a string to keep Decimal exact."""
    return CarrierRate(
        carrier=carrier,
        carrier_name=carrier.upper(),
        service_code=service_code,
        service_name=f"{carrier} {service_code}",
        price=Decimal(price),
        currency="MXN",
        estimated_days=days,
    )


class FakeCarrier(BaseCarrier):
    """
    In-memory carrier adapter.

    Each get_rates call pops the next outcome from `outcomes`; an exception
    instance is raised, a list is returned. The last outcome repeats.
    """

    def __init__(
        self,
        code: CarrierCode,
        outcomes: Optional[list] = None,
        delay: float = 0.0,
    ):
        super().__init__(CarrierConfig())
        self._code = code
        self.outcomes = list(outcomes or [[]])
        self.delay = delay
        self.rate_calls = 0
        self.create_calls = 0
        self.closed = False

    @property
    def carrier_code(self) -> CarrierCode:
        return self._code

    @property
    def carrier_name(self) -> str:
        return self._code.value.upper()

    async def get_rates(self, origin, destination, packages) -> List[CarrierRate]:
        self.rate_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        self.create_calls += 1
        outcome = self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return ShipmentResult(
            tracking_number=f"{self._code.value.upper()}123",
            label_url="https://labels.example/1.pdf",
            carrier=self._code.value,
            service_code=request.service_code,
            cost=Decimal("100.00"),
            currency="MXN",
        )

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        return TrackingInfo(tracking_number=tracking_number, carrier=self._code.value, status=ShipmentStatus.IN_TRANSIT)

    async def cancel_shipment(self, tracking_number: str) -> bool:
        return False

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://track.example/{tracking_number}"

    def map_status(self, carrier_status: str) -> ShipmentStatus:
        return ShipmentStatus.UNKNOWN

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def origin() -> Address:
    return Address(
        street="Av. Insurgentes Sur 1000",
        city="Ciudad de Mexico",
        state="CDMX",
        postal_code="03100",
        country="Mexico",
        contact_name="Ana Torres",
        phone="5555555555",
    )


@pytest.fixture
def destination() -> Address:
    return Address(
        street="Av. Vallarta 2000",
        city="Guadalajara",
        state="Jalisco",
        postal_code="44100",
        country="MX",
        contact_name="Luis Perez",
        phone="3333333333",
    )


@pytest.fixture
def package() -> Package:
    return Package(weight=10, length=30, width=20, height=15)


@pytest.fixture
def shipment_request(origin, destination, package) -> ShipmentRequest:
    return ShipmentRequest(origin=origin, destination=destination, packages=[package], reference="ORDER-1")


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no retry delay so breaker retries do not slow tests."""
    return Settings(
        _env_file=None,
        ACTIVE_CARRIERS=["dhl", "fedex", "ups"],
        CIRCUIT_MAX_ATTEMPTS=3,
        CIRCUIT_RETRY_DELAY_SECONDS=0.0,
        CIRCUIT_COOLDOWN_SECONDS=60.0,
        CARRIER_CALL_TIMEOUT_SECONDS=1.0,
    )


@pytest.fixture
def factory(test_settings) -> CarrierFactory:
    return CarrierFactory(test_settings)
