"""
Mock mode placeholders

Carriers without credentials serve these instead of calling the network.
Everything produced here is marked: metadata["mock"] is True, service names
end with " (mock)" and tracking numbers start with "MOCK-".
"""
import hashlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Sequence, Tuple

from parcelhub.models.shipment import ShipmentStatus
from parcelhub.modules.shipping.carriers.base import (
    CarrierRate,
    Package,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingInfo,
    to_money,
)

MOCK_TRACKING_PREFIX = "MOCK-"
MOCK_LABEL_URL = "https://labels.invalid/mock/{carrier}/{tracking_number}.pdf"

# (service_code, service_name, price_factor, estimated_days)
MockService = Tuple[str, str, str, int]


def is_mock_tracking_number(tracking_number: str) -> bool:
    return tracking_number.startswith(MOCK_TRACKING_PREFIX)


def _base_price(packages: Sequence[Package]) -> Decimal:
    """Placeholder pricing: 15 per kg plus a flat 50."""
    total_kg = sum((p.weight_in_kg() for p in packages), Decimal("0"))
    return total_kg * 15 + 50


def placeholder_rates(
    carrier: str,
    carrier_name: str,
    services: Sequence[MockService],
    packages: Sequence[Package],
    currency: str = "MXN",
) -> List[CarrierRate]:
    base = _base_price(packages)
    return [
        CarrierRate(
            carrier=carrier,
            carrier_name=carrier_name,
            service_code=code,
            service_name=f"{name} (mock)",
            price=to_money(base * Decimal(factor)),
            currency=currency,
            estimated_days=days,
            features=("tracking",),
            metadata={"mock": True},
        )
        for code, name, factor, days in services
    ]


def placeholder_shipment(
    carrier: str,
    request: ShipmentRequest,
    services: Sequence[MockService],
    currency: str = "MXN",
) -> ShipmentResult:
    # Stable per request so a retried call with the same reference repeats the number
    seed = f"{carrier}|{request.reference or ''}|{request.destination.postal_code}|{request.service_code}"
    digest = hashlib.sha256(seed.encode()).hexdigest()[:12].upper()
    tracking_number = f"{MOCK_TRACKING_PREFIX}{digest}"

    factor, days = "1.0", 3
    for code, _name, service_factor, service_days in services:
        if code == request.service_code:
            factor, days = service_factor, service_days
            break

    return ShipmentResult(
        tracking_number=tracking_number,
        label_url=MOCK_LABEL_URL.format(carrier=carrier, tracking_number=tracking_number),
        carrier=carrier,
        service_code=request.service_code,
        cost=to_money(_base_price(request.packages) * Decimal(factor)),
        currency=currency,
        estimated_delivery=datetime.now(timezone.utc) + timedelta(days=days),
        metadata={"mock": True},
    )


def placeholder_tracking(carrier: str, tracking_number: str) -> TrackingInfo:
    return TrackingInfo(
        tracking_number=tracking_number,
        carrier=carrier,
        status=ShipmentStatus.PENDING,
        events=[TrackingEvent(
            timestamp=datetime.now(timezone.utc),
            status=ShipmentStatus.PENDING,
            status_code="MOCK",
            description="Placeholder tracking - carrier credentials not configured",
        )],
        metadata={"mock": True},
    )
