"""
Base Carrier Interface

- All carriers implement this interface and are interchangeable behind it
- The base class holds no mutable state; each carrier owns its config,
  HTTP transport and OAuth token cache
- Each carrier provides its own:
  - Rate calculation
  - Shipment creation
  - Tracking
  - Cancellation (or NotSupported)
  - Address validation (or None)
  - Status mapping
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from parcelhub.core.exceptions import ShipmentValidationError
from parcelhub.models.carrier import CarrierCode, CarrierConfig
from parcelhub.models.shipment import ShipmentStatus

logger = logging.getLogger(__name__)

LB_TO_KG = Decimal("0.453592")
IN_TO_CM = Decimal("2.54")
CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Parse a carrier amount (str, int, float) into a 2-place Decimal."""
    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass(frozen=True)
class Address:
    """Postal address. Value object: equal when all fields are equal."""
    street: str
    city: str
    state: str
    postal_code: str
    country: str
    company: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @property
    def country_code(self) -> str:
        """ISO country code; carriers reject the spelled-out name."""
        if self.country.strip().lower() in ("mexico", "méxico", "mx"):
            return "MX"
        return self.country.strip().upper()


@dataclass(frozen=True)
class Package:
    """Package dimensions and weight."""
    weight: float
    weight_unit: str = "kg"  # kg | lb
    length: float = 0.0
    width: float = 0.0
    height: float = 0.0
    dimension_unit: str = "cm"  # cm | in
    declared_value: Optional[Decimal] = None
    currency: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self):
        if self.weight_unit not in ("kg", "lb"):
            raise ValueError(f"Unsupported weight unit: {self.weight_unit}")
        if self.dimension_unit not in ("cm", "in"):
            raise ValueError(f"Unsupported dimension unit: {self.dimension_unit}")

    @property
    def has_dimensions(self) -> bool:
        return bool(self.length and self.width and self.height)

    def weight_in_kg(self) -> Decimal:
        weight = Decimal(str(self.weight))
        if self.weight_unit == "lb":
            weight = weight * LB_TO_KG
        return weight.quantize(CENTS, rounding=ROUND_HALF_UP)

    def dimensions_in_cm(self) -> Tuple[Decimal, Decimal, Decimal]:
        factor = IN_TO_CM if self.dimension_unit == "in" else Decimal(1)
        return tuple(
            (Decimal(str(d)) * factor).quantize(CENTS, rounding=ROUND_HALF_UP)
            for d in (self.length, self.width, self.height)
        )


@dataclass(frozen=True)
class CarrierRate:
    """Shipping rate quote for one service level of one carrier."""
    carrier: str
    carrier_name: str
    service_code: str
    service_name: str
    price: Decimal
    currency: str
    estimated_days: int
    features: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if self.price < 0:
            raise ValueError(f"Rate price cannot be negative: {self.price}")
        if self.estimated_days < 0:
            raise ValueError(f"Estimated days cannot be negative: {self.estimated_days}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier": self.carrier,
            "carrier_name": self.carrier_name,
            "service_code": self.service_code,
            "service_name": self.service_name,
            "price": str(self.price),
            "currency": self.currency,
            "estimated_days": self.estimated_days,
            "features": list(self.features),
            "metadata": self.metadata,
        }


@dataclass
class ShipmentRequest:
    """Request to create a shipment (or quote one)."""
    origin: Address
    destination: Address
    packages: List[Package]
    service_code: str = ""
    reference: Optional[str] = None
    instructions: Optional[str] = None

    @property
    def total_weight_kg(self) -> Decimal:
        return sum((p.weight_in_kg() for p in self.packages), Decimal("0"))

    def validate(self, require_service: bool = False) -> None:
        """
        Validate before dispatching to a carrier.

        Dimensions are optional: a package with all three left at zero is
        weight-only, and adapters that can omit dimensions do so. Giving
        some but not all of them is an error.

        Raises:
            ShipmentValidationError: no packages, non-positive weight,
                or negative/partial dimensions
        """
        if not self.packages:
            raise ShipmentValidationError("Shipment must contain at least one package", field="packages")

        for index, package in enumerate(self.packages):
            if package.weight <= 0:
                raise ShipmentValidationError(
                    f"Package {index + 1} weight must be positive",
                    field=f"packages[{index}].weight",
                )
            dims = (package.length, package.width, package.height)
            if any(d < 0 for d in dims) or (any(dims) and not all(dims)):
                raise ShipmentValidationError(
                    f"Package {index + 1} dimensions must all be positive",
                    field=f"packages[{index}].dimensions",
                )

        if require_service and not self.service_code:
            raise ShipmentValidationError("A service code is required to create a shipment", field="service_code")


@dataclass
class ShipmentResult:
    """Result of shipment creation."""
    tracking_number: str
    label_url: str  # URL or data: URI of the label
    carrier: str
    service_code: str
    cost: Decimal
    currency: str
    estimated_delivery: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.tracking_number:
            raise ValueError("Carrier returned a shipment without tracking number")


@dataclass
class TrackingEvent:
    """A single tracking event."""
    timestamp: datetime
    status: ShipmentStatus  # normalized
    status_code: str  # carrier-native
    description: str
    location: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrackingInfo:
    """Full tracking information. Events are always oldest first."""
    tracking_number: str
    carrier: str
    status: ShipmentStatus
    events: List[TrackingEvent] = field(default_factory=list)
    estimated_delivery: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.events = sorted(self.events, key=lambda e: e.timestamp)


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """
    Abstract base class for all shipping carriers.

    Only defines the contract; implementations keep their own state.
    """

    def __init__(self, config: CarrierConfig):
        self.config = config

    @property
    @abstractmethod
    def carrier_code(self) -> CarrierCode:
        """Return the carrier code enum value."""

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Return the human-readable carrier name."""

    @property
    def is_mock(self) -> bool:
        """True when credentials are missing and placeholder data is served."""
        return not self.config.credentials.is_configured

    @abstractmethod
    async def get_rates(
        self,
        origin: Address,
        destination: Address,
        packages: List[Package]
    ) -> List[CarrierRate]:
        """
        Get shipping rates from the carrier.

        Returns:
            List of CarrierRate; empty when the carrier has no applicable service

        Raises:
            CarrierUnavailable: network or authentication failure
        """

    @abstractmethod
    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        """
        Create a shipment and generate its label.

        Raises:
            CarrierRejected: carrier validation error (message preserved)
            CarrierUnavailable: transient failure
        """

    @abstractmethod
    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        """
        Get tracking information for a shipment.

        Raises:
            NotFound: carrier has no record of the tracking number
        """

    @abstractmethod
    async def cancel_shipment(self, tracking_number: str) -> bool:
        """
        Cancel a shipment.

        Returns:
            False when the carrier declines (e.g. already in transit)

        Raises:
            NotSupported: carrier has no cancellation API
        """

    async def validate_address(self, address: Address) -> Optional[Address]:
        """
        Validate/correct an address with the carrier.

        None means "cannot validate", never "invalid".
        """
        return None

    @abstractmethod
    def get_tracking_url(self, tracking_number: str) -> str:
        """Get the public tracking URL for a shipment."""

    @abstractmethod
    def map_status(self, carrier_status: str) -> ShipmentStatus:
        """Map carrier-specific status to normalized ShipmentStatus."""

    async def close(self) -> None:
        """Release network resources."""


def normalize_status(status_map: Dict[str, ShipmentStatus], carrier_status: Optional[str]) -> ShipmentStatus:
    """
    Look up a carrier status code in a carrier's status map.

    Exact match first, then substring match on the upper-cased code.
    Unmapped codes become UNKNOWN.
    """
    if not carrier_status:
        return ShipmentStatus.UNKNOWN

    status_upper = carrier_status.upper().strip()
    if status_upper in status_map:
        return status_map[status_upper]

    for key, value in status_map.items():
        if len(key) > 2 and key in status_upper:
            return value

    logger.warning(f"Unknown carrier status: {carrier_status}, mapping to UNKNOWN")
    return ShipmentStatus.UNKNOWN


def parse_timestamp(date_value: Optional[str], time_value: Optional[str] = None) -> Optional[datetime]:
    """
    Parse a carrier date (and optional separate time) into an aware datetime.

    Carriers that omit an offset report in UTC.
    """
    if not date_value:
        return None
    text = f"{date_value}T{time_value}" if time_value else date_value
    text = text.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable carrier timestamp: {text}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def collect_rates(carrier_name: str, entries: Iterable[Any], to_rate: Callable[[Any], Optional[CarrierRate]]) -> List[CarrierRate]:
    """
    Map raw carrier rate entries to CarrierRate objects.

    Entries the mapper returns None for, or that carry malformed values
    (unparseable or negative amounts, bad transit days), are logged and
    skipped. One bad service level never discards the carrier's other quotes.
    """
    rates = []
    for entry in entries:
        try:
            rate = to_rate(entry)
        except (ValueError, ArithmeticError, TypeError) as e:
            logger.warning(f"{carrier_name} returned an unusable rate entry, skipping: {e}")
            continue
        if rate is not None:
            rates.append(rate)
    return rates
