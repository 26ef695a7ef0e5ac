"""
Shipping Service

Entry point tying the carrier factory, rate aggregator and rule engine
together.

Single-carrier operations (create, track, cancel, validate) call the
adapter directly: no circuit breaker retries, so a timed-out create is
never re-sent, and carrier errors reach the caller unmodified.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from parcelhub.models.carrier import CarrierCode
from parcelhub.modules.shipping.carriers import CarrierFactory
from parcelhub.modules.shipping.carriers.base import (
    Address,
    CarrierRate,
    ShipmentRequest,
    ShipmentResult,
    TrackingInfo,
)
from parcelhub.services.rate_aggregator import RateAggregator
from parcelhub.services.rule_engine import RuleEngine, ShipmentFacts

logger = logging.getLogger(__name__)


@dataclass
class AutoSelection:
    """Carrier chosen by automation rules, with its best quote when one exists."""
    carrier: str
    quote: Optional[CarrierRate] = None


def shipment_facts(request: ShipmentRequest) -> ShipmentFacts:
    return ShipmentFacts(
        weight=float(request.total_weight_kg),
        destination_state=request.destination.state,
        destination_city=request.destination.city,
    )


class ShippingService:
    """Carrier-agnostic shipping operations."""

    def __init__(self, factory: CarrierFactory, aggregator: RateAggregator, rule_engine: RuleEngine):
        self.factory = factory
        self.aggregator = aggregator
        self.rule_engine = rule_engine

    async def get_rates(self, request: ShipmentRequest) -> List[CarrierRate]:
        return await self.aggregator.get_best_quotes(request)

    async def auto_select(
        self,
        user_id: str,
        request: ShipmentRequest,
        quotes: Optional[List[CarrierRate]] = None,
    ) -> Optional[AutoSelection]:
        """
        Pick a carrier using the user's automation rules.

        Quotes are fetched when not supplied. Returns None when no rule
        matches or the matching rule resolves to no carrier.
        """
        if quotes is None:
            quotes = await self.get_rates(request)

        carrier = await self.rule_engine.select_carrier(user_id, shipment_facts(request), quotes)
        if carrier is None:
            return None

        carrier_quotes = [q for q in quotes if q.carrier.lower() == carrier.lower()]
        # quotes are already sorted cheapest first
        return AutoSelection(carrier=carrier, quote=carrier_quotes[0] if carrier_quotes else None)

    async def create_shipment(self, carrier: Union[str, CarrierCode], request: ShipmentRequest) -> ShipmentResult:
        """Create a shipment with one carrier. Not retried."""
        adapter = self.factory.get_carrier(carrier)
        result = await adapter.create_shipment(request)
        logger.info(f"Created {adapter.carrier_name} shipment {result.tracking_number}")
        return result

    async def track(self, carrier: Union[str, CarrierCode], tracking_number: str) -> TrackingInfo:
        return await self.factory.get_carrier(carrier).get_tracking(tracking_number)

    async def cancel(self, carrier: Union[str, CarrierCode], tracking_number: str) -> bool:
        adapter = self.factory.get_carrier(carrier)
        cancelled = await adapter.cancel_shipment(tracking_number)
        if not cancelled:
            logger.warning(f"{adapter.carrier_name} declined cancellation of {tracking_number}")
        return cancelled

    async def validate_address(self, carrier: Union[str, CarrierCode], address: Address) -> Optional[Address]:
        return await self.factory.get_carrier(carrier).validate_address(address)

    def get_tracking_url(self, carrier: Union[str, CarrierCode], tracking_number: str) -> str:
        return self.factory.get_carrier(carrier).get_tracking_url(tracking_number)
