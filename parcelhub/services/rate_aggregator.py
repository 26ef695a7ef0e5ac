"""
Rate Aggregator

- Queries every active carrier concurrently, each call behind that
  carrier's circuit breaker and a per-attempt deadline
- Waits for all carriers; one failing carrier never fails the aggregate
- Applies the business margin exactly once per quote
- Returns quotes sorted by (price, estimated_days, carrier)

Usage:
    aggregator = RateAggregator(factory)
    quotes = await aggregator.get_best_quotes(request)
"""
import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Union

from parcelhub.core.exceptions import CarrierUnavailable, ParcelHubError
from parcelhub.models.carrier import CarrierCode
from parcelhub.modules.shipping.carriers import CarrierFactory
from parcelhub.modules.shipping.carriers.base import CENTS, BaseCarrier, CarrierRate, ShipmentRequest

logger = logging.getLogger(__name__)


def apply_margin(raw_price: Decimal, multiplier: Decimal) -> Decimal:
    """Customer price: raw * multiplier, rounded half-up to 2 places."""
    return (Decimal(raw_price) * Decimal(multiplier)).quantize(CENTS, rounding=ROUND_HALF_UP)


def quote_sort_key(rate: CarrierRate):
    return (rate.price, rate.estimated_days, rate.carrier)


@dataclass
class AggregationResult:
    """Outcome of one fan-out: merged quotes plus per-carrier failures."""
    quotes: List[CarrierRate] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    succeeded: List[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)


class RateAggregator:
    """
    Concurrent multi-carrier rate lookup.

    Carrier failures (exhausted breaker, open circuit, timeouts, rejections)
    are logged and excluded; the caller gets whatever the healthy carriers
    returned, possibly an empty list.
    """

    def __init__(
        self,
        factory: CarrierFactory,
        margin_multiplier: Optional[Decimal] = None,
        call_timeout: Optional[float] = None,
    ):
        self.factory = factory
        settings = factory.settings
        self.margin_multiplier = Decimal(
            str(margin_multiplier if margin_multiplier is not None else settings.RATE_MARGIN_MULTIPLIER)
        )
        self.call_timeout = call_timeout if call_timeout is not None else settings.CARRIER_CALL_TIMEOUT_SECONDS

    def apply_margin(self, raw_price: Decimal) -> Decimal:
        return apply_margin(raw_price, self.margin_multiplier)

    async def get_best_quotes(self, request: ShipmentRequest) -> List[CarrierRate]:
        """Get margin-adjusted quotes from all active carriers, cheapest first."""
        result = await self.aggregate(request)
        return result.quotes

    async def aggregate(
        self,
        request: ShipmentRequest,
        carriers: Optional[Iterable[Union[str, CarrierCode]]] = None,
    ) -> AggregationResult:
        """
        Fan out a rate request and merge the outcomes.

        Args:
            request: Origin, destination and packages to quote
            carriers: Optional subset of active carriers to query

        Returns:
            AggregationResult with sorted quotes and the carriers that failed

        Raises:
            ShipmentValidationError: request is invalid (nothing is dispatched)
        """
        request.validate()

        adapters = self._select_carriers(carriers)
        if not adapters:
            logger.warning("No carriers enabled for rate lookup")
            return AggregationResult()

        outcomes = await asyncio.gather(
            *(self._quote_carrier(adapter, request) for adapter in adapters),
            return_exceptions=True,
        )

        result = AggregationResult()
        for adapter, outcome in zip(adapters, outcomes):
            code = adapter.carrier_code.value
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                message = outcome.message if isinstance(outcome, ParcelHubError) else str(outcome)
                logger.warning(f"Excluding {code} from quotes: {type(outcome).__name__}: {message}")
                result.failures[code] = message or type(outcome).__name__
                continue

            result.succeeded.append(code)
            result.quotes.extend(
                dataclasses.replace(rate, price=self.apply_margin(rate.price)) for rate in outcome
            )
            logger.info(f"Got {len(outcome)} rates from {code}")

        result.quotes.sort(key=quote_sort_key)
        return result

    def _select_carriers(self, carriers: Optional[Iterable[Union[str, CarrierCode]]]) -> List[BaseCarrier]:
        active = self.factory.settings.active_carrier_codes
        if carriers is None:
            codes = active
        else:
            requested = [CarrierCode.from_name(c) for c in carriers]
            for code in requested:
                if code not in active:
                    logger.warning(f"Requested carrier {code.value} is not enabled")
            codes = [code for code in active if code in requested]
        return [self.factory.get_carrier(code) for code in codes]

    async def _quote_carrier(self, carrier: BaseCarrier, request: ShipmentRequest) -> List[CarrierRate]:
        breaker = self.factory.get_breaker(carrier.carrier_code)
        return await breaker.execute(self._get_rates_with_deadline, carrier, request)

    async def _get_rates_with_deadline(self, carrier: BaseCarrier, request: ShipmentRequest) -> List[CarrierRate]:
        try:
            return await asyncio.wait_for(
                carrier.get_rates(request.origin, request.destination, request.packages),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError as e:
            raise CarrierUnavailable(
                f"{carrier.carrier_name} did not answer within {self.call_timeout}s",
                carrier=carrier.carrier_code.value,
                code="TIMEOUT",
            ) from e
