"""
Tests for the ShippingService entry point.
"""
from decimal import Decimal

import pytest

from parcelhub.core.exceptions import CarrierUnavailable, NotSupported
from parcelhub.models.carrier import CarrierCode
from parcelhub.models.rule import AutomationRule, Cheapest, LiteralCarrier, RuleConditions
from parcelhub.models.shipment import ShipmentStatus
from parcelhub.services.rate_aggregator import RateAggregator
from parcelhub.services.rule_engine import InMemoryRuleRepository, RuleEngine
from parcelhub.services.shipping_service import ShippingService, shipment_facts

from tests.conftest import FakeCarrier, make_rate

USER = "user-1"


@pytest.fixture
def rules():
    return InMemoryRuleRepository()


@pytest.fixture
def service(factory, rules):
    return ShippingService(factory, RateAggregator(factory), RuleEngine(rules))


def install(factory, *carriers):
    for carrier in carriers:
        factory.register_instance(carrier)


class TestAutoSelect:

    @pytest.mark.asyncio
    async def test_cheapest_rule_picks_cheapest_quote(self, service, factory, rules, shipment_request):
        install(
            factory,
            FakeCarrier(CarrierCode.DHL, [[make_rate("dhl", "100")]]),
            FakeCarrier(CarrierCode.FEDEX, [[make_rate("fedex", "80")]]),
            FakeCarrier(CarrierCode.UPS, [[make_rate("ups", "120")]]),
        )
        rules.add(AutomationRule(user_id=USER, name="cheap", priority=1, action=Cheapest()))

        selection = await service.auto_select(USER, shipment_request)

        assert selection.carrier == "fedex"
        assert selection.quote.price == Decimal("92.00")

    @pytest.mark.asyncio
    async def test_literal_rule_without_quote(self, service, rules, shipment_request):
        """A literal carrier is returned even when that carrier has no quote."""
        rules.add(AutomationRule(user_id=USER, name="always", priority=1, action=LiteralCarrier("estafeta")))

        selection = await service.auto_select(USER, shipment_request, quotes=[])

        assert selection.carrier == "estafeta"
        assert selection.quote is None

    @pytest.mark.asyncio
    async def test_no_quotes_with_cheapest_rule(self, service, rules, shipment_request):
        rules.add(AutomationRule(user_id=USER, name="cheap", priority=1, action=Cheapest()))

        assert await service.auto_select(USER, shipment_request, quotes=[]) is None

    @pytest.mark.asyncio
    async def test_rules_see_destination_and_weight(self, service, rules, shipment_request):
        rules.add(AutomationRule(
            user_id=USER, name="jalisco", priority=1, action=LiteralCarrier("ups"),
            conditions=RuleConditions(states=["JALISCO"], min_weight=5, max_weight=20),
        ))

        selection = await service.auto_select(USER, shipment_request, quotes=[make_rate("ups", "50")])

        assert selection.carrier == "ups"

    def test_shipment_facts(self, shipment_request):
        facts = shipment_facts(shipment_request)

        assert facts.weight == 10.0
        assert facts.destination_state == "Jalisco"
        assert facts.destination_city == "Guadalajara"


class TestSingleCarrierOperations:

    @pytest.mark.asyncio
    async def test_create_is_not_retried(self, service, factory, shipment_request):
        """A failed create propagates after exactly one attempt."""
        dhl = FakeCarrier(CarrierCode.DHL, [CarrierUnavailable("timeout", carrier="dhl", code="TIMEOUT")])
        install(factory, dhl)

        with pytest.raises(CarrierUnavailable):
            await service.create_shipment("dhl", shipment_request)

        assert dhl.create_calls == 1

    @pytest.mark.asyncio
    async def test_create_shipment(self, service, factory, shipment_request):
        install(factory, FakeCarrier(CarrierCode.UPS))

        result = await service.create_shipment("UPS", shipment_request)

        assert result.tracking_number == "UPS123"

    @pytest.mark.asyncio
    async def test_track(self, service, factory):
        install(factory, FakeCarrier(CarrierCode.FEDEX))

        info = await service.track(CarrierCode.FEDEX, "794600000000")

        assert info.tracking_number == "794600000000"
        assert info.status == ShipmentStatus.IN_TRANSIT

    @pytest.mark.asyncio
    async def test_cancel_declined(self, service, factory):
        install(factory, FakeCarrier(CarrierCode.UPS))

        assert await service.cancel("ups", "1Z") is False

    @pytest.mark.asyncio
    async def test_cancel_not_supported_propagates(self, service):
        """Mock-mode DHL still reports that cancellation does not exist."""
        with pytest.raises(NotSupported):
            await service.cancel("dhl", "123")

    @pytest.mark.asyncio
    async def test_validate_address(self, service, destination):
        assert await service.validate_address("estafeta", destination) is None

    def test_tracking_url(self, service):
        assert "1Z999" in service.get_tracking_url("ups", "1Z999")
