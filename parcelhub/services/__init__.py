from parcelhub.services.rate_aggregator import AggregationResult, RateAggregator, apply_margin
from parcelhub.services.rule_engine import (
    InMemoryRuleRepository,
    RuleEngine,
    RuleRepository,
    ShipmentFacts,
    matches_conditions,
    resolve_action,
)
from parcelhub.services.shipping_service import AutoSelection, ShippingService
