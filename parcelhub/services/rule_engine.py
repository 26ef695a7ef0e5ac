"""
Automation Rule Engine

Picks a carrier for a shipment from the user's automation rules:
- Active rules only, evaluated by priority (highest first, stable on ties)
- First rule whose conditions all hold wins; evaluation stops there
- Cost conditions compare against the mean price of the current quotes

Rule storage is external; the engine reads through RuleRepository.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence

from parcelhub.models.rule import AutomationRule, Cheapest, Fastest, LiteralCarrier, RuleAction
from parcelhub.modules.shipping.carriers.base import CarrierRate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShipmentFacts:
    """The shipment attributes rules can test."""
    weight: float  # kg
    destination_state: Optional[str] = None
    destination_city: Optional[str] = None


class RuleRepository(Protocol):
    """Read access to stored automation rules."""

    async def list_active_rules(self, user_id: str) -> List[AutomationRule]:
        ...


class InMemoryRuleRepository:
    """Process-local rule store."""

    def __init__(self, rules: Optional[Sequence[AutomationRule]] = None):
        self._rules: Dict[str, AutomationRule] = {}
        for rule in rules or ():
            self.add(rule)

    def add(self, rule: AutomationRule) -> AutomationRule:
        self._rules[rule.id] = rule
        return rule

    def update(self, rule: AutomationRule) -> AutomationRule:
        if rule.id not in self._rules:
            raise KeyError(f"Automation rule {rule.id} not found")
        self._rules[rule.id] = rule
        return rule

    def remove(self, rule_id: str) -> None:
        if self._rules.pop(rule_id, None) is None:
            raise KeyError(f"Automation rule {rule_id} not found")

    def list_rules(self, user_id: str) -> List[AutomationRule]:
        """All of a user's rules in insertion order."""
        return [rule for rule in self._rules.values() if rule.user_id == user_id]

    async def list_active_rules(self, user_id: str) -> List[AutomationRule]:
        return [rule for rule in self.list_rules(user_id) if rule.is_active]


def _mean_price(quotes: Sequence[CarrierRate]) -> Decimal:
    return sum((q.price for q in quotes), Decimal("0")) / len(quotes)


def _in_allow_list(value: Optional[str], allowed: Sequence[str]) -> bool:
    if not allowed:
        return True
    if value is None:
        return False
    normalized = value.strip().casefold()
    return any(normalized == a.strip().casefold() for a in allowed)


def matches_conditions(rule: AutomationRule, shipment: ShipmentFacts, quotes: Sequence[CarrierRate]) -> bool:
    """
    Check every condition of a rule. A rule without conditions matches.

    Weight bounds are inclusive. State and city lists compare
    case-insensitively. With no quotes, any cost condition fails.
    """
    conditions = rule.conditions

    if conditions.min_weight is not None and shipment.weight < conditions.min_weight:
        return False
    if conditions.max_weight is not None and shipment.weight > conditions.max_weight:
        return False

    if not _in_allow_list(shipment.destination_state, conditions.states):
        return False
    if not _in_allow_list(shipment.destination_city, conditions.cities):
        return False

    if conditions.has_cost_bounds:
        if not quotes:
            return False
        mean = _mean_price(quotes)
        if conditions.min_cost is not None and mean < conditions.min_cost:
            return False
        if conditions.max_cost is not None and mean > conditions.max_cost:
            return False

    return True


def resolve_action(action: RuleAction, quotes: Sequence[CarrierRate]) -> Optional[str]:
    """
    Turn a rule action into a carrier id.

    Ties resolve to the first quote in list order. Cheapest/Fastest with
    no quotes resolve to None.
    """
    if isinstance(action, LiteralCarrier):
        return action.carrier
    if not quotes:
        return None
    if isinstance(action, Cheapest):
        return min(quotes, key=lambda q: q.price).carrier
    if isinstance(action, Fastest):
        return min(quotes, key=lambda q: q.estimated_days).carrier
    raise TypeError(f"Unsupported rule action: {action!r}")


class RuleEngine:
    """Evaluates a user's automation rules against a shipment."""

    def __init__(self, repository: RuleRepository):
        self.repository = repository

    async def select_carrier(
        self,
        user_id: str,
        shipment: ShipmentFacts,
        quotes: Sequence[CarrierRate],
    ) -> Optional[str]:
        """
        Return the carrier chosen by the first matching rule, or None.

        A matching Cheapest/Fastest rule with no quotes still stops
        evaluation and yields None.
        """
        rules = await self.repository.list_active_rules(user_id)
        # sorted() is stable, so equal priorities keep repository order
        ordered = sorted((r for r in rules if r.is_active), key=lambda r: -r.priority)

        for rule in ordered:
            if not matches_conditions(rule, shipment, quotes):
                continue
            carrier = resolve_action(rule.action, quotes)
            logger.info(f"Rule '{rule.name}' (priority {rule.priority}) matched for user {user_id} -> {carrier}")
            return carrier

        logger.debug(f"No automation rule matched for user {user_id}")
        return None
