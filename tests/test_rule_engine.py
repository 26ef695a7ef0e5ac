"""
Tests for the automation rule engine.
"""
from decimal import Decimal

import pytest

from parcelhub.models.rule import (
    AutomationRule,
    Cheapest,
    Fastest,
    LiteralCarrier,
    RuleConditions,
    parse_action,
)
from parcelhub.services.rule_engine import (
    InMemoryRuleRepository,
    RuleEngine,
    ShipmentFacts,
    matches_conditions,
    resolve_action,
)

from tests.conftest import make_rate

USER = "user-1"


def rule(name="rule", priority=0, action=None, **conditions) -> AutomationRule:
    return AutomationRule(
        user_id=USER,
        name=name,
        priority=priority,
        action=action or LiteralCarrier("dhl"),
        conditions=RuleConditions(**conditions),
    )


@pytest.fixture
def quotes():
    return [
        make_rate("a", "100", days=3),
        make_rate("b", "80", days=5),
        make_rate("c", "120", days=1),
    ]


class TestParseAction:

    @pytest.mark.parametrize("value, expected", [
        ("cheapest", Cheapest()),
        ("CHEAPEST", Cheapest()),
        ("Fastest", Fastest()),
        ("dhl", LiteralCarrier("dhl")),
        (" estafeta ", LiteralCarrier("estafeta")),
    ])
    def test_parse(self, value, expected):
        """Sentinels are case-insensitive; anything else is a carrier id."""
        assert parse_action(value) == expected

    def test_empty_action_rejected(self):
        with pytest.raises(ValueError):
            parse_action("  ")


class TestMatchesConditions:

    @pytest.mark.parametrize("weight, expected", [
        (3, False),
        (5, True),
        (10, True),
        (20, True),
        (25, False),
    ])
    def test_weight_bounds_inclusive(self, weight, expected):
        """A 5-20 kg rule matches 5, 10 and 20 but not 3 or 25."""
        r = rule(min_weight=5, max_weight=20)
        assert matches_conditions(r, ShipmentFacts(weight=weight), []) is expected

    def test_no_conditions_always_match(self):
        assert matches_conditions(rule(), ShipmentFacts(weight=999), [])

    def test_state_allow_list(self):
        r = rule(states=["Jalisco", "Nuevo Leon"])
        assert matches_conditions(r, ShipmentFacts(weight=1, destination_state="jalisco"), [])
        assert not matches_conditions(r, ShipmentFacts(weight=1, destination_state="CDMX"), [])
        assert not matches_conditions(r, ShipmentFacts(weight=1), [])

    def test_allow_list_ignores_case_and_padding_only(self):
        """Case and surrounding whitespace are ignored; accents and partial names still differ."""
        r = rule(states=[" Nuevo Leon "])
        assert matches_conditions(r, ShipmentFacts(weight=1, destination_state="NUEVO LEON"), [])
        assert not matches_conditions(r, ShipmentFacts(weight=1, destination_state="Nuevo León"), [])
        assert not matches_conditions(r, ShipmentFacts(weight=1, destination_state="Leon"), [])

    def test_city_allow_list(self):
        r = rule(cities=["Monterrey"])
        assert matches_conditions(r, ShipmentFacts(weight=1, destination_city="Monterrey"), [])
        assert not matches_conditions(r, ShipmentFacts(weight=1, destination_city="Guadalajara"), [])

    def test_empty_allow_lists_unconstrained(self):
        r = rule(states=[], cities=[])
        assert matches_conditions(r, ShipmentFacts(weight=1, destination_state="Yucatan"), [])

    def test_cost_bounds_use_mean_price(self, quotes):
        """Mean of 100, 80, 120 is 100."""
        facts = ShipmentFacts(weight=1)
        assert matches_conditions(rule(max_cost=Decimal("100")), facts, quotes)
        assert not matches_conditions(rule(max_cost=Decimal("99.99")), facts, quotes)
        assert matches_conditions(rule(min_cost=Decimal("100")), facts, quotes)
        assert not matches_conditions(rule(min_cost=Decimal("100.01")), facts, quotes)

    def test_cost_condition_fails_without_quotes(self):
        assert not matches_conditions(rule(max_cost=Decimal("1000")), ShipmentFacts(weight=1), [])


class TestResolveAction:

    def test_cheapest(self, quotes):
        """cheapest over [A 100, B 80, C 120] is B."""
        assert resolve_action(Cheapest(), quotes) == "b"

    def test_fastest(self, quotes):
        assert resolve_action(Fastest(), quotes) == "c"

    def test_ties_pick_first_in_list_order(self):
        tied = [make_rate("x", "50", days=2), make_rate("y", "50", days=2)]
        assert resolve_action(Cheapest(), tied) == "x"
        assert resolve_action(Fastest(), tied) == "x"

    def test_literal_ignores_quotes(self):
        assert resolve_action(LiteralCarrier("estafeta"), []) == "estafeta"

    def test_sentinels_without_quotes_resolve_to_none(self):
        assert resolve_action(Cheapest(), []) is None
        assert resolve_action(Fastest(), []) is None


class TestRuleEngine:

    @pytest.mark.asyncio
    async def test_highest_priority_match_wins(self, quotes):
        repo = InMemoryRuleRepository([
            rule("low", priority=1, action=LiteralCarrier("ups")),
            rule("high", priority=10, action=Cheapest()),
        ])

        assert await RuleEngine(repo).select_carrier(USER, ShipmentFacts(weight=10), quotes) == "b"

    @pytest.mark.asyncio
    async def test_falls_through_to_next_matching_rule(self, quotes):
        repo = InMemoryRuleRepository([
            rule("heavy", priority=10, action=LiteralCarrier("dhl"), min_weight=50),
            rule("default", priority=1, action=Fastest()),
        ])

        assert await RuleEngine(repo).select_carrier(USER, ShipmentFacts(weight=10), quotes) == "c"

    @pytest.mark.asyncio
    async def test_equal_priorities_keep_insertion_order(self, quotes):
        repo = InMemoryRuleRepository([
            rule("first", priority=5, action=LiteralCarrier("fedex")),
            rule("second", priority=5, action=LiteralCarrier("ups")),
        ])

        assert await RuleEngine(repo).select_carrier(USER, ShipmentFacts(weight=1), quotes) == "fedex"

    @pytest.mark.asyncio
    async def test_inactive_rules_ignored(self, quotes):
        inactive = rule("off", priority=100, action=LiteralCarrier("dhl"))
        inactive.is_active = False
        repo = InMemoryRuleRepository([inactive, rule("on", priority=1, action=LiteralCarrier("ups"))])

        assert await RuleEngine(repo).select_carrier(USER, ShipmentFacts(weight=1), quotes) == "ups"

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self, quotes):
        repo = InMemoryRuleRepository([rule(min_weight=100)])

        assert await RuleEngine(repo).select_carrier(USER, ShipmentFacts(weight=1), quotes) is None

    @pytest.mark.asyncio
    async def test_matching_sentinel_without_quotes_stops_evaluation(self):
        """First match wins even when it resolves to nothing."""
        repo = InMemoryRuleRepository([
            rule("cheap", priority=10, action=Cheapest()),
            rule("fallback", priority=1, action=LiteralCarrier("dhl")),
        ])

        assert await RuleEngine(repo).select_carrier(USER, ShipmentFacts(weight=1), []) is None

    @pytest.mark.asyncio
    async def test_rules_scoped_to_user(self, quotes):
        other = AutomationRule(user_id="someone-else", name="x", priority=1, action=LiteralCarrier("dhl"))
        repo = InMemoryRuleRepository([other])

        assert await RuleEngine(repo).select_carrier(USER, ShipmentFacts(weight=1), quotes) is None


class TestInMemoryRuleRepository:

    def test_update_and_remove(self):
        repo = InMemoryRuleRepository()
        r = repo.add(rule("a"))
        r.priority = 7
        repo.update(r)
        assert repo.list_rules(USER)[0].priority == 7

        repo.remove(r.id)
        assert repo.list_rules(USER) == []

    def test_missing_rule_raises(self):
        repo = InMemoryRuleRepository()
        with pytest.raises(KeyError):
            repo.remove("nope")
        with pytest.raises(KeyError):
            repo.update(rule())


class TestAutomationRuleFromDict:

    def test_nested_destination_shape(self):
        r = AutomationRule.from_dict(USER, {
            "name": "Heavy to Jalisco",
            "priority": 10,
            "preferredCarrier": "cheapest",
            "conditions": {
                "minWeight": 5,
                "maxWeight": 20,
                "maxCost": 500,
                "destination": {"states": ["Jalisco"]},
            },
        })

        assert r.action == Cheapest()
        assert r.conditions.min_weight == 5
        assert r.conditions.states == ["Jalisco"]
        assert r.conditions.max_cost == Decimal("500")
        assert r.is_active
