"""
Automation rule models

User-defined, priority-ordered policies that pick a carrier automatically.
Rules are owned by a user and mutated through CRUD outside the core;
the rule engine only reads them.

Action is a tagged variant rather than a magic string:
    LiteralCarrier("dhl") | Cheapest() | Fastest()
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Union


@dataclass(frozen=True)
class LiteralCarrier:
    """Always pick this carrier."""
    carrier: str

    def __str__(self) -> str:
        return self.carrier


@dataclass(frozen=True)
class Cheapest:
    """Pick the carrier with the lowest quoted price."""

    def __str__(self) -> str:
        return "cheapest"


@dataclass(frozen=True)
class Fastest:
    """Pick the carrier with the fewest estimated transit days."""

    def __str__(self) -> str:
        return "fastest"


RuleAction = Union[LiteralCarrier, Cheapest, Fastest]


def parse_action(value: Union[str, RuleAction]) -> RuleAction:
    """
    Parse a stored preferred-carrier value into a RuleAction.

    "cheapest" / "fastest" (any case) become the sentinels; anything else
    is taken literally as a carrier id.
    """
    if isinstance(value, (LiteralCarrier, Cheapest, Fastest)):
        return value

    normalized = value.strip()
    if not normalized:
        raise ValueError("Rule action cannot be empty")
    if normalized.lower() == "cheapest":
        return Cheapest()
    if normalized.lower() == "fastest":
        return Fastest()
    return LiteralCarrier(normalized)


@dataclass(frozen=True)
class RuleConditions:
    """
    Conditions a shipment must satisfy for a rule to fire.

    Absent bounds and empty allow-lists are unconstrained.
    Cost bounds apply to the mean price of the current quotes.
    """
    min_weight: Optional[float] = None
    max_weight: Optional[float] = None
    states: List[str] = field(default_factory=list)
    cities: List[str] = field(default_factory=list)
    min_cost: Optional[Decimal] = None
    max_cost: Optional[Decimal] = None

    @property
    def has_cost_bounds(self) -> bool:
        return self.min_cost is not None or self.max_cost is not None

    @property
    def is_empty(self) -> bool:
        return (
            self.min_weight is None
            and self.max_weight is None
            and not self.states
            and not self.cities
            and not self.has_cost_bounds
        )


@dataclass
class AutomationRule:
    """A user's automation rule."""
    user_id: str
    name: str
    priority: int
    action: RuleAction
    conditions: RuleConditions = field(default_factory=RuleConditions)
    is_active: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, user_id: str, data: dict) -> "AutomationRule":
        """
        Build a rule from its stored/DTO shape.

        Accepts the nested destination form:
            {"name": ..., "priority": 10, "preferredCarrier": "cheapest",
             "conditions": {"minWeight": 5, "destination": {"states": [...]}}}
        """
        raw_conditions = data.get("conditions") or {}
        destination = raw_conditions.get("destination") or {}

        def _decimal(value):
            return Decimal(str(value)) if value is not None else None

        conditions = RuleConditions(
            min_weight=raw_conditions.get("minWeight"),
            max_weight=raw_conditions.get("maxWeight"),
            states=list(destination.get("states") or []),
            cities=list(destination.get("cities") or []),
            min_cost=_decimal(raw_conditions.get("minCost")),
            max_cost=_decimal(raw_conditions.get("maxCost")),
        )

        rule = cls(
            user_id=user_id,
            name=data["name"],
            priority=int(data["priority"]),
            action=parse_action(data["preferredCarrier"]),
            conditions=conditions,
            is_active=data.get("isActive", True),
        )
        if data.get("id"):
            rule.id = data["id"]
        return rule
