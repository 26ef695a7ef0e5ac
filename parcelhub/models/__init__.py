from parcelhub.models.carrier import CarrierCode, CarrierConfig, CarrierCredentials
from parcelhub.models.shipment import ShipmentStatus
from parcelhub.models.rule import AutomationRule, Cheapest, Fastest, LiteralCarrier, RuleConditions
