"""
Shipment status vocabulary

Every carrier-native tracking status is normalized to one of these values.
The native code is kept alongside for auditability.
"""
import enum


class ShipmentStatus(str, enum.Enum):
    """Normalized shipment lifecycle status"""
    PENDING = "pending"  # Label created, carrier does not have the package yet
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    EXCEPTION = "exception"  # Delivery issue
    UNKNOWN = "unknown"  # Carrier status we could not map
