"""
parcelhub Exception Hierarchy

Structured exception classes for the carrier orchestration core.
All exceptions include code, message, and details for logging and debugging.

Exception Hierarchy:
    ParcelHubError
    └── ShippingError
        ├── CarrierError
        │   ├── CarrierUnavailable   (transient: network, auth, 5xx - retryable)
        │   ├── CarrierRejected      (carrier-side validation - not retryable)
        │   ├── NotFound             (unknown tracking number)
        │   └── NotSupported         (carrier lacks the capability)
        ├── ServiceUnavailable       (circuit breaker exhausted or open)
        ├── ShipmentValidationError  (request rejected before dispatch)
        └── UnknownCarrier           (carrier name not registered)
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ParcelHubError(Exception):
    """
    Base exception for all parcelhub errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "PARCELHUB_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ShippingError(ParcelHubError):
    """Base exception for shipping-related errors."""
    default_code = "SHIPPING_ERROR"
    default_severity = "P1"


# =============================================================================
# CARRIER ERRORS
# =============================================================================

class CarrierError(ShippingError):
    """Error raised by a carrier adapter."""
    default_code = "CARRIER_ERROR"

    def __init__(self, message: str, carrier: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["carrier"] = carrier
        self.carrier = carrier
        super().__init__(message, details=details, **kwargs)


class CarrierUnavailable(CarrierError):
    """Network, authentication or server-side failure. Safe to retry."""
    default_code = "CARRIER_UNAVAILABLE"


class CarrierRejected(CarrierError):
    """Carrier refused the request (bad address, invalid service...)."""
    default_code = "CARRIER_REJECTED"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        carrier: Optional[str] = None,
        carrier_error_code: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["carrier_error_code"] = carrier_error_code
        super().__init__(message, carrier=carrier, details=details, **kwargs)


class NotFound(CarrierError):
    """Carrier has no record of the tracking number."""
    default_code = "TRACKING_NOT_FOUND"
    default_severity = "P3"


class NotSupported(CarrierError):
    """Carrier does not offer this capability at all."""
    default_code = "CAPABILITY_NOT_SUPPORTED"
    default_severity = "P3"


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================

class ServiceUnavailable(ShippingError):
    """Circuit breaker exhausted its attempts or is open."""
    default_code = "SERVICE_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        circuit_name: Optional[str] = None,
        attempts: int = 0,
        retry_after_seconds: float = 0.0,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "circuit_name": circuit_name,
            "attempts": attempts,
            "retry_after_seconds": retry_after_seconds,
        })
        self.circuit_name = circuit_name
        self.attempts = attempts
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, details=details, **kwargs)


class ShipmentValidationError(ShippingError):
    """Shipment request failed local validation before dispatch."""
    default_code = "SHIPMENT_VALIDATION_FAILED"
    default_severity = "P3"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["field"] = field
        super().__init__(message, details=details, **kwargs)


class UnknownCarrier(ShippingError):
    """No adapter is registered for the requested carrier."""
    default_code = "CARRIER_NOT_REGISTERED"
    default_severity = "P2"


# Errors that describe a definitive answer from the carrier (or the caller's
# input) rather than a transient fault. Never retried, never trip a circuit.
NON_RETRYABLE_ERRORS = (
    CarrierRejected,
    NotFound,
    NotSupported,
    ShipmentValidationError,
)


def is_retryable(error: BaseException) -> bool:
    """Check whether an error should be retried by the circuit breaker."""
    return not isinstance(error, NON_RETRYABLE_ERRORS)
