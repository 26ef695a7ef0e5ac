"""
UPS Carrier Implementation

- OAuth2 client credentials with a Basic header
- Rating via Shop (all available services in one call)
- Void API for cancellation, XAV for street-level address validation
"""
import base64
import dataclasses
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from parcelhub.core.exceptions import CarrierError, CarrierRejected, CarrierUnavailable, NotFound
from parcelhub.models.carrier import CarrierCode, CarrierConfig
from parcelhub.models.shipment import ShipmentStatus
from parcelhub.modules.shipping.carriers import register_carrier
from parcelhub.modules.shipping.carriers.auth import AccessToken, OAuthTokenCache
from parcelhub.modules.shipping.carriers.base import (
    Address,
    BaseCarrier,
    CarrierRate,
    Package,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingInfo,
    collect_rates,
    normalize_status,
    parse_timestamp,
    to_money,
)
from parcelhub.modules.shipping.carriers.mock import (
    placeholder_rates,
    placeholder_shipment,
    placeholder_tracking,
)
from parcelhub.modules.shipping.carriers.transport import CarrierTransport

logger = logging.getLogger(__name__)

# UPS API URLs
UPS_PRODUCTION_URL = "https://onlinetools.ups.com"
UPS_SANDBOX_URL = "https://wwwcie.ups.com"

# API Paths
OAUTH_TOKEN_PATH = "/security/v1/oauth/token"
ADDRESS_VALIDATION_PATH = "/api/addressvalidation/v1/1"  # 1 = street level validation
RATING_PATH = "/api/rating/v1/Shop"
SHIPPING_PATH = "/api/shipments/v1/ship"
TRACKING_PATH = "/api/track/v1/details"
VOID_PATH = "/api/shipments/v1/void/cancel"

DEFAULT_SERVICE_CODE = "03"  # Ground

UPS_SERVICE_NAMES = {
    "01": "UPS Next Day Air",
    "02": "UPS 2nd Day Air",
    "03": "UPS Ground",
    "07": "UPS Worldwide Express",
    "08": "UPS Worldwide Expedited",
    "11": "UPS Standard",
    "12": "UPS 3 Day Select",
    "13": "UPS Next Day Air Saver",
    "14": "UPS Next Day Air Early",
    "54": "UPS Worldwide Express Plus",
    "65": "UPS Worldwide Saver",
}

UPS_MOCK_SERVICES = [
    ("65", "UPS Worldwide Saver", "1.1", 2),
    ("11", "UPS Standard", "0.9", 5),
]

# UPS Status to ShipmentStatus mapping
UPS_STATUS_MAP = {
    # Label Created (Manifest)
    "M": ShipmentStatus.PENDING,
    "MV": ShipmentStatus.PENDING,
    "LABEL CREATED": ShipmentStatus.PENDING,
    "MANIFEST": ShipmentStatus.PENDING,
    "BILLING INFORMATION RECEIVED": ShipmentStatus.PENDING,
    # Picked Up / In Transit
    "P": ShipmentStatus.IN_TRANSIT,
    "PICKUP": ShipmentStatus.IN_TRANSIT,
    "I": ShipmentStatus.IN_TRANSIT,
    "IN TRANSIT": ShipmentStatus.IN_TRANSIT,
    "IN_TRANSIT": ShipmentStatus.IN_TRANSIT,
    # Out for Delivery
    "O": ShipmentStatus.OUT_FOR_DELIVERY,
    "OUT FOR DELIVERY": ShipmentStatus.OUT_FOR_DELIVERY,
    # Delivered
    "D": ShipmentStatus.DELIVERED,
    "DELIVERED": ShipmentStatus.DELIVERED,
    # Exception
    "X": ShipmentStatus.EXCEPTION,
    "EXCEPTION": ShipmentStatus.EXCEPTION,
    # Returned
    "RS": ShipmentStatus.RETURNED,
    "RETURNED": ShipmentStatus.RETURNED,
    # Voided
    "VOIDED": ShipmentStatus.CANCELLED,
}


def _as_list(value: Any) -> List[Any]:
    """UPS returns a dict for one element and a list for several."""
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _ups_error_message(payload: Dict[str, Any]) -> Optional[str]:
    errors = (payload.get("response") or {}).get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("message")
    return payload.get("message")


@register_carrier(CarrierCode.UPS)
class UPSCarrier(BaseCarrier):
    """UPS shipping carrier implementation."""

    def __init__(self, config: CarrierConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._transport = CarrierTransport(
            "UPS",
            timeout=config.timeout_seconds,
            error_extractor=_ups_error_message,
            http_client=http_client,
        )
        self._tokens = OAuthTokenCache("UPS", expiry_margin=config.token_expiry_margin_seconds)
        if self.is_mock:
            logger.warning("UPS API credentials are not configured. Carrier will operate in mock mode.")

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.UPS

    @property
    def carrier_name(self) -> str:
        return "UPS"

    @property
    def base_url(self) -> str:
        if self.config.base_url:
            return self.config.base_url.rstrip("/")
        return UPS_SANDBOX_URL if self.config.sandbox else UPS_PRODUCTION_URL

    async def _fetch_token(self) -> AccessToken:
        credentials = self.config.credentials
        auth_header = base64.b64encode(f"{credentials.api_key}:{credentials.api_secret}".encode()).decode()

        response = await self._transport.request(
            "POST",
            f"{self.base_url}{OAUTH_TOKEN_PATH}",
            headers={
                "Authorization": f"Basic {auth_header}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data={"grant_type": "client_credentials"},
        )
        if not response.get("access_token"):
            raise CarrierUnavailable(
                "UPS OAuth response missing access_token",
                carrier=self.carrier_code.value,
                code="AUTH_FAILED",
            )
        return AccessToken(value=response["access_token"], expires_in=int(response.get("expires_in", 14399)))

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Dict[str, Any]:
        """Make authenticated API request."""
        token = await self._tokens.get_token(self._fetch_token)
        headers = {
            "Authorization": f"Bearer {token}",
            "transId": uuid.uuid4().hex[:32],
            "transactionSrc": "parcelhub",
        }
        try:
            return await self._transport.request(
                method, f"{self.base_url}{path}", headers=headers, json=body, params=params,
            )
        except CarrierUnavailable as e:
            if e.code == "AUTH_FAILED":
                self._tokens.invalidate()
            raise

    # ==================== Mapping ====================

    @staticmethod
    def _to_ups_address(address: Address) -> Dict[str, Any]:
        return {
            "AddressLine": [address.street],
            "City": address.city,
            "StateProvinceCode": address.state,
            "PostalCode": address.postal_code,
            "CountryCode": address.country_code,
        }

    def _to_ups_party(self, address: Address, default_name: str) -> Dict[str, Any]:
        party: Dict[str, Any] = {
            "Name": address.company or address.contact_name or default_name,
            "Address": self._to_ups_address(address),
        }
        if address.contact_name:
            party["AttentionName"] = address.contact_name
        if address.phone:
            party["Phone"] = {"Number": address.phone}
        return party

    @staticmethod
    def _to_ups_package(package: Package, packaging_key: str = "Packaging") -> Dict[str, Any]:
        data: Dict[str, Any] = {
            packaging_key: {"Code": "02"},  # Customer Supplied Package
            "PackageWeight": {
                "UnitOfMeasurement": {"Code": "KGS" if package.weight_unit == "kg" else "LBS"},
                "Weight": str(package.weight),
            },
        }
        if package.has_dimensions:
            data["Dimensions"] = {
                "UnitOfMeasurement": {"Code": "CM" if package.dimension_unit == "cm" else "IN"},
                "Length": str(package.length),
                "Width": str(package.width),
                "Height": str(package.height),
            }
        return data

    def _shipper(self, origin: Address) -> Dict[str, Any]:
        shipper = self._to_ups_party(origin, "Shipper")
        shipper["ShipperNumber"] = self.config.credentials.account_number or ""
        return shipper

    def _rated_to_rate(self, rated: Dict[str, Any]) -> CarrierRate:
        service = rated.get("Service") or {}
        code = service.get("Code", "")
        negotiated = ((rated.get("NegotiatedRateCharges") or {}).get("TotalCharge")) or {}
        total = negotiated or rated.get("TotalCharges") or {}

        days = (rated.get("GuaranteedDelivery") or {}).get("BusinessDaysInTransit")
        if not days:
            arrival = ((rated.get("TimeInTransit") or {}).get("ServiceSummary") or {}).get("EstimatedArrival") or {}
            days = arrival.get("BusinessDaysInTransit")

        return CarrierRate(
            carrier=self.carrier_code.value,
            carrier_name=self.carrier_name,
            service_code=code,
            service_name=UPS_SERVICE_NAMES.get(code, service.get("Description") or f"UPS Service {code}"),
            price=to_money(total.get("MonetaryValue")),
            currency=total.get("CurrencyCode") or "USD",
            estimated_days=int(days or 0),
            features=("guaranteed",) if rated.get("GuaranteedDelivery") else (),
            metadata={"negotiated": bool(negotiated)},
        )

    # ==================== Carrier Interface ====================

    async def get_rates(
        self,
        origin: Address,
        destination: Address,
        packages: List[Package]
    ) -> List[CarrierRate]:
        """Get shipping rates from UPS."""
        if self.is_mock:
            return placeholder_rates(self.carrier_code.value, self.carrier_name, UPS_MOCK_SERVICES, packages)

        package_list = [self._to_ups_package(p, "PackagingType") for p in packages]
        request_data = {
            "RateRequest": {
                "Request": {
                    "RequestOption": "Shop",
                    "TransactionReference": {"CustomerContext": "Rate Request"},
                },
                "Shipment": {
                    "Shipper": self._shipper(origin),
                    "ShipTo": self._to_ups_party(destination, "Recipient"),
                    "ShipFrom": self._to_ups_party(origin, "Shipper"),
                    "Package": package_list if len(package_list) > 1 else package_list[0],
                },
            }
        }

        response = await self._request("POST", RATING_PATH, request_data)
        rated_shipments = _as_list((response.get("RateResponse") or {}).get("RatedShipment"))
        rates = collect_rates(self.carrier_name, rated_shipments, self._rated_to_rate)

        logger.info(f"UPS returned {len(rates)} rates")
        return rates

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        """Create a shipment and generate label via UPS."""
        request.validate()
        service_code = request.service_code or DEFAULT_SERVICE_CODE

        if self.is_mock:
            return placeholder_shipment(self.carrier_code.value, request, UPS_MOCK_SERVICES)

        package_list = [self._to_ups_package(p) for p in request.packages]
        shipment: Dict[str, Any] = {
            "Description": request.packages[0].description or "Shipment",
            "Shipper": self._shipper(request.origin),
            "ShipTo": self._to_ups_party(request.destination, "Recipient"),
            "ShipFrom": self._to_ups_party(request.origin, "Shipper"),
            "PaymentInformation": {
                "ShipmentCharge": {
                    "Type": "01",  # Transportation
                    "BillShipper": {"AccountNumber": self.config.credentials.account_number or ""},
                },
            },
            "Service": {"Code": service_code},
            "Package": package_list if len(package_list) > 1 else package_list[0],
        }
        if request.reference:
            shipment["ReferenceNumber"] = {
                "Code": "01",  # Customer Reference
                "Value": request.reference[:35],
            }

        request_data = {
            "ShipmentRequest": {
                "Request": {"TransactionReference": {"CustomerContext": request.reference or "Ship Request"}},
                "Shipment": shipment,
                "LabelSpecification": {"LabelImageFormat": {"Code": "GIF"}},
            }
        }

        response = await self._request("POST", SHIPPING_PATH, request_data)

        results = (response.get("ShipmentResponse") or {}).get("ShipmentResults") or {}
        package_results = _as_list(results.get("PackageResults"))
        package_result = package_results[0] if package_results else {}
        tracking_number = package_result.get("TrackingNumber") or results.get("ShipmentIdentificationNumber")
        if not tracking_number:
            raise CarrierUnavailable(
                "UPS returned a shipment without tracking number",
                carrier=self.carrier_code.value,
                code="BAD_RESPONSE",
            )

        graphic = (package_result.get("ShippingLabel") or {}).get("GraphicImage")
        total = (results.get("ShipmentCharges") or {}).get("TotalCharges") or {}

        logger.info(f"UPS shipment created: {tracking_number}")
        return ShipmentResult(
            tracking_number=tracking_number,
            label_url=f"data:image/gif;base64,{graphic}" if graphic else "",
            carrier=self.carrier_code.value,
            service_code=service_code,
            cost=to_money(total.get("MonetaryValue")),
            currency=total.get("CurrencyCode") or "USD",
            metadata={"shipment_id": results.get("ShipmentIdentificationNumber")},
        )

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        """Get tracking information from UPS."""
        if self.is_mock:
            return placeholder_tracking(self.carrier_code.value, tracking_number)

        response = await self._request(
            "GET",
            f"{TRACKING_PATH}/{tracking_number}",
            params={"locale": "en_US", "returnSignature": "false"},
        )

        shipments = _as_list((response.get("trackResponse") or {}).get("shipment"))
        packages = _as_list(shipments[0].get("package")) if shipments else []
        if not packages:
            raise NotFound(
                f"No UPS tracking information for {tracking_number}",
                carrier=self.carrier_code.value,
            )
        package = packages[0]

        events = []
        for activity in _as_list(package.get("activity")):
            timestamp = self._parse_ups_datetime(activity.get("date"), activity.get("time"))
            if timestamp is None:
                continue
            status_info = activity.get("status") or {}
            location = (activity.get("location") or {}).get("address") or {}
            place = ", ".join(p for p in (location.get("city"), location.get("stateProvince")) if p)
            code = status_info.get("type") or status_info.get("code", "")
            events.append(TrackingEvent(
                timestamp=timestamp,
                status=self.map_status(code),
                status_code=status_info.get("code") or code,
                description=status_info.get("description", ""),
                location=place or None,
            ))

        current = package.get("currentStatus") or {}
        native_status = current.get("code") or current.get("description") or ""
        status = self.map_status(current.get("description") or "")
        if status == ShipmentStatus.UNKNOWN and events:
            status = max(events, key=lambda e: e.timestamp).status

        delivery_dates = _as_list(package.get("deliveryDate"))
        estimated = None
        if delivery_dates:
            estimated = self._parse_ups_datetime(delivery_dates[0].get("date"), None)

        return TrackingInfo(
            tracking_number=package.get("trackingNumber") or tracking_number,
            carrier=self.carrier_code.value,
            status=status,
            events=events,
            estimated_delivery=estimated,
            metadata={"carrier_status": native_status},
        )

    async def cancel_shipment(self, tracking_number: str) -> bool:
        """Void a shipment (before pickup)."""
        if self.is_mock:
            logger.info(f"UPS mock mode: void of {tracking_number} accepted")
            return True

        try:
            response = await self._request("DELETE", f"{VOID_PATH}/{tracking_number}")
        except CarrierRejected as e:
            logger.warning(f"UPS declined void of {tracking_number}: {e.message}")
            return False

        summary = (response.get("VoidShipmentResponse") or {}).get("SummaryResult") or {}
        if (summary.get("Status") or {}).get("Code") == "1":
            logger.info(f"UPS shipment {tracking_number} voided successfully")
            return True

        logger.warning(f"UPS void returned non-success: {summary}")
        return False

    async def validate_address(self, address: Address) -> Optional[Address]:
        """Validate address using UPS Address Validation (XAV)."""
        if self.is_mock:
            return None

        request_data = {
            "XAVRequest": {
                "AddressKeyFormat": {
                    "ConsigneeName": address.contact_name or address.company or "",
                    "AddressLine": [address.street],
                    "PoliticalDivision2": address.city,
                    "PoliticalDivision1": address.state,
                    "PostcodePrimaryLow": address.postal_code,
                    "CountryCode": address.country_code,
                }
            }
        }

        try:
            response = await self._request("POST", ADDRESS_VALIDATION_PATH, request_data)
        except CarrierError as e:
            logger.error(f"UPS address validation error: {e.message}")
            return None

        xav_response = response.get("XAVResponse") or {}
        if xav_response.get("NoCandidatesIndicator") is not None:
            logger.info("UPS found no candidate for address")
            return None
        if xav_response.get("ValidAddressIndicator") is None:
            logger.info("UPS address is ambiguous, not correcting")
            return None

        candidates = _as_list(xav_response.get("Candidate"))
        key_format = (candidates[0].get("AddressKeyFormat") if candidates else None) \
            or xav_response.get("AddressKeyFormat") or {}
        if not key_format:
            return address

        lines = _as_list(key_format.get("AddressLine"))
        postal_code = "-".join(
            p for p in (key_format.get("PostcodePrimaryLow"), key_format.get("PostcodeExtendedLow")) if p
        )
        return dataclasses.replace(
            address,
            street=lines[0] if lines else address.street,
            city=key_format.get("PoliticalDivision2") or address.city,
            state=key_format.get("PoliticalDivision1") or address.state,
            postal_code=postal_code or address.postal_code,
            country=key_format.get("CountryCode") or address.country,
        )

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://www.ups.com/track?tracknum={tracking_number}"

    def map_status(self, carrier_status: str) -> ShipmentStatus:
        """Map UPS status to ShipmentStatus."""
        return normalize_status(UPS_STATUS_MAP, carrier_status)

    async def close(self) -> None:
        await self._transport.close()

    @staticmethod
    def _parse_ups_datetime(date_value: Optional[str], time_value: Optional[str]):
        """UPS sends YYYYMMDD and HHMMSS."""
        if not date_value or len(date_value) != 8:
            return None
        time_value = (time_value or "000000").ljust(6, "0")
        return parse_timestamp(
            f"{date_value[:4]}-{date_value[4:6]}-{date_value[6:]}",
            f"{time_value[:2]}:{time_value[2:4]}:{time_value[4:6]}",
        )
