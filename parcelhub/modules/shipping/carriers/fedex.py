"""
FedEx Carrier Implementation

- OAuth2 client credentials (client_id/client_secret in the form body)
- Bearer token cached per adapter, refreshed before expiry
- Transit time enum (ONE_DAY..FIVE_DAYS) mapped to days, default 3
- No cancellation or address validation API
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from parcelhub.core.exceptions import CarrierUnavailable, NotFound, NotSupported
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

FEDEX_PRODUCTION_URL = "https://apis.fedex.com"
FEDEX_SANDBOX_URL = "https://apis-sandbox.fedex.com"

OAUTH_TOKEN_PATH = "/oauth/token"
RATE_PATH = "/rate/v1/rates/quotes"
SHIP_PATH = "/ship/v1/shipments"
TRACK_PATH = "/track/v1/trackingnumbers"

DEFAULT_SERVICE_TYPE = "FEDEX_GROUND"
DEFAULT_TRANSIT_DAYS = 3

TRANSIT_DAYS = {
    "ONE_DAY": 1,
    "TWO_DAYS": 2,
    "THREE_DAYS": 3,
    "FOUR_DAYS": 4,
    "FIVE_DAYS": 5,
}

FEDEX_MOCK_SERVICES = [
    ("STANDARD_OVERNIGHT", "Standard Overnight", "1.0", 3),
    ("FEDEX_EXPRESS_SAVER", "Express Saver", "0.85", 4),
]

# FedEx derived status codes
FEDEX_STATUS_MAP = {
    "OC": ShipmentStatus.PENDING,  # Label created
    "PU": ShipmentStatus.IN_TRANSIT,
    "IT": ShipmentStatus.IN_TRANSIT,
    "AR": ShipmentStatus.IN_TRANSIT,
    "DP": ShipmentStatus.IN_TRANSIT,
    "AF": ShipmentStatus.IN_TRANSIT,
    "IN TRANSIT": ShipmentStatus.IN_TRANSIT,
    "OD": ShipmentStatus.OUT_FOR_DELIVERY,
    "ON FEDEX VEHICLE FOR DELIVERY": ShipmentStatus.OUT_FOR_DELIVERY,
    "DL": ShipmentStatus.DELIVERED,
    "DELIVERED": ShipmentStatus.DELIVERED,
    "RS": ShipmentStatus.RETURNED,
    "RETURNED TO SHIPPER": ShipmentStatus.RETURNED,
    "CA": ShipmentStatus.CANCELLED,
    "CANCELLED": ShipmentStatus.CANCELLED,
    "DE": ShipmentStatus.EXCEPTION,
    "SE": ShipmentStatus.EXCEPTION,
    "DELIVERY EXCEPTION": ShipmentStatus.EXCEPTION,
}


def transit_days(transit_time: Optional[str]) -> int:
    """Map a FedEx transitTime enum to days."""
    if not transit_time:
        return DEFAULT_TRANSIT_DAYS
    return TRANSIT_DAYS.get(transit_time.upper(), DEFAULT_TRANSIT_DAYS)


def _fedex_error_message(payload: Dict[str, Any]) -> Optional[str]:
    errors = payload.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("message") or errors[0].get("code")
    return payload.get("error_description") or payload.get("message")


@register_carrier(CarrierCode.FEDEX)
class FedExCarrier(BaseCarrier):
    """FedEx shipping carrier implementation."""

    def __init__(self, config: CarrierConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._transport = CarrierTransport(
            "FedEx",
            timeout=config.timeout_seconds,
            error_extractor=_fedex_error_message,
            http_client=http_client,
        )
        self._tokens = OAuthTokenCache("FedEx", expiry_margin=config.token_expiry_margin_seconds)
        if self.is_mock:
            logger.warning("FedEx API credentials are not configured. Carrier will operate in mock mode.")

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.FEDEX

    @property
    def carrier_name(self) -> str:
        return "FedEx"

    @property
    def base_url(self) -> str:
        if self.config.base_url:
            return self.config.base_url.rstrip("/")
        return FEDEX_SANDBOX_URL if self.config.sandbox else FEDEX_PRODUCTION_URL

    async def _fetch_token(self) -> AccessToken:
        response = await self._transport.request(
            "POST",
            f"{self.base_url}{OAUTH_TOKEN_PATH}",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            data={
                "grant_type": "client_credentials",
                "client_id": self.config.credentials.api_key,
                "client_secret": self.config.credentials.api_secret,
            },
        )
        if not response.get("access_token"):
            raise CarrierUnavailable(
                "FedEx OAuth response missing access_token",
                carrier=self.carrier_code.value,
                code="AUTH_FAILED",
            )
        return AccessToken(value=response["access_token"], expires_in=int(response.get("expires_in", 3600)))

    async def _request(self, path: str, body: dict) -> Dict[str, Any]:
        """Make authenticated API request (FedEx APIs are all POST)."""
        token = await self._tokens.get_token(self._fetch_token)
        headers = {
            "Authorization": f"Bearer {token}",
            "X-locale": "en_US",
        }
        try:
            return await self._transport.request("POST", f"{self.base_url}{path}", headers=headers, json=body)
        except CarrierUnavailable as e:
            if e.code == "AUTH_FAILED":
                self._tokens.invalidate()
            raise

    # ==================== Mapping ====================

    @staticmethod
    def _to_fedex_address(address: Address) -> Dict[str, Any]:
        return {
            "streetLines": [address.street],
            "city": address.city,
            "stateOrProvinceCode": address.state,
            "postalCode": address.postal_code,
            "countryCode": address.country_code,
        }

    @staticmethod
    def _to_fedex_contact(address: Address, default_name: str) -> Dict[str, Any]:
        contact = {
            "personName": address.contact_name or default_name,
            "phoneNumber": address.phone or "0000000000",
        }
        if address.company:
            contact["companyName"] = address.company
        if address.email:
            contact["emailAddress"] = address.email
        return contact

    @staticmethod
    def _to_fedex_package(package: Package) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "weight": {"units": "KG" if package.weight_unit == "kg" else "LB", "value": package.weight},
        }
        if package.has_dimensions:
            item["dimensions"] = {
                "length": package.length,
                "width": package.width,
                "height": package.height,
                "units": "CM" if package.dimension_unit == "cm" else "IN",
            }
        if package.declared_value is not None:
            item["declaredValue"] = {
                "amount": float(package.declared_value),
                "currency": package.currency or "MXN",
            }
        return item

    def _account(self) -> Dict[str, str]:
        return {"value": self.config.credentials.account_number or ""}

    def _reply_to_rate(self, detail: Dict[str, Any]) -> CarrierRate:
        rated = (detail.get("ratedShipmentDetails") or [{}])[0]
        charge = (rated.get("shipmentRateDetail") or {}).get("totalNetCharge", rated.get("totalNetCharge", 0))
        commit = detail.get("commit") or {}
        transit_time = detail.get("transitTime") or (commit.get("transitDays") or {}).get("minimumTransitTime")

        return CarrierRate(
            carrier=self.carrier_code.value,
            carrier_name=self.carrier_name,
            service_code=detail.get("serviceType", ""),
            service_name=detail.get("serviceName") or detail.get("serviceType", ""),
            price=to_money(charge),
            currency=rated.get("currency") or "USD",
            estimated_days=transit_days(transit_time),
            metadata={
                "rate_type": rated.get("rateType"),
                "transit_time": transit_time,
            },
        )

    # ==================== Carrier Interface ====================

    async def get_rates(
        self,
        origin: Address,
        destination: Address,
        packages: List[Package]
    ) -> List[CarrierRate]:
        """Get shipping rates from FedEx."""
        if self.is_mock:
            return placeholder_rates(self.carrier_code.value, self.carrier_name, FEDEX_MOCK_SERVICES, packages)

        request_data = {
            "accountNumber": self._account(),
            "requestedShipment": {
                "shipper": {"address": self._to_fedex_address(origin)},
                "recipient": {"address": self._to_fedex_address(destination)},
                "pickupType": "DROPOFF_AT_FEDEX_LOCATION",
                "rateRequestType": ["ACCOUNT", "PREFERRED"],
                "requestedPackageLineItems": [self._to_fedex_package(p) for p in packages],
            },
        }

        response = await self._request(RATE_PATH, request_data)
        details = (response.get("output") or {}).get("rateReplyDetails") or []
        rates = collect_rates(self.carrier_name, details, self._reply_to_rate)

        logger.info(f"FedEx returned {len(rates)} rates")
        return rates

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        """Create a shipment and generate label via FedEx."""
        request.validate()
        service_type = request.service_code or DEFAULT_SERVICE_TYPE

        if self.is_mock:
            return placeholder_shipment(self.carrier_code.value, request, FEDEX_MOCK_SERVICES)

        ship_request: Dict[str, Any] = {
            "accountNumber": self._account(),
            "labelResponseOptions": "URL_ONLY",
            "requestedShipment": {
                "shipper": {
                    "contact": self._to_fedex_contact(request.origin, "Shipper"),
                    "address": self._to_fedex_address(request.origin),
                },
                "recipients": [{
                    "contact": self._to_fedex_contact(request.destination, "Recipient"),
                    "address": self._to_fedex_address(request.destination),
                }],
                "shipDatestamp": datetime.now(timezone.utc).strftime("%Y-%m-%d"),
                "serviceType": service_type,
                "packagingType": "YOUR_PACKAGING",
                "pickupType": "DROPOFF_AT_FEDEX_LOCATION",
                "shippingChargesPayment": {"paymentType": "SENDER"},
                "labelSpecification": {
                    "labelFormatType": "COMMON2D",
                    "imageType": "PDF",
                    "labelStockType": "PAPER_4X6",
                },
                "requestedPackageLineItems": [self._to_fedex_package(p) for p in request.packages],
            },
        }
        if request.reference:
            for item in ship_request["requestedShipment"]["requestedPackageLineItems"]:
                item["customerReferences"] = [{"customerReferenceType": "CUSTOMER_REFERENCE", "value": request.reference}]

        response = await self._request(SHIP_PATH, ship_request)

        shipments = (response.get("output") or {}).get("transactionShipments") or [{}]
        shipment = shipments[0]
        piece = (shipment.get("pieceResponses") or [{}])[0]
        tracking_number = piece.get("trackingNumber") or shipment.get("masterTrackingNumber")
        if not tracking_number:
            raise CarrierUnavailable(
                "FedEx returned a shipment without tracking number",
                carrier=self.carrier_code.value,
                code="BAD_RESPONSE",
            )

        documents = piece.get("packageDocuments") or []
        label = next((d for d in documents if d.get("contentType") == "LABEL"), None)
        rating = (shipment.get("completedShipmentDetail") or {}).get("shipmentRating") or {}
        rate_details = rating.get("shipmentRateDetails") or [{}]

        logger.info(f"FedEx shipment created: {tracking_number}")
        return ShipmentResult(
            tracking_number=tracking_number,
            label_url=(label or {}).get("url", ""),
            carrier=self.carrier_code.value,
            service_code=shipment.get("serviceType") or service_type,
            cost=to_money(rate_details[0].get("totalNetCharge")),
            currency=rate_details[0].get("currency") or "USD",
            metadata={
                "master_tracking_number": shipment.get("masterTrackingNumber"),
                "ship_date": shipment.get("shipDatestamp"),
            },
        )

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        """Get tracking information from FedEx."""
        if self.is_mock:
            return placeholder_tracking(self.carrier_code.value, tracking_number)

        request_data = {
            "includeDetailedScans": True,
            "trackingInfo": [{"trackingNumberInfo": {"trackingNumber": tracking_number}}],
        }
        response = await self._request(TRACK_PATH, request_data)

        complete = ((response.get("output") or {}).get("completeTrackResults") or [{}])[0]
        results = complete.get("trackResults") or []
        if not results or results[0].get("error"):
            raise NotFound(
                f"No FedEx tracking information for {tracking_number}",
                carrier=self.carrier_code.value,
                details={"carrier_error": results[0].get("error") if results else None},
            )
        result = results[0]

        events = []
        for scan in result.get("scanEvents") or []:
            timestamp = parse_timestamp(scan.get("date"))
            if timestamp is None:
                continue
            code = scan.get("derivedStatusCode") or scan.get("eventType", "")
            location = scan.get("scanLocation") or {}
            place = ", ".join(p for p in (location.get("city"), location.get("stateOrProvinceCode")) if p)
            events.append(TrackingEvent(
                timestamp=timestamp,
                status=self.map_status(code),
                status_code=code,
                description=scan.get("eventDescription", ""),
                location=place or None,
            ))

        latest = result.get("latestStatusDetail") or {}
        native_status = latest.get("code") or latest.get("statusByLocale") or ""
        estimated = next(
            (dt.get("dateTime") for dt in result.get("dateAndTimes") or []
             if dt.get("type") in ("ESTIMATED_DELIVERY", "ACTUAL_DELIVERY")),
            None,
        )

        return TrackingInfo(
            tracking_number=(result.get("trackingNumberInfo") or {}).get("trackingNumber") or tracking_number,
            carrier=self.carrier_code.value,
            status=self.map_status(native_status),
            events=events,
            estimated_delivery=parse_timestamp(estimated),
            metadata={"carrier_status": native_status, "description": latest.get("description")},
        )

    async def cancel_shipment(self, tracking_number: str) -> bool:
        """Cancellation is not offered through this integration."""
        logger.warning(f"FedEx cancellation requested for {tracking_number}, not supported")
        raise NotSupported("FedEx does not support shipment cancellation", carrier=self.carrier_code.value)

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://www.fedex.com/fedextrack/?trknbr={tracking_number}"

    def map_status(self, carrier_status: str) -> ShipmentStatus:
        """Map FedEx status to ShipmentStatus."""
        return normalize_status(FEDEX_STATUS_MAP, carrier_status)

    async def close(self) -> None:
        await self._transport.close()
