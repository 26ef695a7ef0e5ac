"""
DHL Express Carrier Implementation (MyDHL API)

- Basic auth on every request, no token exchange
- Packages are sent in SI units (kg/cm)
- No cancellation or address validation API
"""
import base64
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from parcelhub.core.exceptions import CarrierUnavailable, NotFound, NotSupported
from parcelhub.models.carrier import CarrierCode, CarrierConfig
from parcelhub.models.shipment import ShipmentStatus
from parcelhub.modules.shipping.carriers import register_carrier
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

DHL_PRODUCTION_URL = "https://express.api.dhl.com/mydhlapi"
DHL_SANDBOX_URL = "https://express.api.dhl.com/mydhlapi/test"

DEFAULT_PRODUCT_CODE = "P"  # Express Worldwide

DHL_MOCK_SERVICES = [
    ("P", "Express Worldwide", "1.25", 1),
    ("N", "Express Domestic", "1.0", 2),
]

# DHL event type codes and shipment status codes
DHL_STATUS_MAP = {
    # Pending
    "SD": ShipmentStatus.PENDING,
    "PRE-TRANSIT": ShipmentStatus.PENDING,
    # In Transit
    "PU": ShipmentStatus.IN_TRANSIT,
    "PL": ShipmentStatus.IN_TRANSIT,
    "DF": ShipmentStatus.IN_TRANSIT,
    "AF": ShipmentStatus.IN_TRANSIT,
    "AR": ShipmentStatus.IN_TRANSIT,
    "CC": ShipmentStatus.IN_TRANSIT,
    "TRANSIT": ShipmentStatus.IN_TRANSIT,
    # Out for Delivery
    "WC": ShipmentStatus.OUT_FOR_DELIVERY,
    "OUT FOR DELIVERY": ShipmentStatus.OUT_FOR_DELIVERY,
    # Delivered
    "OK": ShipmentStatus.DELIVERED,
    "DELIVERED": ShipmentStatus.DELIVERED,
    # Returned
    "RT": ShipmentStatus.RETURNED,
    "RETURNED": ShipmentStatus.RETURNED,
    # Cancelled
    "CANCELLED": ShipmentStatus.CANCELLED,
    # Exception
    "OH": ShipmentStatus.EXCEPTION,
    "BA": ShipmentStatus.EXCEPTION,
    "FAILURE": ShipmentStatus.EXCEPTION,
}


def _dhl_error_message(payload: Dict[str, Any]) -> Optional[str]:
    for key in ("detail", "title", "message"):
        if payload.get(key):
            return str(payload[key])
    return None


@register_carrier(CarrierCode.DHL)
class DHLCarrier(BaseCarrier):
    """DHL Express shipping carrier implementation."""

    def __init__(self, config: CarrierConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._transport = CarrierTransport(
            "DHL",
            timeout=config.timeout_seconds,
            error_extractor=_dhl_error_message,
            http_client=http_client,
        )
        if self.is_mock:
            logger.warning("DHL API credentials are not configured. Carrier will operate in mock mode.")

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.DHL

    @property
    def carrier_name(self) -> str:
        return "DHL"

    @property
    def base_url(self) -> str:
        if self.config.base_url:
            return self.config.base_url.rstrip("/")
        return DHL_SANDBOX_URL if self.config.sandbox else DHL_PRODUCTION_URL

    def _auth_header(self) -> str:
        credentials = self.config.credentials
        raw = f"{credentials.api_key}:{credentials.api_secret}".encode()
        return f"Basic {base64.b64encode(raw).decode()}"

    async def _request(self, method: str, path: str, body: Optional[dict] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": self._auth_header(),
            "Message-Reference": str(uuid.uuid4()),
            "Message-Reference-Date": datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT"),
        }
        return await self._transport.request(method, f"{self.base_url}{path}", headers=headers, json=body)

    # ==================== Mapping ====================

    @staticmethod
    def _to_dhl_address(address: Address) -> Dict[str, Any]:
        return {
            "postalCode": address.postal_code,
            "cityName": address.city,
            "countryCode": address.country_code,
            "provinceCode": address.state,
        }

    def _to_dhl_party(self, address: Address, default_name: str) -> Dict[str, Any]:
        return {
            "postalAddress": {
                **self._to_dhl_address(address),
                "addressLine1": address.street,
            },
            "contactInformation": {
                "fullName": address.contact_name or default_name,
                "companyName": address.company or address.contact_name or default_name,
                "phone": address.phone or "0000000000",
                "email": address.email,
            },
        }

    @staticmethod
    def _to_dhl_package(package: Package) -> Dict[str, Any]:
        data: Dict[str, Any] = {"weight": float(package.weight_in_kg())}
        if package.has_dimensions:
            length, width, height = package.dimensions_in_cm()
            data["dimensions"] = {"length": float(length), "width": float(width), "height": float(height)}
        return data

    def _product_to_rate(self, product: Dict[str, Any]) -> Optional[CarrierRate]:
        prices = product.get("totalPrice") or []
        price_info = next((p for p in prices if p.get("currencyType") == "BILLC"), prices[0] if prices else None)
        if price_info is None:
            logger.warning(f"DHL product {product.get('productCode')} has no price, skipping")
            return None

        capabilities = product.get("deliveryCapabilities") or {}
        days = capabilities.get("totalTransitDays")
        if days is None:
            days = self._days_until(capabilities.get("estimatedDeliveryDateAndTime"))

        return CarrierRate(
            carrier=self.carrier_code.value,
            carrier_name=self.carrier_name,
            service_code=product.get("productCode", ""),
            service_name=product.get("productName") or product.get("productCode", ""),
            price=to_money(price_info.get("price")),
            currency=price_info.get("priceCurrency") or "MXN",
            estimated_days=int(days or 0),
            metadata={
                "estimated_delivery": capabilities.get("estimatedDeliveryDateAndTime"),
            },
        )

    @staticmethod
    def _days_until(value: Optional[str]) -> int:
        estimated = parse_timestamp(value)
        if estimated is None:
            return 0
        return max(0, (estimated.date() - datetime.now(timezone.utc).date()).days)

    # ==================== Carrier Interface ====================

    async def get_rates(
        self,
        origin: Address,
        destination: Address,
        packages: List[Package]
    ) -> List[CarrierRate]:
        """Get shipping rates from DHL."""
        if self.is_mock:
            return placeholder_rates(self.carrier_code.value, self.carrier_name, DHL_MOCK_SERVICES, packages)

        request_data = {
            "customerDetails": {
                "shipperDetails": self._to_dhl_address(origin),
                "receiverDetails": self._to_dhl_address(destination),
            },
            "accounts": self._accounts(),
            "plannedShippingDateAndTime": self._planned_date(),
            "unitOfMeasurement": "metric",
            "isCustomsDeclarable": origin.country_code != destination.country_code,
            "packages": [self._to_dhl_package(p) for p in packages],
        }

        response = await self._request("POST", "/rates", request_data)

        rates = collect_rates(self.carrier_name, response.get("products") or [], self._product_to_rate)

        logger.info(f"DHL returned {len(rates)} rates")
        return rates

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        """Create a shipment and generate label via DHL."""
        request.validate()
        product_code = request.service_code or DEFAULT_PRODUCT_CODE

        if self.is_mock:
            return placeholder_shipment(self.carrier_code.value, request, DHL_MOCK_SERVICES)

        ship_request: Dict[str, Any] = {
            "plannedShippingDateAndTime": self._planned_date(),
            "pickup": {"isRequested": False},
            "productCode": product_code,
            "accounts": self._accounts(),
            "customerDetails": {
                "shipperDetails": self._to_dhl_party(request.origin, "Shipper"),
                "receiverDetails": self._to_dhl_party(request.destination, "Recipient"),
            },
            "content": {
                "packages": [self._to_dhl_package(p) for p in request.packages],
                "isCustomsDeclarable": request.origin.country_code != request.destination.country_code,
                "description": request.packages[0].description or "Shipment",
                "incoterm": "DAP",
                "unitOfMeasurement": "metric",
            },
        }
        if request.reference:
            ship_request["customerReferences"] = [{"value": request.reference[:35], "typeCode": "CU"}]
        if request.instructions:
            ship_request["shipmentNotification"] = [{"typeCode": "email", "bespokeMessage": request.instructions}]

        response = await self._request("POST", "/shipments", ship_request)

        tracking_number = response.get("shipmentTrackingNumber")
        if not tracking_number:
            raise CarrierUnavailable(
                "DHL returned a shipment without tracking number",
                carrier=self.carrier_code.value,
                code="BAD_RESPONSE",
            )

        documents = response.get("documents") or []
        label = next((d for d in documents if d.get("typeCode") == "label"), documents[0] if documents else None)
        label_url = f"data:application/pdf;base64,{label['content']}" if label and label.get("content") else ""

        charges = response.get("shipmentCharges") or []
        charge = next((c for c in charges if c.get("currencyType") == "BILLC"), charges[0] if charges else {})

        logger.info(f"DHL shipment created: {tracking_number}")
        return ShipmentResult(
            tracking_number=tracking_number,
            label_url=label_url,
            carrier=self.carrier_code.value,
            service_code=product_code,
            cost=to_money(charge.get("price")),
            currency=charge.get("priceCurrency") or "MXN",
            estimated_delivery=parse_timestamp(
                (response.get("estimatedDeliveryDate") or {}).get("estimatedDeliveryDate")
            ),
            metadata={"dispatch_confirmation": response.get("dispatchConfirmationNumber")},
        )

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        """Get tracking information from DHL."""
        if self.is_mock:
            return placeholder_tracking(self.carrier_code.value, tracking_number)

        response = await self._request("GET", f"/shipments/{tracking_number}/tracking")

        shipments = response.get("shipments") or []
        if not shipments:
            raise NotFound(
                f"No DHL tracking information for {tracking_number}",
                carrier=self.carrier_code.value,
            )
        shipment = shipments[0]

        events = []
        for event in shipment.get("events") or []:
            timestamp = parse_timestamp(event.get("date"), event.get("time"))
            if timestamp is None:
                continue
            service_area = event.get("serviceArea") or []
            if isinstance(service_area, dict):
                service_area = [service_area]
            code = event.get("typeCode", "")
            events.append(TrackingEvent(
                timestamp=timestamp,
                status=self.map_status(code),
                status_code=code,
                description=event.get("description", ""),
                location=service_area[0].get("description") if service_area else None,
            ))

        status_info = shipment.get("status") or {}
        native_status = status_info.get("statusCode") or status_info.get("status") or ""
        status = self.map_status(native_status)
        if status == ShipmentStatus.UNKNOWN and events:
            status = max(events, key=lambda e: e.timestamp).status

        return TrackingInfo(
            tracking_number=shipment.get("shipmentTrackingNumber") or tracking_number,
            carrier=self.carrier_code.value,
            status=status,
            events=events,
            estimated_delivery=parse_timestamp(shipment.get("estimatedTimeOfDelivery")),
            metadata={"carrier_status": native_status},
        )

    async def cancel_shipment(self, tracking_number: str) -> bool:
        """DHL Express has no cancellation API."""
        logger.warning(f"DHL cancellation requested for {tracking_number}, not supported")
        raise NotSupported("DHL does not support shipment cancellation", carrier=self.carrier_code.value)

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://www.dhl.com/mx-es/home/tracking/tracking-express.html?submit=1&tracking-id={tracking_number}"

    def map_status(self, carrier_status: str) -> ShipmentStatus:
        """Map DHL status to ShipmentStatus."""
        return normalize_status(DHL_STATUS_MAP, carrier_status)

    async def close(self) -> None:
        await self._transport.close()

    # ==================== Helpers ====================

    def _accounts(self) -> List[Dict[str, str]]:
        account_number = self.config.credentials.account_number
        return [{"typeCode": "shipper", "number": account_number}] if account_number else []

    @staticmethod
    def _planned_date() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S GMT+00:00")
