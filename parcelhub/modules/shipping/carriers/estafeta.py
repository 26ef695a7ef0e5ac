"""
Estafeta Carrier Implementation (regional, Mexico)

- JSON token endpoint (/auth/token) returning token/expiresIn
- Spanish wire format (calle, ciudad, codigoPostal, peso, largo...)
- Packages always sent in kg/cm
- Supports cancellation and address validation
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from parcelhub.core.exceptions import CarrierError, CarrierUnavailable, NotFound
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

ESTAFETA_PRODUCTION_URL = "https://api.estafeta.com/v1"
ESTAFETA_SANDBOX_URL = "https://api-sandbox.estafeta.com/v1"

CANCEL_REASON = "Cancelación solicitada por el cliente"

ESTAFETA_MOCK_SERVICES = [
    ("DIA_SIGUIENTE", "Día Siguiente", "0.95", 1),
    ("TERRESTRE", "Terrestre", "0.7", 4),
]

ESTAFETA_STATUS_MAP = {
    "PENDIENTE": ShipmentStatus.PENDING,
    "RECOLECTADO": ShipmentStatus.IN_TRANSIT,
    "EN_TRANSITO": ShipmentStatus.IN_TRANSIT,
    "EN_REPARTO": ShipmentStatus.OUT_FOR_DELIVERY,
    "ENTREGADO": ShipmentStatus.DELIVERED,
    "DEVUELTO": ShipmentStatus.RETURNED,
    "CANCELADO": ShipmentStatus.CANCELLED,
    "EXCEPCION": ShipmentStatus.EXCEPTION,
}


def _estafeta_error_message(payload: Dict[str, Any]) -> Optional[str]:
    return payload.get("mensaje") or payload.get("message")


def to_estafeta_address(address: Address) -> Dict[str, Any]:
    data = {
        "calle": address.street,
        "ciudad": address.city,
        "estado": address.state,
        "codigoPostal": address.postal_code,
        "pais": address.country_code or "MX",
    }
    optional = {
        "empresa": address.company,
        "nombre": address.contact_name,
        "telefono": address.phone,
        "email": address.email,
    }
    data.update({k: v for k, v in optional.items() if v})
    return data


def from_estafeta_address(data: Dict[str, Any], original: Address) -> Address:
    return Address(
        street=data.get("calle") or original.street,
        city=data.get("ciudad") or original.city,
        state=data.get("estado") or original.state,
        postal_code=data.get("codigoPostal") or original.postal_code,
        country=data.get("pais") or original.country,
        company=data.get("empresa") or original.company,
        contact_name=data.get("nombre") or original.contact_name,
        phone=data.get("telefono") or original.phone,
        email=data.get("email") or original.email,
    )


def to_estafeta_parcel(package: Package) -> Dict[str, Any]:
    """Convert a package to Estafeta's parcel, in kg and cm."""
    length, width, height = package.dimensions_in_cm()
    parcel: Dict[str, Any] = {
        "peso": float(package.weight_in_kg()),
        "largo": float(length),
        "ancho": float(width),
        "alto": float(height),
    }
    if package.description:
        parcel["contenido"] = package.description
    if package.declared_value is not None:
        parcel["valorDeclarado"] = float(package.declared_value)
    return parcel


@register_carrier(CarrierCode.ESTAFETA)
class EstafetaCarrier(BaseCarrier):
    """Estafeta shipping carrier implementation."""

    def __init__(self, config: CarrierConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._transport = CarrierTransport(
            "Estafeta",
            timeout=config.timeout_seconds,
            error_extractor=_estafeta_error_message,
            http_client=http_client,
        )
        self._tokens = OAuthTokenCache("Estafeta", expiry_margin=config.token_expiry_margin_seconds)
        if self.is_mock:
            logger.warning("Estafeta API credentials are not configured. Carrier will operate in mock mode.")

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.ESTAFETA

    @property
    def carrier_name(self) -> str:
        return "Estafeta"

    @property
    def base_url(self) -> str:
        if self.config.base_url:
            return self.config.base_url.rstrip("/")
        return ESTAFETA_SANDBOX_URL if self.config.sandbox else ESTAFETA_PRODUCTION_URL

    async def _fetch_token(self) -> AccessToken:
        response = await self._transport.request(
            "POST",
            f"{self.base_url}/auth/token",
            json={
                "apiKey": self.config.credentials.api_key,
                "apiSecret": self.config.credentials.api_secret,
            },
        )
        if not response.get("token"):
            raise CarrierUnavailable(
                "Estafeta auth response missing token",
                carrier=self.carrier_code.value,
                code="AUTH_FAILED",
            )
        return AccessToken(value=response["token"], expires_in=int(response.get("expiresIn", 3600)))

    async def _request(self, method: str, path: str, body: Optional[dict] = None) -> Dict[str, Any]:
        token = await self._tokens.get_token(self._fetch_token)
        try:
            return await self._transport.request(
                method, f"{self.base_url}{path}", headers={"Authorization": f"Bearer {token}"}, json=body,
            )
        except CarrierUnavailable as e:
            if e.code == "AUTH_FAILED":
                self._tokens.invalidate()
            raise

    def _quote_to_rate(self, quote: Dict[str, Any]) -> CarrierRate:
        return CarrierRate(
            carrier=self.carrier_code.value,
            carrier_name=self.carrier_name,
            service_code=quote.get("servicio", ""),
            service_name=quote.get("nombreServicio") or quote.get("servicio", ""),
            price=to_money(quote.get("precio")),
            currency=quote.get("moneda") or "MXN",
            estimated_days=int(quote.get("diasEstimados") or 0),
            features=tuple(quote.get("caracteristicas") or ()),
            metadata={
                "volumetric_weight": quote.get("pesoVolumetrico"),
                "estimated_delivery": quote.get("fechaEntregaEstimada"),
            },
        )

    # ==================== Carrier Interface ====================

    async def get_rates(
        self,
        origin: Address,
        destination: Address,
        packages: List[Package]
    ) -> List[CarrierRate]:
        """Get shipping rates from Estafeta."""
        if self.is_mock:
            return placeholder_rates(self.carrier_code.value, self.carrier_name, ESTAFETA_MOCK_SERVICES, packages)

        request_data = {
            "origen": {"codigoPostal": origin.postal_code, "ciudad": origin.city, "estado": origin.state},
            "destino": {"codigoPostal": destination.postal_code, "ciudad": destination.city, "estado": destination.state},
            "paquetes": [to_estafeta_parcel(p) for p in packages],
        }

        response = await self._request("POST", "/cotizaciones", request_data)

        quotes = response.get("cotizaciones") or []
        if not quotes:
            logger.warning("No rates available from Estafeta")
            return []

        rates = collect_rates(self.carrier_name, quotes, self._quote_to_rate)
        logger.info(f"Estafeta returned {len(rates)} rates")
        return rates

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        """Create a shipment (guía) with Estafeta."""
        request.validate(require_service=True)

        if self.is_mock:
            return placeholder_shipment(self.carrier_code.value, request, ESTAFETA_MOCK_SERVICES)

        request_data: Dict[str, Any] = {
            "origen": to_estafeta_address(request.origin),
            "destino": to_estafeta_address(request.destination),
            "paquetes": [to_estafeta_parcel(p) for p in request.packages],
            "servicio": request.service_code,
        }
        if request.reference:
            request_data["referencia"] = request.reference
        if request.instructions:
            request_data["instrucciones"] = request.instructions

        response = await self._request("POST", "/guias", request_data)

        tracking_number = response.get("numeroGuia")
        if not tracking_number:
            raise CarrierUnavailable(
                "Estafeta returned a shipment without tracking number",
                carrier=self.carrier_code.value,
                code="BAD_RESPONSE",
            )

        label = response.get("etiqueta") or {}
        logger.info(f"Estafeta shipment created: {tracking_number}")
        return ShipmentResult(
            tracking_number=tracking_number,
            label_url=label.get("url", ""),
            carrier=self.carrier_code.value,
            service_code=response.get("servicio") or request.service_code,
            cost=to_money(response.get("costo")),
            currency=response.get("moneda") or "MXN",
            estimated_delivery=parse_timestamp(response.get("fechaEntregaEstimada")),
            metadata={"label_format": label.get("formato")},
        )

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        """Get tracking information from Estafeta."""
        if self.is_mock:
            return placeholder_tracking(self.carrier_code.value, tracking_number)

        response = await self._request("GET", f"/rastreo/{tracking_number}")
        if not response.get("numeroGuia") and not response.get("eventos"):
            raise NotFound(
                f"No Estafeta tracking information for {tracking_number}",
                carrier=self.carrier_code.value,
            )

        events = []
        for event in response.get("eventos") or []:
            timestamp = parse_timestamp(event.get("fecha"), event.get("hora"))
            if timestamp is None:
                continue
            code = event.get("estatus", "")
            location = event.get("ubicacion") or ", ".join(
                p for p in (event.get("ciudad"), event.get("estado")) if p
            )
            events.append(TrackingEvent(
                timestamp=timestamp,
                status=self.map_status(code),
                status_code=code,
                description=event.get("descripcion", ""),
                location=location or None,
                metadata={"comments": event.get("comentarios")} if event.get("comentarios") else {},
            ))

        native_status = response.get("estatus", "")
        return TrackingInfo(
            tracking_number=response.get("numeroGuia") or tracking_number,
            carrier=self.carrier_code.value,
            status=self.map_status(native_status),
            events=events,
            estimated_delivery=parse_timestamp(response.get("fechaEntregaEstimada")),
            metadata={
                "carrier_status": native_status,
                "delivered_at": response.get("fechaEntregaReal"),
            },
        )

    async def cancel_shipment(self, tracking_number: str) -> bool:
        """Cancel a shipment with Estafeta."""
        if self.is_mock:
            logger.info(f"Estafeta mock mode: cancellation of {tracking_number} accepted")
            return True

        response = await self._request(
            "POST",
            f"/guias/{tracking_number}/cancelar",
            {"numeroGuia": tracking_number, "motivo": CANCEL_REASON},
        )

        if response.get("cancelado"):
            logger.info(f"Estafeta shipment {tracking_number} cancelled successfully")
            return True

        logger.warning(f"Estafeta declined cancellation of {tracking_number}: {response.get('mensaje')}")
        return False

    async def validate_address(self, address: Address) -> Optional[Address]:
        """Validate address with Estafeta; None when it cannot be validated."""
        if self.is_mock:
            return None

        try:
            response = await self._request("POST", "/validar-direccion", to_estafeta_address(address))
        except CarrierError as e:
            logger.error(f"Estafeta address validation failed: {e.message}")
            return None

        if response.get("valida") and response.get("direccion"):
            return from_estafeta_address(response["direccion"], address)
        return None

    def get_tracking_url(self, tracking_number: str) -> str:
        return f"https://www.estafeta.com/Herramientas/Rastreo?wayBill={tracking_number}"

    def map_status(self, carrier_status: str) -> ShipmentStatus:
        """Map Estafeta status to ShipmentStatus."""
        return normalize_status(ESTAFETA_STATUS_MAP, carrier_status)

    async def close(self) -> None:
        await self._transport.close()
