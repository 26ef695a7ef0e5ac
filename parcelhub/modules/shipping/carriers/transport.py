"""
Carrier HTTP transport

Thin wrapper over httpx.AsyncClient used by every carrier adapter.
Translates transport failures and HTTP status codes into the carrier
error taxonomy so adapters only deal with successful payloads:

    network error / timeout   -> CarrierUnavailable
    401, 403                  -> CarrierUnavailable (AUTH_FAILED)
    404                       -> NotFound
    400, 409, 422             -> CarrierRejected (carrier message kept)
    429, 5xx, anything else   -> CarrierUnavailable
"""
import logging
from typing import Any, Callable, Dict, Optional

import httpx

from parcelhub.core.exceptions import CarrierRejected, CarrierUnavailable, NotFound

logger = logging.getLogger(__name__)

REJECTION_STATUSES = {400, 409, 422}
AUTH_STATUSES = {401, 403}

# Extracts the carrier's human-readable error message from an error payload
ErrorExtractor = Callable[[Dict[str, Any]], Optional[str]]


def _default_error_message(payload: Dict[str, Any]) -> Optional[str]:
    for key in ("message", "detail", "error_description", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class CarrierTransport:
    """
    HTTP transport bound to one carrier.

    The httpx client is created lazily and can be injected for tests
    (httpx.MockTransport).
    """

    def __init__(
        self,
        carrier: str,
        timeout: float = 30.0,
        error_extractor: ErrorExtractor = _default_error_message,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.carrier = carrier
        self.timeout = timeout
        self._error_extractor = error_extractor
        self._http_client = http_client
        # Injected clients belong to the caller and are not closed here
        self._owns_client = http_client is None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and return the decoded JSON body.

        Raises:
            CarrierUnavailable, CarrierRejected, NotFound
        """
        client = self._get_http_client()

        try:
            response = await client.request(
                method.upper(), url, headers=headers, json=json, data=data, params=params,
            )
        except httpx.TimeoutException as e:
            logger.error(f"{self.carrier} API timeout: {method} {url}")
            raise CarrierUnavailable(
                f"{self.carrier} request timed out", carrier=self.carrier, code="TIMEOUT",
            ) from e
        except httpx.RequestError as e:
            logger.error(f"{self.carrier} API request failed: {e}")
            raise CarrierUnavailable(
                f"Network error: {e}", carrier=self.carrier, code="NETWORK_ERROR",
            ) from e

        logger.debug(f"{self.carrier} API {method} {url} -> {response.status_code}")

        if response.status_code >= 400:
            self._raise_for_status(response)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise CarrierUnavailable(
                f"{self.carrier} returned a non-JSON response",
                carrier=self.carrier,
                code="BAD_RESPONSE",
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        try:
            error_data = response.json()
            if not isinstance(error_data, dict):
                error_data = {"raw": error_data}
        except ValueError:
            error_data = {"raw": response.text[:500]}

        status = response.status_code
        message = self._error_extractor(error_data) or f"{self.carrier} API error ({status})"
        details = {"status": status, "response": error_data}

        logger.error(f"{self.carrier} API error: {status} - {message}")

        if status in AUTH_STATUSES:
            raise CarrierUnavailable(
                f"Failed to authenticate with {self.carrier}",
                carrier=self.carrier, code="AUTH_FAILED", details=details,
            )
        if status == 404:
            raise NotFound(message, carrier=self.carrier, details=details)
        if status in REJECTION_STATUSES:
            raise CarrierRejected(message, carrier=self.carrier, carrier_error_code=str(status), details=details)
        raise CarrierUnavailable(message, carrier=self.carrier, code=f"HTTP_{status}", details=details)
