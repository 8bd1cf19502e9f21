"""
Client for the storefront's shipping calculation endpoint.
"""

from typing import Optional, TYPE_CHECKING

import httpx

from shared.logging import get_logger
from shared.errors import ShippingCalculationError, UpstreamError
from service_storefront.app.shipping.models import CalculationRequest, CalculationResult

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from service_storefront.app.shipping.calculator import CancellationToken


SERVICE_NAME = "shipping"


class ShippingClient:
    """Posts calculation requests to ``/api/shipping/calculate``.

    ``calculate`` matches the fetcher signature expected by
    :class:`~service_storefront.app.shipping.calculator.ShippingCalculator`.
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint_url = endpoint_url
        self.timeout = timeout
        self.logger = get_logger("storefront.shipping_client")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def calculate(
        self,
        request: CalculationRequest,
        token: Optional["CancellationToken"] = None,
    ) -> CalculationResult:
        """Request a quote.

        Raises ``UpstreamError`` for transport failures, non-2xx statuses and
        malformed payloads, ``ShippingCalculationError`` when the endpoint
        answers ``success: false`` and ``CalculationCancelledError`` when
        ``token`` was cancelled while the request was in flight.
        """
        try:
            response = await self._get_client().post(self.endpoint_url, json=request.to_payload())
        except httpx.HTTPError as exc:
            raise UpstreamError(SERVICE_NAME, "Shipping endpoint unreachable", details={"error": str(exc)}) from exc

        if token is not None:
            token.raise_if_cancelled()

        if not response.is_success:
            raise UpstreamError(
                SERVICE_NAME,
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(SERVICE_NAME, "Malformed shipping response") from exc

        if not isinstance(data, dict):
            raise UpstreamError(SERVICE_NAME, "Malformed shipping response")

        if not data.get("success"):
            raise ShippingCalculationError(data.get("message"))

        try:
            return CalculationResult.from_payload(data.get("shipping"))
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamError(SERVICE_NAME, "Malformed shipping response", details={"error": str(exc)}) from exc
