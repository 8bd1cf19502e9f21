"""
WooCommerce REST API client for the Storefront service.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import httpx

from shared.logging import get_logger
from shared.errors import NotFoundError, UpstreamError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, CircuitBreakerState
from shared.retry import retry_on_exception, RetryConfig, RetryError

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


SERVICE_NAME = "woocommerce"
USER_AGENT = "Storefront-Access-Layer/1.0"

SORT_PARAMS: Dict[str, Dict[str, str]] = {
    "latest": {"orderby": "date", "order": "desc"},
    "popular": {"orderby": "popularity"},
    "price_asc": {"orderby": "price", "order": "asc"},
    "price_desc": {"orderby": "price", "order": "desc"},
    "rating": {"orderby": "rating"},
}


@dataclass
class ProductPage:
    """One page of products plus WordPress pagination headers."""
    data: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    total_pages: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "total": self.total, "totalPages": self.total_pages}


class WooCommerceClient:
    """Client for the WooCommerce ``wc/v3`` REST API."""

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("storefront.woocommerce_client")

        self._auth = httpx.BasicAuth(consumer_key, consumer_secret)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=(RetryError, UpstreamError),
            name="woocommerce",
        )
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self._send = retry_on_exception((httpx.TransportError,), config=self.retry_config)(self._send_once)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=self._auth,
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send_once(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        client = self._get_client()
        if self.metrics:
            with self.metrics.time_operation("upstream_request_duration_seconds", operation=operation):
                return await client.request(method, path, **kwargs)
        return await client.request(method, path, **kwargs)

    async def _call_upstream(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        """Send a request, raising on 5xx so server errors count against the breaker."""
        response = await self._send(method, path, operation, **kwargs)
        if response.status_code >= 500:
            raise self._http_error(response, operation)
        return response

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        """Send a request and map failures onto shared errors."""
        try:
            response = await self.circuit_breaker.call(self._call_upstream, method, path, operation, **kwargs)
        except CircuitBreakerOpenException as exc:
            self.logger.warning("WooCommerce circuit open", operation=operation)
            raise UpstreamError(SERVICE_NAME, "Service temporarily unavailable", details={"error": str(exc)})
        except RetryError as exc:
            self.logger.error("WooCommerce unreachable", operation=operation, error=str(exc.last_exception))
            raise UpstreamError(SERVICE_NAME, "Service unavailable", details={"error": str(exc.last_exception)})

        if response.status_code >= 400:
            raise self._http_error(response, operation)
        return response

    def _http_error(self, response: httpx.Response, operation: str) -> Exception:
        upstream_code, message = self._extract_error(response)
        self.logger.error(
            "WooCommerce API error",
            operation=operation,
            status_code=response.status_code,
            upstream_code=upstream_code,
        )
        if response.status_code == 404:
            return NotFoundError(message or "Resource not found", details={"upstream_code": upstream_code})
        return UpstreamError(
            SERVICE_NAME,
            message or f"API error: {response.status_code}",
            status_code=response.status_code,
            upstream_code=upstream_code,
        )

    @staticmethod
    def _extract_error(response: httpx.Response):
        try:
            body = response.json()
        except ValueError:
            return None, None
        if isinstance(body, dict):
            return body.get("code"), body.get("message")
        return None, None

    @staticmethod
    def _json_list(response: httpx.Response) -> List[Dict[str, Any]]:
        try:
            body = response.json()
        except ValueError:
            raise UpstreamError(SERVICE_NAME, "Malformed JSON response")
        return body if isinstance(body, list) else []

    @staticmethod
    def _json_object(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            raise UpstreamError(SERVICE_NAME, "Malformed JSON response")
        if not isinstance(body, dict):
            raise UpstreamError(SERVICE_NAME, "Unexpected response shape")
        return body

    @staticmethod
    def _header_int(response: httpx.Response, name: str, default: int) -> int:
        try:
            return int(response.headers.get(name, default))
        except ValueError:
            return default

    # Products

    async def list_products(
        self,
        page: int = 1,
        per_page: int = 20,
        category: Optional[str] = None,
        search: str = "",
        sort_by: str = "latest",
    ) -> ProductPage:
        """List published products."""
        params: Dict[str, Any] = {"page": page, "per_page": per_page, "status": "publish"}
        if category:
            params["category"] = category
        if search:
            params["search"] = search
        params.update(SORT_PARAMS.get(sort_by, SORT_PARAMS["latest"]))

        response = await self._request("GET", "/products", "list_products", params=params)
        products = self._json_list(response)
        self.logger.info("Fetched products", count=len(products), page=page)
        return ProductPage(
            data=products,
            total=self._header_int(response, "X-WP-Total", 0),
            total_pages=self._header_int(response, "X-WP-TotalPages", 1),
        )

    async def get_product(self, product_id: int) -> Dict[str, Any]:
        response = await self._request("GET", f"/products/{product_id}", "get_product")
        return self._json_object(response)

    async def get_product_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        """Fetch a product by slug along with its variations.

        Returns ``None`` when no product has the slug. Variation lookup
        failures are logged and yield an empty list.
        """
        response = await self._request("GET", "/products", "get_product_by_slug", params={"slug": slug})
        products = self._json_list(response)
        if not products:
            return None

        product = products[0]
        variations: List[Dict[str, Any]] = []
        if product.get("type") == "variable":
            try:
                variations_response = await self._request(
                    "GET",
                    f"/products/{product['id']}/variations",
                    "list_variations",
                    params={"per_page": 100},
                )
                variations = self._json_list(variations_response)
            except (UpstreamError, NotFoundError) as exc:
                self.logger.error("Error fetching variations", product_id=product.get("id"), error=exc.message)

        return {"product": product, "variations": variations}

    async def get_related_products(self, product_id: int, limit: int = 4) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            "/products",
            "related_products",
            params={"per_page": limit * 2, "orderby": "popularity"},
        )
        products = [p for p in self._json_list(response) if p.get("id") != product_id]
        return products[:limit]

    async def list_categories(self) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            "/products/categories",
            "list_categories",
            params={"per_page": 100, "hide_empty": "true"},
        )
        categories = self._json_list(response)
        self.logger.info("Fetched categories", count=len(categories))
        return categories

    # Reviews

    async def list_reviews(self, product_id: int) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            "/products/reviews",
            "list_reviews",
            params={"product": product_id, "per_page": 100},
        )
        return self._json_list(response)

    async def create_review(self, product_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(payload, product_id=product_id)
        response = await self._request("POST", "/products/reviews", "create_review", json=body)
        review = self._json_object(response)
        self.logger.info("Review added", product_id=product_id, review_id=review.get("id"))
        return review

    # Coupons

    async def list_coupons(self, per_page: int = 20) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            "/coupons",
            "list_coupons",
            params={"per_page": per_page, "orderby": "date", "order": "desc"},
        )
        return self._json_list(response)

    async def find_coupon(self, code: str) -> Optional[Dict[str, Any]]:
        response = await self._request("GET", "/coupons", "find_coupon", params={"code": code})
        coupons = self._json_list(response)
        return coupons[0] if coupons else None

    # Shipping zones

    async def list_shipping_zones(self) -> List[Dict[str, Any]]:
        response = await self._request("GET", "/shipping/zones", "list_shipping_zones")
        return self._json_list(response)

    async def list_zone_locations(self, zone_id: int) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/shipping/zones/{zone_id}/locations", "list_zone_locations")
        return self._json_list(response)

    async def list_zone_methods(self, zone_id: int) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/shipping/zones/{zone_id}/methods", "list_zone_methods")
        return self._json_list(response)

    async def check_health(self) -> str:
        """Breaker-based reachability status reported by /health."""
        state = self.circuit_breaker.state
        if state == CircuitBreakerState.OPEN:
            return "circuit_open"
        if state == CircuitBreakerState.HALF_OPEN:
            return "circuit_half_open"
        return "ok"
