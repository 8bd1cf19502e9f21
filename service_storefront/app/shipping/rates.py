"""
Server-side shipping quotes from WooCommerce shipping zones.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from shared.errors import ServiceError, StorefrontException, ValidationError
from shared.logging import get_logger
from .models import ShippingItemPayload, ShippingQuote

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from service_storefront.app.adapters.woocommerce_client import WooCommerceClient
    from shared.metrics import MetricsCollector


DEFAULT_ZONE_ID = 0
_LEADING_NUMBER = re.compile(r"^\s*([-+]?\d*\.?\d+)")


def matches_postcode(postcode: str, pattern: str) -> bool:
    """Match a postcode against a WooCommerce postcode location.

    Supported forms: ``51000...51999`` and ``51000-51999`` numeric ranges,
    ``51*`` wildcards, and exact codes.
    """
    pattern = pattern.strip()
    code = postcode.strip()

    if "..." in pattern:
        return _in_numeric_range(code, pattern.split("...", 1))

    if "-" in pattern and "*" not in pattern:
        return _in_numeric_range(code, pattern.split("-", 1))

    if "*" in pattern:
        regex = ".*".join(re.escape(part) for part in pattern.upper().split("*"))
        return re.fullmatch(regex, code.upper()) is not None

    return code.upper() == pattern.upper()


def _in_numeric_range(code: str, bounds: Sequence[str]) -> bool:
    try:
        start, end = (int(bound.strip()) for bound in bounds)
        value = int(code)
    except ValueError:
        return False
    return start <= value <= end


def parse_cost(value: Any, default: float) -> float:
    """Leading number of a WooCommerce cost setting (``"10 * [qty]"`` -> 10)."""
    if value is None or value == "":
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = _LEADING_NUMBER.match(str(value))
    return float(match.group(1)) if match else default


def first_enabled(methods: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return next((method for method in methods if method.get("enabled")), None)


def method_cost(method: Dict[str, Any], default: float) -> float:
    settings = method.get("settings") or {}
    cost_setting = settings.get("cost") or {}
    return parse_cost(cost_setting.get("value"), default)


class ShippingRateService:
    """Computes a shipping quote for a postcode and cart."""

    def __init__(
        self,
        wc_client: "WooCommerceClient",
        *,
        free_shipping_threshold: float = 500.0,
        default_zone_cost: float = 35.0,
        fallback_cost: float = 19.0,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.wc_client = wc_client
        self.free_shipping_threshold = free_shipping_threshold
        self.default_zone_cost = default_zone_cost
        self.fallback_cost = fallback_cost
        self.metrics = metrics
        self.logger = get_logger("storefront.shipping_rates")

    async def quote(self, postcode: Optional[str], items: Sequence[ShippingItemPayload], subtotal: float) -> ShippingQuote:
        postcode = (postcode or "").strip()
        if not postcode:
            raise ValidationError("Postcode is required")

        if items and all(item.virtual or item.downloadable for item in items):
            self._record("digital")
            return ShippingQuote(
                cost=0,
                name="Digital products",
                deliveryTime="Instant",
                postcode=postcode,
                freeShippingApplied=True,
                reason="Digital products do not need shipping",
            )

        quote = await self._match_zone(postcode)
        if quote is None:
            quote = await self._default_zone_quote(postcode)

        if subtotal >= self.free_shipping_threshold and quote.cost > 0:
            quote.originalCost = quote.cost
            quote.cost = 0
            quote.freeShippingApplied = True
            quote.reason = f"Free shipping on orders over {self.free_shipping_threshold:g}"
            self._record("free_threshold")
        else:
            self._record("zone" if quote.zoneId != DEFAULT_ZONE_ID else "default_zone")

        self.logger.info("Shipping quoted", postcode=postcode, zone_id=quote.zoneId, cost=quote.cost)
        return quote

    async def _match_zone(self, postcode: str) -> Optional[ShippingQuote]:
        try:
            zones = await self.wc_client.list_shipping_zones()
        except StorefrontException as exc:
            self.logger.error("Error listing shipping zones", error=exc.message)
            self._record("error")
            raise ServiceError("Failed to calculate shipping", details={"error": exc.message})

        for zone in zones:
            zone_id = zone.get("id")
            if zone_id == DEFAULT_ZONE_ID:
                continue
            try:
                locations = await self.wc_client.list_zone_locations(zone_id)
                postcodes = [loc.get("code", "") for loc in locations if loc.get("type") == "postcode"]
                if not any(matches_postcode(postcode, code) for code in postcodes):
                    continue

                method = first_enabled(await self.wc_client.list_zone_methods(zone_id))
                if method is None:
                    continue

                return ShippingQuote(
                    cost=method_cost(method, 0.0),
                    name=method.get("title") or zone.get("name") or "Shipping",
                    deliveryTime="2-3 business days",
                    postcode=postcode,
                    zoneId=zone_id,
                    zoneName=zone.get("name"),
                    methodId=method.get("method_id"),
                )
            except StorefrontException as exc:
                self.logger.error("Error checking zone", zone_id=zone_id, error=exc.message)
                continue

        return None

    async def _default_zone_quote(self, postcode: str) -> ShippingQuote:
        try:
            method = first_enabled(await self.wc_client.list_zone_methods(DEFAULT_ZONE_ID))
        except StorefrontException as exc:
            self.logger.warning("Default zone unavailable, using fallback rate", error=exc.message)
            return ShippingQuote(
                cost=self.fallback_cost,
                name="Standard shipping",
                deliveryTime="3-5 business days",
                postcode=postcode,
                zoneId=DEFAULT_ZONE_ID,
                zoneName="Other regions",
            )

        if method is None:
            return ShippingQuote(
                cost=self.fallback_cost,
                name="Standard shipping",
                deliveryTime="3-5 business days",
                postcode=postcode,
                zoneId=DEFAULT_ZONE_ID,
                zoneName="Other regions",
                methodId="flat_rate",
            )

        return ShippingQuote(
            cost=method_cost(method, self.default_zone_cost),
            name=method.get("title") or "Standard shipping",
            deliveryTime="3-5 business days",
            postcode=postcode,
            zoneId=DEFAULT_ZONE_ID,
            zoneName="Other regions",
            methodId=method.get("method_id") or "flat_rate",
        )

    def _record(self, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("shipping_quotes_total", outcome=outcome)
