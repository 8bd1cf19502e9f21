"""
Unit tests for zone-based shipping quotes.
"""

import pytest

from shared.errors import ServiceError, UpstreamError, ValidationError
from shared.metrics import MetricsCollector
from service_storefront.app.shipping.models import ShippingItemPayload
from service_storefront.app.shipping.rates import (
    ShippingRateService,
    matches_postcode,
    method_cost,
    parse_cost,
)


def flat_rate(cost, title="Flat rate", enabled=True):
    return {
        "id": 1,
        "method_id": "flat_rate",
        "title": title,
        "enabled": enabled,
        "settings": {"cost": {"value": cost}},
    }


class FakeWooCommerce:
    """In-memory stand-in for the zone endpoints of WooCommerceClient."""

    def __init__(self, zones=None, locations=None, methods=None):
        self.zones = zones if zones is not None else []
        self.locations = locations or {}
        self.methods = methods or {}
        self.failing_zones = set()
        self.zones_error = None
        self.calls = []

    async def list_shipping_zones(self):
        self.calls.append("zones")
        if self.zones_error:
            raise self.zones_error
        return self.zones

    async def list_zone_locations(self, zone_id):
        self.calls.append(f"locations:{zone_id}")
        if zone_id in self.failing_zones:
            raise UpstreamError("woocommerce", "boom", status_code=500)
        return self.locations.get(zone_id, [])

    async def list_zone_methods(self, zone_id):
        self.calls.append(f"methods:{zone_id}")
        if zone_id in self.failing_zones:
            raise UpstreamError("woocommerce", "boom", status_code=500)
        return self.methods.get(zone_id, [])


@pytest.mark.parametrize("postcode,pattern,expected", [
    ("51500", "51000...51999", True),
    ("52000", "51000...51999", False),
    ("51500", "51000-51999", True),
    ("50999", "51000-51999", False),
    ("1145", "11*", True),
    ("2145", "11*", False),
    ("sw1a 1aa", "SW1A*", True),
    ("10000", "10000", True),
    ("ab12", "AB12", True),
    ("10001", "10000", False),
    ("abc", "1000...2000", False),
])
def test_matches_postcode(postcode, pattern, expected):
    assert matches_postcode(postcode, pattern) is expected


@pytest.mark.parametrize("value,expected", [
    ("10", 10.0),
    ("12.50", 12.5),
    ("10 * [qty]", 10.0),
    (7, 7.0),
    ("", 35.0),
    (None, 35.0),
    ("[qty] * 2", 35.0),
])
def test_parse_cost(value, expected):
    assert parse_cost(value, 35.0) == expected


def test_method_cost_without_settings():
    assert method_cost({"method_id": "free_shipping"}, 0.0) == 0.0


class TestShippingRateService:
    """Test cases for ShippingRateService."""

    @pytest.fixture
    def items(self):
        return [ShippingItemPayload(id=1, quantity=2)]

    @pytest.fixture
    def wc(self):
        return FakeWooCommerce(
            zones=[
                {"id": 0, "name": "Locations not covered"},
                {"id": 1, "name": "Zagreb"},
                {"id": 2, "name": "Split"},
            ],
            locations={
                1: [{"code": "10000...10999", "type": "postcode"}],
                2: [{"code": "HR", "type": "country"}, {"code": "21*", "type": "postcode"}],
            },
            methods={
                0: [flat_rate("35", title="Standard shipping")],
                1: [flat_rate("20", enabled=False), flat_rate("25", title="Courier")],
                2: [flat_rate("30")],
            },
        )

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("storefront")

    @pytest.fixture
    def service(self, wc, metrics):
        return ShippingRateService(wc, metrics=metrics)

    @pytest.mark.asyncio
    async def test_missing_postcode(self, service, items):
        with pytest.raises(ValidationError) as exc_info:
            await service.quote("  ", items, 100)

        assert exc_info.value.message == "Postcode is required"

    @pytest.mark.asyncio
    async def test_digital_cart_ships_free(self, service, wc, metrics):
        """Test carts of only virtual/downloadable items never hit zones."""
        items = [
            ShippingItemPayload(id=1, virtual=True),
            ShippingItemPayload(id=2, downloadable=True),
        ]

        quote = await service.quote("10000", items, 10)

        assert quote.cost == 0
        assert quote.name == "Digital products"
        assert quote.deliveryTime == "Instant"
        assert quote.freeShippingApplied is True
        assert wc.calls == []
        assert metrics.registry.get_sample_value("shipping_quotes_total", {"outcome": "digital"}) == 1

    @pytest.mark.asyncio
    async def test_mixed_cart_is_not_digital(self, service):
        items = [ShippingItemPayload(id=1, virtual=True), ShippingItemPayload(id=2)]

        quote = await service.quote("10500", items, 100)

        assert quote.cost == 25

    @pytest.mark.asyncio
    async def test_matching_zone_uses_first_enabled_method(self, service, items, wc):
        quote = await service.quote("10500", items, 100)

        assert quote.cost == 25
        assert quote.name == "Courier"
        assert quote.zoneId == 1
        assert quote.zoneName == "Zagreb"
        assert quote.methodId == "flat_rate"
        assert quote.deliveryTime == "2-3 business days"
        assert quote.freeShippingApplied is False
        assert "locations:0" not in wc.calls

    @pytest.mark.asyncio
    async def test_wildcard_zone(self, service, items):
        quote = await service.quote("21000", items, 100)

        assert quote.zoneId == 2
        assert quote.cost == 30

    @pytest.mark.asyncio
    async def test_free_shipping_threshold(self, service, items, metrics):
        quote = await service.quote("10500", items, 500)

        assert quote.cost == 0
        assert quote.originalCost == 25
        assert quote.freeShippingApplied is True
        assert quote.reason == "Free shipping on orders over 500"
        assert metrics.registry.get_sample_value("shipping_quotes_total", {"outcome": "free_threshold"}) == 1

    @pytest.mark.asyncio
    async def test_below_threshold_keeps_cost(self, service, items):
        quote = await service.quote("10500", items, 499.99)

        assert quote.cost == 25
        assert quote.originalCost is None

    @pytest.mark.asyncio
    async def test_unmatched_postcode_uses_default_zone(self, service, items, metrics):
        quote = await service.quote("31000", items, 100)

        assert quote.cost == 35
        assert quote.zoneId == 0
        assert quote.zoneName == "Other regions"
        assert quote.deliveryTime == "3-5 business days"
        assert metrics.registry.get_sample_value("shipping_quotes_total", {"outcome": "default_zone"}) == 1

    @pytest.mark.asyncio
    async def test_default_zone_without_enabled_method_uses_fallback(self, service, items, wc):
        wc.methods[0] = [flat_rate("35", enabled=False)]

        quote = await service.quote("31000", items, 100)

        assert quote.cost == 19
        assert quote.methodId == "flat_rate"

    @pytest.mark.asyncio
    async def test_default_zone_error_uses_fallback(self, service, items, wc):
        wc.failing_zones.add(0)

        quote = await service.quote("31000", items, 100)

        assert quote.cost == 19
        assert quote.zoneName == "Other regions"

    @pytest.mark.asyncio
    async def test_default_zone_unparseable_cost_uses_default(self, service, items, wc):
        wc.methods[0] = [flat_rate("[qty] * 3")]

        quote = await service.quote("31000", items, 100)

        assert quote.cost == 35

    @pytest.mark.asyncio
    async def test_failing_zone_is_skipped(self, service, items, wc):
        wc.failing_zones.add(1)
        wc.locations[2].append({"code": "10500", "type": "postcode"})

        quote = await service.quote("10500", items, 100)

        assert quote.zoneId == 2
        assert quote.cost == 30

    @pytest.mark.asyncio
    async def test_zone_listing_failure(self, service, items, wc, metrics):
        wc.zones_error = UpstreamError("woocommerce", "Service unavailable")

        with pytest.raises(ServiceError) as exc_info:
            await service.quote("10500", items, 100)

        assert exc_info.value.message == "Failed to calculate shipping"
        assert metrics.registry.get_sample_value("shipping_quotes_total", {"outcome": "error"}) == 1

    @pytest.mark.asyncio
    async def test_custom_threshold(self, wc, items):
        service = ShippingRateService(wc, free_shipping_threshold=99.5)

        quote = await service.quote("10500", items, 100)

        assert quote.cost == 0
        assert quote.reason == "Free shipping on orders over 99.5"
