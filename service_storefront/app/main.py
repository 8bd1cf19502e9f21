"""
Storefront API service: thin routes over the WooCommerce backend.
"""

from typing import Any, Dict, Optional, Tuple

import httpx
from fastapi import Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import (
    AuthorizationError,
    NotFoundError,
    StorefrontException,
    UpstreamError,
    ValidationError,
)
from service_storefront.app.adapters.shipping_client import ShippingClient
from service_storefront.app.adapters.woocommerce_client import WooCommerceClient
from service_storefront.app.caching.catalog_cache import (
    CatalogCache,
    CATEGORY_TTL,
    COUPONS_TTL,
    PRODUCT_LIST_TTL,
    PRODUCT_TTL,
    REVIEWS_TTL,
)
from service_storefront.app.caching.ttl_cache import TTLCache
from service_storefront.app.coupons import active_coupons, validate_coupon
from service_storefront.app.feeds import categories_sitemap, pages_sitemap, product_feed, subscription_products
from service_storefront.app.reviews import ReviewSubmission
from service_storefront.app.shipping.calculator import ShippingCalculator
from service_storefront.app.shipping.models import ShippingCalculatePayload
from service_storefront.app.shipping.rates import ShippingRateService


XML_MEDIA_TYPE = "application/xml; charset=utf-8"
SITEMAP_CACHE_CONTROL = "public, s-maxage=7200, stale-while-revalidate"


class CacheCommand(BaseModel):
    action: Optional[str] = None
    pattern: Optional[str] = None
    key: Optional[str] = None
    product_id: Optional[int] = None


class CouponValidationPayload(BaseModel):
    code: Optional[str] = None
    subtotal: float = 0.0


class StorefrontService(BaseService):
    """Storefront API service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        wc_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("storefront", 8000, config=config or get_config("storefront", 8000))

        self.cache = TTLCache(
            default_ttl=self.config.cache_default_ttl,
            check_period=self.config.cache_check_period,
            max_keys=self.config.cache_max_keys,
        )
        self.catalog_cache = CatalogCache(self.cache, metrics=self.metrics)
        self.wc_client = WooCommerceClient(
            self.config.wc_api_url,
            self.config.wc_consumer_key,
            self.config.wc_consumer_secret,
            timeout=self.config.upstream_timeout_seconds,
            transport=wc_transport,
            metrics=self.metrics,
        )
        self.shipping_rates = ShippingRateService(
            self.wc_client,
            free_shipping_threshold=self.config.free_shipping_threshold,
            default_zone_cost=self.config.default_zone_cost,
            fallback_cost=self.config.fallback_shipping_cost,
            metrics=self.metrics,
        )

        self._setup_storefront_routes()
        self._setup_feed_routes()
        self._setup_cache_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.storefront_service = self

    async def on_startup(self):
        await self.cache.start()
        self.logger.info("Storefront service started", wc_api_url=self.config.wc_api_url)

    async def on_shutdown(self):
        await self.cache.stop()
        await self.wc_client.close()
        self.logger.info("Storefront service stopped")

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "woocommerce": await self.wc_client.check_health(),
            "cache": "ok" if self.cache.running else "stopped",
        }

    def _setup_storefront_routes(self):
        """Set up catalog, review, coupon and shipping routes."""

        @self.app.get("/")
        async def root():
            return {
                "service": "storefront",
                "message": "Storefront Access Layer - API",
                "version": "1.0.0"
            }

        @self.app.get("/api/products")
        async def list_products(
            page: int = Query(1, ge=1),
            per_page: int = Query(6, ge=1, le=100),
        ):
            """Paginated product list for the home and catalog pages."""
            async def load():
                return (await self.wc_client.list_products(page=page, per_page=per_page)).to_dict()

            result = await self.catalog_cache.get_or_fetch(
                "products",
                CatalogCache.products_key(page, per_page),
                load,
                PRODUCT_LIST_TTL,
            )
            return {
                "products": result["data"],
                "total": result["total"],
                "totalPages": result["totalPages"],
            }

        @self.app.get("/api/shop/products")
        async def list_shop_products(
            page: int = Query(1, ge=1),
            category: Optional[str] = Query(None),
            search: str = Query(""),
            sort_by: str = Query("latest", alias="sortBy"),
        ):
            """Shop listing with category filter, search and sorting."""
            async def load():
                product_page = await self.wc_client.list_products(
                    page=page,
                    per_page=20,
                    category=category,
                    search=search,
                    sort_by=sort_by,
                )
                return product_page.to_dict()

            return await self.catalog_cache.get_or_fetch(
                "shop_products",
                CatalogCache.shop_products_key(page, category, search, sort_by),
                load,
                PRODUCT_LIST_TTL,
            )

        @self.app.get("/api/shop/categories")
        async def list_categories():
            categories = await self.catalog_cache.get_or_fetch(
                "categories",
                CatalogCache.CACHE_PREFIXES["categories"],
                self.wc_client.list_categories,
                CATEGORY_TTL,
            )
            return {"data": categories}

        @self.app.get("/api/products/slug/{slug}")
        async def get_product_by_slug(slug: str):
            """Product page payload: product, variations and related products."""
            async def load():
                bundle = await self.wc_client.get_product_by_slug(slug)
                if bundle is None:
                    return None
                try:
                    bundle["related"] = await self.wc_client.get_related_products(bundle["product"]["id"])
                except (UpstreamError, NotFoundError) as exc:
                    self.logger.error("Error fetching related products", slug=slug, error=exc.message)
                    bundle["related"] = []
                return bundle

            bundle = await self.catalog_cache.get_or_fetch(
                "product_slug",
                CatalogCache.product_slug_key(slug),
                load,
                PRODUCT_TTL,
            )
            if bundle is None:
                raise NotFoundError(f"Product '{slug}' not found")
            return bundle

        @self.app.get("/api/products/{product_id}")
        async def get_product(product_id: int):
            return await self.catalog_cache.get_or_fetch(
                "product",
                CatalogCache.product_key(product_id),
                lambda: self.wc_client.get_product(product_id),
                PRODUCT_TTL,
            )

        @self.app.get("/api/reviews/{product_id}")
        async def list_reviews(product_id: int):
            return await self.catalog_cache.get_or_fetch(
                "reviews",
                CatalogCache.reviews_key(product_id),
                lambda: self.wc_client.list_reviews(product_id),
                REVIEWS_TTL,
            )

        @self.app.post("/api/reviews/{product_id}")
        async def add_review(product_id: int, submission: ReviewSubmission):
            payload = submission.validated()
            self.logger.info("Adding review", product_id=product_id, rating=payload["rating"])

            try:
                review = await self.wc_client.create_review(product_id, payload)
            except NotFoundError:
                raise NotFoundError("Product not found")
            except UpstreamError as exc:
                if exc.upstream_code == "woocommerce_rest_comment_exists":
                    raise ValidationError("You have already reviewed this product")
                if exc.status_code in (401, 403):
                    raise AuthorizationError("Not allowed to add a review")
                raise

            self.catalog_cache.invalidate_reviews(product_id)
            return JSONResponse(status_code=201, content={"success": True, "review": review})

        @self.app.get("/api/coupons")
        async def list_coupons():
            coupons = await self.catalog_cache.get_or_fetch(
                "coupons",
                CatalogCache.CACHE_PREFIXES["coupons"],
                self.wc_client.list_coupons,
                COUPONS_TTL,
            )
            return active_coupons(coupons or [])

        @self.app.post("/api/coupons/validate")
        async def validate_coupon_code(payload: CouponValidationPayload):
            code = (payload.code or "").strip()
            if not code:
                raise ValidationError("Please enter a coupon code")
            if payload.subtotal <= 0:
                raise ValidationError("Invalid subtotal")

            coupon = await self.wc_client.find_coupon(code)
            quote = validate_coupon(coupon, payload.subtotal)
            return {
                "success": True,
                "coupon": quote.model_dump(),
                "message": "Coupon applied",
            }

        @self.app.post("/api/shipping/calculate")
        async def calculate_shipping(payload: ShippingCalculatePayload):
            quote = await self.shipping_rates.quote(payload.postcode, payload.items, payload.subtotal)
            return {"success": True, "shipping": quote.model_dump()}

    async def _published_products(self):
        """Newest published products (one page of 100), shared by the feed and subscriptions."""
        async def load():
            return (await self.wc_client.list_products(page=1, per_page=100)).data

        return await self.catalog_cache.get_or_fetch(
            "catalog",
            CatalogCache.CACHE_PREFIXES["catalog"],
            load,
            PRODUCT_LIST_TTL,
        ) or []

    def _setup_feed_routes(self):
        """Set up sitemap, product feed and subscription routes."""

        @self.app.get("/api/subscriptions")
        async def list_subscriptions():
            """Products in the digital subscriptions category."""
            return subscription_products(await self._published_products())

        @self.app.get("/api/sitemap-pages.xml")
        async def sitemap_pages():
            return Response(
                content=pages_sitemap(self.config.site_url),
                media_type=XML_MEDIA_TYPE,
                headers={"Cache-Control": SITEMAP_CACHE_CONTROL},
            )

        @self.app.get("/api/sitemap-categories.xml")
        async def sitemap_categories():
            try:
                categories = await self.catalog_cache.get_or_fetch(
                    "categories",
                    CatalogCache.CACHE_PREFIXES["categories"],
                    self.wc_client.list_categories,
                    CATEGORY_TTL,
                )
            except StorefrontException as exc:
                self.logger.error("Error fetching categories for sitemap", error=exc.message)
                categories = []
            return Response(
                content=categories_sitemap(categories or [], self.config.site_url),
                media_type=XML_MEDIA_TYPE,
                headers={"Cache-Control": SITEMAP_CACHE_CONTROL},
            )

        @self.app.get("/api/product-feed.xml")
        async def product_feed_xml():
            try:
                products = await self._published_products()
            except StorefrontException as exc:
                self.logger.error("Error fetching products for feed", error=exc.message)
                products = []
            self.logger.info("Product feed generated", products=len(products))
            return Response(
                content=product_feed(
                    products,
                    self.config.site_url,
                    title=self.config.store_name,
                    currency=self.config.feed_currency,
                ),
                media_type=XML_MEDIA_TYPE,
                headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
            )

    def _setup_cache_routes(self):
        """Set up cache administration routes."""

        def require_secret(request: Request):
            secret = self.config.cache_clear_secret
            if not secret or request.headers.get("Authorization") != f"Bearer {secret}":
                raise AuthorizationError("Unauthorized")

        @self.app.api_route("/api/cache/clear", methods=["POST", "DELETE"])
        async def cache_command(request: Request, command: CacheCommand):
            require_secret(request)

            if command.action == "clear":
                self.cache.clear()
                return {"success": True, "message": "Cache cleared completely"}

            if command.action == "pattern" and command.pattern:
                deleted = self.cache.delete_pattern(command.pattern)
                return {
                    "success": True,
                    "deleted": deleted,
                    "message": f"Deleted {deleted} cache entries matching pattern: {command.pattern}",
                }

            if command.action == "key" and command.key:
                deleted = self.cache.delete(command.key)
                return {"success": True, "deleted": deleted}

            if command.action == "product" and command.product_id is not None:
                deleted = self.catalog_cache.invalidate_product(command.product_id)
                return {"success": True, "deleted": deleted}

            if command.action == "stats":
                return {"success": True, "stats": self.catalog_cache.get_cache_stats()}

            raise ValidationError("Invalid action")

        @self.app.get("/api/cache/stats")
        async def cache_stats(request: Request):
            require_secret(request)
            return self.catalog_cache.get_cache_stats()


def create_shipping_calculator(
    config: Optional[ServiceConfig] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[ShippingCalculator, ShippingClient]:
    """Wire a calculator to the shipping endpoint named in config.

    The caller owns both objects and closes the calculator before the client.
    """
    config = config or get_config("storefront", 8000)
    client = ShippingClient(
        config.shipping_endpoint_url,
        timeout=config.upstream_timeout_seconds,
        transport=transport,
    )
    calculator = ShippingCalculator(client.calculate, debounce_seconds=config.shipping_debounce_seconds)
    return calculator, client


def create_app():
    """Create the Storefront FastAPI application."""
    service = StorefrontService()
    return service.app


if __name__ == "__main__":
    service = StorefrontService()
    service.run()
