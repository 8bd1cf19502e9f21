"""
Catalog cache manager: key scheme and memoization over the TTL cache.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .ttl_cache import TTLCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


PRODUCT_LIST_TTL = 300
CATEGORY_TTL = 600
PRODUCT_TTL = 300
REVIEWS_TTL = 120
COUPONS_TTL = 60


class CatalogCache:
    """Manager for the storefront's cached WooCommerce lookups."""

    CACHE_PREFIXES = {
        "products": "products",
        "shop_products": "shop:products",
        "categories": "shop:categories",
        "product": "product",
        "product_slug": "product:slug",
        "reviews": "reviews",
        "coupons": "coupons:active",
        "catalog": "products:all",
    }

    def __init__(self, cache: TTLCache, *, metrics: Optional["MetricsCollector"] = None):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("storefront.catalog_cache")

    @staticmethod
    def products_key(page: int, per_page: int) -> str:
        return f"products:page={page}:per_page={per_page}"

    @staticmethod
    def shop_products_key(page: int, category: Optional[str], search: str, sort_by: str) -> str:
        return f"shop:products:page={page}:category={category or ''}:search={search}:sort={sort_by}"

    @staticmethod
    def product_key(product_id: int) -> str:
        return f"product:{product_id}"

    @staticmethod
    def product_slug_key(slug: str) -> str:
        return f"product:slug:{slug}"

    @staticmethod
    def reviews_key(product_id: int) -> str:
        return f"reviews:{product_id}"

    async def get_or_fetch(
        self,
        cache_type: str,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """Return the cached value for ``key`` or load, store and return it.

        Empty results are returned but not cached.
        """
        cached = self.cache.get(key)
        if cached is not None:
            self._record(cache_type, hit=True)
            return cached

        self._record(cache_type, hit=False)
        value = await loader()
        if value:
            self.cache.set(key, value, ttl)
            self._update_size_gauge()
        return value

    def invalidate_product(self, product_id: int) -> int:
        """Drop cached product detail and reviews for a product."""
        removed = self.cache.delete(self.product_key(product_id))
        removed += self.cache.delete(self.reviews_key(product_id))
        # Slug entries embed the product, so drop them too.
        removed += self.cache.delete_pattern("product:slug:")
        self._update_size_gauge()
        self.logger.info("Invalidated product cache", product_id=product_id, removed=removed)
        return removed

    def invalidate_reviews(self, product_id: int) -> int:
        removed = self.cache.delete(self.reviews_key(product_id))
        self._update_size_gauge()
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get comprehensive cache statistics."""
        stats = self.cache.stats().to_dict()
        stats["cache_types"] = list(self.CACHE_PREFIXES.keys())
        stats["max_keys"] = self.cache.max_keys
        stats["default_ttl"] = self.cache.default_ttl
        stats["sweep_running"] = self.cache.running
        return stats

    def _record(self, cache_type: str, hit: bool):
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter(
                "cache_hits_total" if hit else "cache_misses_total",
                cache_type=cache_type,
            )
        except Exception as exc:  # pragma: no cover - metrics failures never break lookups
            self.logger.debug("Failed to record cache metrics", error=str(exc))

    def _update_size_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self.cache))
