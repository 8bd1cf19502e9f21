"""
Storefront caching package.

Provides the in-process TTL cache used to reduce calls to WooCommerce and
the catalog key scheme built on top of it. Prefer short-lived entries and
explicit invalidation.
"""

from .ttl_cache import TTLCache, CacheEntry, CacheStats
from .catalog_cache import CatalogCache

__all__ = ["TTLCache", "CacheEntry", "CacheStats", "CatalogCache"]
