"""
Adapters package for the Storefront Service.

Contains HTTP client wrappers for the WooCommerce backend and for the
storefront's own shipping endpoint. These adapters encapsulate:

- Base URLs, credentials and request shapes
- Retry policies and circuit breakers
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .woocommerce_client import WooCommerceClient, ProductPage
from .shipping_client import ShippingClient

__all__ = [
    "WooCommerceClient",
    "ProductPage",
    "ShippingClient",
]
