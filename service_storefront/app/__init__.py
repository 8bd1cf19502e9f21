"""
Storefront Service package for the Storefront Access Layer.

The storefront fronts the WooCommerce/WordPress backend, providing:
- Catalog proxying: products, categories, reviews and coupons
- Short-lived in-process caching of upstream responses
- Shipping quotes from WooCommerce shipping zones
- A debounced shipping calculator for cart views

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.adapters: HTTP clients for WooCommerce and the shipping endpoint.
- app.caching: TTL cache and the catalog key scheme.
- app.shipping: Calculator state machine and zone-based rates.
"""
