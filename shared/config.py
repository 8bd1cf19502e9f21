"""
Shared configuration management for the Storefront Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # WooCommerce backend
    wc_api_url: str = Field(default="http://localhost:8080/wp-json/wc/v3")
    wc_consumer_key: str = Field(default="")
    wc_consumer_secret: str = Field(default="")
    upstream_timeout_seconds: float = Field(default=10.0)

    # Public storefront (sitemaps and product feed)
    site_url: str = Field(default="http://localhost:3000")
    store_name: str = Field(default="Storefront")
    feed_currency: str = Field(default="SAR")

    # Cache
    cache_default_ttl: int = Field(default=300)
    cache_check_period: int = Field(default=60)
    cache_max_keys: int = Field(default=1000)
    cache_clear_secret: Optional[str] = Field(default=None)

    # Shipping
    shipping_endpoint_url: str = Field(default="http://localhost:8000/api/shipping/calculate")
    shipping_debounce_seconds: float = Field(default=0.5)
    free_shipping_threshold: float = Field(default=500.0)
    default_zone_cost: float = Field(default=35.0)
    fallback_shipping_cost: float = Field(default=19.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
