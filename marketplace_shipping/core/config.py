"""
Application configuration

Every upstream (Webkul seller directory, Biteship courier rates, Shopify
admin) has its own timeout and retry budget. Credentials have no defaults;
validate_runtime() fails loudly when the mandatory ones are missing.
"""
import json
import logging
from typing import List, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_COURIERS = ["jne", "sicepat", "jnt"]


def _parse_list(v, default: List[str]) -> List[str]:
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if not v.strip():
            return list(default)
        # JSON array first, then comma-separated
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [entry.strip() for entry in v.split(",") if entry.strip()]
    return v


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Marketplace Shipping Bridge"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Durable stores (seller origins, order sync records, quote log, tokens)
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/runtime/shipping.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Shopify
    SHOPIFY_API_VERSION: str = "2025-10"
    SHOPIFY_TIMEOUT_SECONDS: float = 15.0
    SHOPIFY_MAX_RETRIES: int = 2
    SHOPIFY_RETRY_DELAY_SECONDS: float = 0.3
    SHOPIFY_SHOP_DOMAIN: str = ""
    SHOPIFY_ADMIN_ACCESS_TOKEN: str = ""
    SHOPIFY_CLIENT_ID: str = ""
    SHOPIFY_CLIENT_SECRET: str = ""
    SHOPIFY_PHONE_REQUIRED: bool = True

    # Webkul Multi-Vendor (seller directory)
    WEBKUL_BASE_URL: str = "https://mvmapi.webkul.com"
    WEBKUL_ACCESS_TOKEN: str = ""
    WEBKUL_REFRESH_TOKEN: str = ""
    WEBKUL_TIMEOUT_SECONDS: float = 10.0
    WEBKUL_MAX_RETRIES: int = 4
    WEBKUL_RETRY_DELAY_SECONDS: float = 0.4

    # Biteship (courier aggregation)
    BITESHIP_BASE_URL: str = "https://api.biteship.com"
    BITESHIP_API_KEY: str = ""
    BITESHIP_COURIERS: Union[str, List[str]] = DEFAULT_COURIERS
    BITESHIP_TIMEOUT_SECONDS: float = 10.0
    BITESHIP_MAX_RETRIES: int = 3
    BITESHIP_RETRY_DELAY_SECONDS: float = 0.3

    @field_validator("BITESHIP_COURIERS", mode="before")
    @classmethod
    def parse_couriers(cls, v):
        return _parse_list(v, DEFAULT_COURIERS)

    # Quote rules
    SHIPPING_CURRENCY: str = "IDR"
    SHIPPING_SERVICE_NAME_PREFIX: str = "Marketplace"
    SHIPPING_MAX_RATES: int = 5
    SHIPPING_HANDLING_FEE: float = 0.0
    SHIPPING_FREE_THRESHOLD: float = 0.0
    SHIPPING_DEFAULT_ITEM_WEIGHT_GRAMS: int = 1000
    DEFAULT_ORIGIN_POSTAL_CODE: str = ""
    DEFAULT_ORIGIN_COUNTRY: str = "ID"
    POSTAL_CODE_LENGTH: int = 5
    # False: upstream failures return an empty rate list (checkout fails open)
    QUOTE_FAIL_CLOSED: bool = False

    # In-memory caches
    VARIANT_CACHE_TTL_SECONDS: int = 43200
    SELLER_CACHE_TTL_SECONDS: int = 43200
    RATE_CACHE_TTL_SECONDS: int = 840
    CACHE_MAX_ENTRIES: int = 3000

    # Order sync
    ORDER_SYNC_ENABLED: bool = True
    AUTO_FULFILL_ON_CREATE: bool = False
    NOTIFY_CUSTOMER_ON_FULFILL: bool = False
    DASHBOARD_MAX_ORDERS: int = 25
    BITESHIP_DELIVERY_TYPE: str = "now"

    # Quote audit log
    RATE_LOG_MAX_ENTRIES: int = 500

    @property
    def shopify_configured(self) -> bool:
        return bool(
            self.SHOPIFY_SHOP_DOMAIN
            and (
                self.SHOPIFY_ADMIN_ACCESS_TOKEN
                or (self.SHOPIFY_CLIENT_ID and self.SHOPIFY_CLIENT_SECRET)
            )
        )

    def missing_required(self) -> List[str]:
        """Names of mandatory credentials that are not set."""
        required = [
            ("WEBKUL_ACCESS_TOKEN", self.WEBKUL_ACCESS_TOKEN),
            ("WEBKUL_REFRESH_TOKEN", self.WEBKUL_REFRESH_TOKEN),
            ("BITESHIP_API_KEY", self.BITESHIP_API_KEY),
        ]
        return [name for name, value in required if not value]

    def validate_runtime(self) -> None:
        missing = self.missing_required()
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "See .env.example"
            )


settings = Settings()
