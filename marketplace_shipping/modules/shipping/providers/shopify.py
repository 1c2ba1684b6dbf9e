"""
Shopify Admin REST Client

Orders, fulfillment orders and fulfillments for the order sync.

Access token is either the static SHOPIFY_ADMIN_ACCESS_TOKEN or a
client-credentials token cached until 60 s before it expires.
"""
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from marketplace_shipping.core.exceptions import ConfigurationError, UpstreamRejected
from marketplace_shipping.core.http_client import ResilientHTTPClient, RetryConfig
from marketplace_shipping.modules.shipping.providers.base import StorefrontAdminProvider

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 60
# Used when the token response carries no expires_in
DEFAULT_TOKEN_LIFETIME_SECONDS = 300

NOT_CONFIGURED_MESSAGE = (
    "Shopify Admin API is not configured. Set SHOPIFY_SHOP_DOMAIN + token/client credentials"
)


class ShopifyAdminClient(StorefrontAdminProvider):
    name = "shopify"

    def __init__(
        self,
        shop_domain: str,
        api_version: str = "2025-10",
        admin_access_token: str = "",
        client_id: str = "",
        client_secret: str = "",
        timeout: float = 15.0,
        max_retries: int = 2,
        retry_delay: float = 0.3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop_domain = shop_domain
        self.api_version = api_version
        self.admin_access_token = admin_access_token
        self.client_id = client_id
        self.client_secret = client_secret
        self._token: str = ""
        self._token_expires_at: float = 0.0
        self.http = ResilientHTTPClient(
            base_url=f"https://{shop_domain}/admin/api/{api_version}" if shop_domain else "",
            name="shopify",
            retry_config=RetryConfig(max_retries=max_retries, base_delay=retry_delay),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, transport=None) -> "ShopifyAdminClient":
        return cls(
            shop_domain=settings.SHOPIFY_SHOP_DOMAIN,
            api_version=settings.SHOPIFY_API_VERSION,
            admin_access_token=settings.SHOPIFY_ADMIN_ACCESS_TOKEN,
            client_id=settings.SHOPIFY_CLIENT_ID,
            client_secret=settings.SHOPIFY_CLIENT_SECRET,
            timeout=settings.SHOPIFY_TIMEOUT_SECONDS,
            max_retries=settings.SHOPIFY_MAX_RETRIES,
            retry_delay=settings.SHOPIFY_RETRY_DELAY_SECONDS,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.shop_domain and (self.admin_access_token or (self.client_id and self.client_secret)))

    async def close(self) -> None:
        await self.http.close()

    async def _fetch_client_credentials_token(self) -> str:
        body = await self.http.post(
            f"https://{self.shop_domain}/admin/oauth/access_token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise UpstreamRejected(
                "Shopify client credentials response missing access_token",
                response_body=body,
            )

        expires_in = int(body.get("expires_in") or 0)
        lifetime = expires_in - TOKEN_EXPIRY_MARGIN_SECONDS if expires_in > 0 else DEFAULT_TOKEN_LIFETIME_SECONDS
        self._token = token
        self._token_expires_at = time.monotonic() + max(0, lifetime)
        logger.info(f"[SHOPIFY] Client credentials token issued (valid {max(0, lifetime)}s)")
        return token

    async def _access_token(self) -> str:
        if self.admin_access_token:
            return self.admin_access_token
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        return await self._fetch_client_credentials_token()

    async def request(self, method: str, path: str, **kwargs) -> Any:
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)
        token = await self._access_token()
        headers = {"X-Shopify-Access-Token": token, **(kwargs.pop("headers", None) or {})}
        return await self.http.request(method, path, headers=headers, **kwargs)

    async def list_orders(
        self,
        limit: int = 20,
        status: str = "open",
        fulfillment_status: str = "unfulfilled",
        financial_status: str = "paid",
    ) -> List[Dict[str, Any]]:
        body = await self.request(
            "GET",
            "orders.json",
            params={
                "limit": limit,
                "status": status,
                "fulfillment_status": fulfillment_status,
                "financial_status": financial_status,
                "order": "created_at desc",
            },
        )
        orders = body.get("orders") if isinstance(body, dict) else None
        return orders if isinstance(orders, list) else []

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        body = await self.request("GET", f"orders/{order_id}.json")
        order = body.get("order") if isinstance(body, dict) else None
        if not order:
            raise UpstreamRejected(f"Shopify order not found: {order_id}", status=404, response_body=body)
        return order

    async def get_fulfillment_orders(self, order_id: str) -> List[Dict[str, Any]]:
        body = await self.request("GET", f"orders/{order_id}/fulfillment_orders.json")
        rows = body.get("fulfillment_orders") if isinstance(body, dict) else None
        return rows if isinstance(rows, list) else []

    async def create_fulfillment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self.request("POST", "fulfillments.json", json={"fulfillment": payload})
        fulfillment = body.get("fulfillment") if isinstance(body, dict) else None
        if not fulfillment:
            raise UpstreamRejected("Shopify fulfillment response missing fulfillment object", response_body=body)
        return fulfillment
