"""
Resilient HTTP Client for Upstream API Calls

Every call to Webkul, Biteship and Shopify goes through this client:
- Exponential backoff (base_delay * 2^attempt) on 429/408/5xx
- Retry-After header respect (seconds or HTTP date)
- Retry of transport errors (timeouts, dropped connections) on the same budget
- Single-flight bearer token refresh on 401 (one refresh in flight per client,
  concurrent callers await it), retried once outside the retry budget
- Terminal failures raise UpstreamError subclasses carrying status + body

The client returns the parsed response body, not the httpx.Response.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from marketplace_shipping.core.exceptions import (
    TokenRefreshError,
    UpstreamError,
    UpstreamUnavailable,
    upstream_error_for_status,
)

logger = logging.getLogger(__name__)

# (access_token, refresh_token) -> (new_access_token, rotated_refresh_token or None)
RefreshFunc = Callable[[str, str], Awaitable[Tuple[str, Optional[str]]]]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 0.3           # Base delay in seconds
    max_delay: float = 60.0           # Cap for computed backoff (not Retry-After)
    exponential_base: float = 2.0
    jitter_factor: float = 0.0        # Random jitter (0-1), off by default

    # Everything else >= 400 is terminal
    throttle_status_codes: tuple = (408, 429)

    def is_retryable(self, status: int) -> bool:
        return status in self.throttle_status_codes or status >= 500


class BearerTokenAuth:
    """
    Bearer token holder with single-flight refresh.

    The token pair lives on the instance (no module globals). On a successful
    refresh the new pair is written to the durable token store, and the stored
    pair is loaded once before first use so rotated tokens survive restarts.
    """

    def __init__(
        self,
        provider: str,
        access_token: str,
        refresh_token: str,
        refresh_func: Optional[RefreshFunc] = None,
        token_store=None,
    ):
        self.provider = provider
        self.access_token = access_token
        self.refresh_token = refresh_token
        self._refresh_func = refresh_func
        self._token_store = token_store
        self._loaded = token_store is None
        self._refresh_future: Optional[asyncio.Future] = None
        self.refresh_count = 0

    @property
    def can_refresh(self) -> bool:
        return self._refresh_func is not None

    async def ensure_loaded(self) -> None:
        """Load the persisted token pair once."""
        if self._loaded:
            return
        self._loaded = True
        stored = await self._token_store.load(self.provider)
        if not stored:
            return
        if stored.get("access_token"):
            self.access_token = stored["access_token"]
        if stored.get("refresh_token"):
            self.refresh_token = stored["refresh_token"]
        logger.info(f"[AUTH] {self.provider}: loaded token from store")

    async def headers(self) -> Dict[str, str]:
        await self.ensure_loaded()
        return {"Authorization": f"Bearer {self.access_token}"}

    async def refresh(self) -> None:
        """
        Refresh the token, joining an in-flight refresh if there is one.

        The check-and-set below runs without a suspension point, so on a
        single event loop only one refresh coroutine is ever scheduled.
        """
        future = self._refresh_future
        if future is None:
            future = asyncio.ensure_future(self._do_refresh())
            self._refresh_future = future
            future.add_done_callback(self._clear_refresh)
        await asyncio.shield(future)

    def _clear_refresh(self, future: asyncio.Future) -> None:
        if self._refresh_future is future:
            self._refresh_future = None

    async def _do_refresh(self) -> None:
        if not self._refresh_func:
            raise TokenRefreshError(f"{self.provider} token refresh is not supported")

        logger.info(f"[AUTH] {self.provider}: refreshing access token")
        try:
            access_token, refresh_token = await self._refresh_func(
                self.access_token, self.refresh_token
            )
        except TokenRefreshError:
            raise
        except UpstreamError as e:
            logger.error(
                f"[AUTH] {self.provider}: token refresh failed "
                f"(status={e.status}, body={e.response_body})"
            )
            raise TokenRefreshError(
                f"{self.provider} token refresh failed",
                status=e.status,
                response_body=e.response_body,
            ) from e

        if not access_token:
            raise TokenRefreshError(f"{self.provider} token refresh response missing access_token")

        self.access_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token
        self.refresh_count += 1

        if self._token_store is not None:
            await self._token_store.save(self.provider, self.access_token, self.refresh_token)

        logger.info(f"[AUTH] {self.provider}: token refreshed")


class ResilientHTTPClient:
    """
    Async HTTP client bound to one upstream base URL.

    Usage:
        async with ResilientHTTPClient("https://api.biteship.com", name="biteship") as client:
            body = await client.request("POST", "/v1/rates/couriers", json=payload)
    """

    def __init__(
        self,
        base_url: str,
        name: str = "upstream",
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 10.0,
        default_headers: Optional[Dict[str, str]] = None,
        auth: Optional[BearerTokenAuth] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.name = name
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.default_headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            **(default_headers or {}),
        }
        self.auth = auth
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.default_headers,
                transport=self._transport,
            )
        return self

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Formula: min(base * (exp_base ^ attempt) + jitter, max_delay)
        """
        cfg = self.retry_config
        delay = cfg.base_delay * (cfg.exponential_base ** attempt)
        if cfg.jitter_factor:
            delay += delay * cfg.jitter_factor * (2 * random.random() - 1)
        return max(0.0, min(delay, cfg.max_delay))

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> Optional[float]:
        """Parse Retry-After header into seconds to wait from now."""
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return None

        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass

        try:
            dt = parsedate_to_datetime(retry_after)
        except (ValueError, TypeError):
            return None
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        data: Any = None,
        authenticate: bool = True,
    ) -> Any:
        """
        Make an HTTP request with full resilience.

        Returns:
            Parsed JSON body (or text for non-JSON responses)

        Raises:
            UpstreamThrottled: 429/408 after max_retries
            UpstreamUnavailable: 5xx/transport failure after max_retries
            UpstreamRejected: any other 4xx, immediately
            TokenRefreshError: the 401-triggered refresh failed
        """
        if not self._client:
            await self.init()

        cfg = self.retry_config
        url = self._build_url(path)
        method = method.upper()
        use_auth = authenticate and self.auth is not None

        attempt = 0
        refreshed = False

        while True:
            request_headers = dict(headers or {})
            if use_auth:
                request_headers.update(await self.auth.headers())

            logger.debug(f"[HTTP] {self.name}: {method} {url} (attempt {attempt + 1}/{cfg.max_retries + 1})")

            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    data=data,
                    headers=request_headers,
                )
            except httpx.TransportError as e:
                if attempt < cfg.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"[HTTP] {self.name}: {type(e).__name__} on {method} {path}, "
                        f"retrying in {delay:.2f}s (attempt {attempt + 1})"
                    )
                    await self._sleep(delay)
                    attempt += 1
                    continue
                logger.error(f"[HTTP] {self.name}: {method} {path} failed after {attempt + 1} attempts: {e}")
                raise UpstreamUnavailable(
                    f"{self.name} request failed: {method} {path}",
                    status=None,
                    response_body=str(e),
                    method=method,
                    url=url,
                ) from e

            status = response.status_code
            if status < 400:
                return self._parse_body(response)

            if status == 401 and use_auth and self.auth.can_refresh and not refreshed:
                refreshed = True
                logger.info(f"[HTTP] {self.name}: 401 on {method} {path}, refreshing token")
                await self.auth.refresh()
                continue

            if cfg.is_retryable(status) and attempt < cfg.max_retries:
                delay = self._parse_retry_after(response)
                if delay is None:
                    delay = self._calculate_backoff(attempt)
                logger.warning(
                    f"[HTTP] {self.name}: status {status} on {method} {path}, "
                    f"retrying in {delay:.2f}s (attempt {attempt + 1})"
                )
                await self._sleep(delay)
                attempt += 1
                continue

            body = self._parse_body(response)
            error_cls = upstream_error_for_status(status)
            logger.error(f"[HTTP] {self.name}: {method} {path} failed with status {status}")
            raise error_cls(
                f"{self.name} request failed: {method} {path}",
                status=status,
                response_body=body,
                method=method,
                url=url,
            )

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)
