"""
Service container

Wires one client per upstream, the three caches, the durable stores and the
services on top of them. Callers own the lifecycle:

    container = build_container(settings)
    await container.start()
    try:
        result = await container.order_sync.sync_order(order_id)
    finally:
        await container.close()
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from marketplace_shipping.core.cache import TTLCache
from marketplace_shipping.core.database import create_engine_from_url, create_session_factory, init_models
from marketplace_shipping.modules.shipping.providers import BiteshipClient, ShopifyAdminClient, WebkulClient
from marketplace_shipping.services import (
    OrderPlanBuilder,
    OrderSyncService,
    OrderSyncStore,
    QuoteLogStore,
    SellerOriginResolver,
    SellerOriginStore,
    ShippingService,
    TokenStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: object
    engine: AsyncEngine
    session_factory: async_sessionmaker
    webkul: WebkulClient
    biteship: BiteshipClient
    shopify: ShopifyAdminClient
    variant_cache: TTLCache
    seller_cache: TTLCache
    rate_cache: TTLCache
    origin_store: SellerOriginStore
    sync_store: OrderSyncStore
    quote_log: QuoteLogStore
    token_store: TokenStore
    resolver: SellerOriginResolver
    shipping: ShippingService
    plan_builder: OrderPlanBuilder
    order_sync: OrderSyncService

    async def start(self) -> None:
        await init_models(self.engine)
        missing = self.settings.missing_required()
        if missing:
            logger.warning(f"[BOOT] Missing credentials: {', '.join(missing)}")
        if not self.shopify.is_configured():
            logger.warning("[BOOT] Shopify admin not configured; order sync unavailable")

    async def close(self) -> None:
        await self.webkul.close()
        await self.biteship.close()
        await self.shopify.close()
        await self.engine.dispose()


def build_container(settings=None, engine: Optional[AsyncEngine] = None, transport=None) -> Container:
    """
    Args:
        settings: Settings instance (module singleton when omitted)
        engine: pre-built engine, e.g. an in-memory database
        transport: httpx transport shared by every client (tests)
    """
    if settings is None:
        from marketplace_shipping.core.config import settings

    if engine is None:
        engine = create_engine_from_url(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    session_factory = create_session_factory(engine)

    origin_store = SellerOriginStore(session_factory)
    sync_store = OrderSyncStore(session_factory)
    quote_log = QuoteLogStore(session_factory, max_entries=settings.RATE_LOG_MAX_ENTRIES)
    token_store = TokenStore(session_factory)

    webkul = WebkulClient.from_settings(settings, token_store=token_store, transport=transport)
    biteship = BiteshipClient.from_settings(settings, transport=transport)
    shopify = ShopifyAdminClient.from_settings(settings, transport=transport)

    variant_cache = TTLCache(settings.VARIANT_CACHE_TTL_SECONDS, settings.CACHE_MAX_ENTRIES, name="variants")
    seller_cache = TTLCache(settings.SELLER_CACHE_TTL_SECONDS, settings.CACHE_MAX_ENTRIES, name="sellers")
    rate_cache = TTLCache(settings.RATE_CACHE_TTL_SECONDS, settings.CACHE_MAX_ENTRIES, name="rates")

    resolver = SellerOriginResolver(webkul, origin_store, variant_cache, seller_cache, settings=settings)
    shipping = ShippingService(resolver, biteship, rate_cache, quote_log=quote_log, settings=settings)
    plan_builder = OrderPlanBuilder(resolver, biteship, settings=settings)
    order_sync = OrderSyncService(shopify, biteship, plan_builder, sync_store, settings=settings)

    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        webkul=webkul,
        biteship=biteship,
        shopify=shopify,
        variant_cache=variant_cache,
        seller_cache=seller_cache,
        rate_cache=rate_cache,
        origin_store=origin_store,
        sync_store=sync_store,
        quote_log=quote_log,
        token_store=token_store,
        resolver=resolver,
        shipping=shipping,
        plan_builder=plan_builder,
        order_sync=order_sync,
    )
