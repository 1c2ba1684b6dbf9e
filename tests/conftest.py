"""
Pytest configuration and fixtures for the shipping bridge tests.

Stores run against an in-memory SQLite database; upstream providers are
AsyncMock collaborators or httpx.MockTransport-backed clients.
"""
import os
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

from marketplace_shipping.core.cache import TTLCache  # noqa: E402
from marketplace_shipping.core.config import Settings  # noqa: E402
from marketplace_shipping.core.database import create_session_factory, init_models  # noqa: E402
from marketplace_shipping.core.exceptions import ResolutionGap  # noqa: E402
from marketplace_shipping.modules.shipping.types import SellerOrigin, VariantMapping  # noqa: E402
from marketplace_shipping.services.stores import (  # noqa: E402
    OrderSyncStore,
    QuoteLogStore,
    SellerOriginStore,
    TokenStore,
)
from tests.helpers import make_settings  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def origin_store(session_factory) -> SellerOriginStore:
    return SellerOriginStore(session_factory)


@pytest.fixture
def sync_store(session_factory) -> OrderSyncStore:
    return OrderSyncStore(session_factory)


@pytest.fixture
def quote_log(session_factory) -> QuoteLogStore:
    return QuoteLogStore(session_factory, max_entries=3)


@pytest.fixture
def token_store(session_factory) -> TokenStore:
    return TokenStore(session_factory)


@pytest.fixture
def variant_cache() -> TTLCache:
    return TTLCache(ttl_seconds=600, max_entries=100, name="variants")


@pytest.fixture
def seller_cache() -> TTLCache:
    return TTLCache(ttl_seconds=600, max_entries=100, name="sellers")


@pytest.fixture
def rate_cache() -> TTLCache:
    return TTLCache(ttl_seconds=600, max_entries=100, name="rates")


@pytest.fixture
def mock_directory() -> AsyncMock:
    """
    Seller directory with two sellers:
    variant 1001 -> seller A (origin 12190), variant 2002 -> seller B (origin 60111).
    """
    mappings = {
        "1001": VariantMapping(variant_id="1001", seller_id="A", product_id="p1", weight_grams=500),
        "2002": VariantMapping(variant_id="2002", seller_id="B", product_id="p2", weight_grams=800),
    }
    origins = {
        "A": SellerOrigin(
            seller_id="A", postal_code="12190", city="Jakarta Selatan", state="JK", country="ID",
            address="Jl. Sudirman 1", contact_name="Toko A", contact_phone="0811000001",
            contact_email="a@example.com",
        ),
        "B": SellerOrigin(
            seller_id="B", postal_code="60111", city="Surabaya", state="JI", country="ID",
            address="Jl. Darmo 2", contact_name="Toko B", contact_phone="0811000002",
            contact_email="b@example.com",
        ),
    }

    async def resolve_variant(variant_id):
        if variant_id not in mappings:
            raise ResolutionGap(f"Variant not found for shopify variant id: {variant_id}")
        return mappings[variant_id]

    async def resolve_seller_origin(seller_id):
        if seller_id not in origins:
            raise ResolutionGap(f"Seller not found: {seller_id}")
        return origins[seller_id]

    async def get_seller(seller_id):
        if seller_id not in origins:
            raise ResolutionGap(f"Seller not found: {seller_id}")
        origin = origins[seller_id]
        return {"id": seller_id, "sp_store_name": origin.contact_name, "contact": origin.contact_phone}

    directory = AsyncMock()
    directory.resolve_variant = AsyncMock(side_effect=resolve_variant)
    directory.resolve_seller_origin = AsyncMock(side_effect=resolve_seller_origin)
    directory.get_seller = AsyncMock(side_effect=get_seller)
    return directory


@pytest.fixture
def resolver(mock_directory, origin_store, variant_cache, seller_cache, settings):
    from marketplace_shipping.services.origin_resolver import SellerOriginResolver

    return SellerOriginResolver(mock_directory, origin_store, variant_cache, seller_cache, settings=settings)
