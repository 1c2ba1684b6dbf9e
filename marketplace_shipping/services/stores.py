"""
Durable Stores

Small key-value contracts over the async SQLAlchemy session factory:
- SellerOriginStore: operator-controlled seller origin overrides
- OrderSyncStore: idempotency-bearing order sync records
- QuoteLogStore: capped append-only quote audit log
- TokenStore: bearer token slot per upstream provider

Every write runs in its own transaction (get_db_session commits or rolls
back), so a failed write leaves the previous row untouched.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from marketplace_shipping.core.database import get_db_session
from marketplace_shipping.models import OrderSyncRow, ProviderToken, QuoteLogEntry, SellerOriginRecord
from marketplace_shipping.modules.shipping.types import OrderSyncRecord, OriginSource, SellerOrigin

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class SellerOriginStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_origin(row: SellerOriginRecord) -> SellerOrigin:
        return SellerOrigin(
            seller_id=row.seller_id,
            postal_code=row.postal_code,
            city=row.city or "",
            state=row.state or "",
            country=row.country or "ID",
            address=row.address or "",
            latitude=row.latitude,
            longitude=row.longitude,
            contact_name=row.contact_name or "",
            contact_phone=row.contact_phone or "",
            contact_email=row.contact_email or "",
            store_name_handle=row.store_name_handle or "",
            shop_domain=row.shop_domain or "",
            source=OriginSource.PERSISTED,
        )

    async def get(self, seller_id: str) -> Optional[SellerOrigin]:
        if not seller_id:
            return None
        async with get_db_session(self.session_factory, commit=False) as db:
            row = await db.get(SellerOriginRecord, str(seller_id))
            return self._to_origin(row) if row else None

    async def upsert(self, origin: SellerOrigin, source: str = "manual") -> SellerOrigin:
        async with get_db_session(self.session_factory) as db:
            row = await db.get(SellerOriginRecord, str(origin.seller_id))
            if row is None:
                row = SellerOriginRecord(seller_id=str(origin.seller_id))
                db.add(row)

            row.postal_code = origin.postal_code
            row.city = origin.city
            row.state = origin.state
            row.country = origin.country or "ID"
            row.address = origin.address
            row.latitude = origin.latitude
            row.longitude = origin.longitude
            row.contact_name = origin.contact_name
            row.contact_phone = origin.contact_phone
            row.contact_email = origin.contact_email
            row.store_name_handle = origin.store_name_handle
            row.shop_domain = origin.shop_domain
            row.source = source
            row.updated_at = datetime.now(timezone.utc)

        logger.info(f"[STORE] Seller origin saved: seller={origin.seller_id} postal={origin.postal_code} ({source})")
        return origin.with_source(OriginSource.PERSISTED)

    async def list(self) -> List[SellerOrigin]:
        async with get_db_session(self.session_factory, commit=False) as db:
            result = await db.execute(select(SellerOriginRecord).order_by(SellerOriginRecord.seller_id))
            return [self._to_origin(row) for row in result.scalars().all()]


class OrderSyncStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_record(row: OrderSyncRow) -> OrderSyncRecord:
        record = OrderSyncRecord.from_dict(dict(row.data or {}))
        record.created_at = _iso(row.created_at)
        record.updated_at = _iso(row.updated_at)
        return record

    async def get(self, order_id: str) -> Optional[OrderSyncRecord]:
        if not order_id:
            return None
        async with get_db_session(self.session_factory, commit=False) as db:
            row = await db.get(OrderSyncRow, str(order_id))
            return self._to_record(row) if row else None

    async def save_record(self, record: OrderSyncRecord) -> OrderSyncRecord:
        """Upsert by order id. created_at is kept from the first write."""
        now = datetime.now(timezone.utc)
        async with get_db_session(self.session_factory) as db:
            row = await db.get(OrderSyncRow, str(record.order_id))
            if row is None:
                row = OrderSyncRow(order_id=str(record.order_id), created_at=now)
                db.add(row)

            record.created_at = _iso(row.created_at)
            record.updated_at = _iso(now)
            row.order_name = record.order_name or ""
            row.status = record.status
            row.data = record.to_dict()
            row.updated_at = now

        return record

    async def list(self, limit: int = 100) -> List[OrderSyncRecord]:
        async with get_db_session(self.session_factory, commit=False) as db:
            result = await db.execute(
                select(OrderSyncRow).order_by(OrderSyncRow.updated_at.desc()).limit(max(1, limit))
            )
            return [self._to_record(row) for row in result.scalars().all()]


class QuoteLogStore:
    def __init__(self, session_factory: async_sessionmaker, max_entries: int = 500):
        self.session_factory = session_factory
        self.max_entries = max_entries

    async def append(self, payload: Dict[str, Any], quote_id: str = "") -> Dict[str, Any]:
        entry_id = quote_id or f"log_{uuid.uuid4().hex[:12]}"
        async with get_db_session(self.session_factory) as db:
            entry = QuoteLogEntry(
                id=entry_id,
                quote_id=quote_id,
                payload=payload,
                created_at=datetime.now(timezone.utc),
            )
            db.add(entry)
            await db.flush()

            keep = select(QuoteLogEntry.seq).order_by(QuoteLogEntry.seq.desc()).limit(self.max_entries)
            await db.execute(delete(QuoteLogEntry).where(QuoteLogEntry.seq.not_in(keep)))
            data = entry.to_dict()

        return data

    async def get(self, entry_id: str) -> Optional[Dict[str, Any]]:
        async with get_db_session(self.session_factory, commit=False) as db:
            result = await db.execute(select(QuoteLogEntry).where(QuoteLogEntry.id == entry_id))
            entry = result.scalar_one_or_none()
            return entry.to_dict() if entry else None

    async def list(self, limit: int = 100) -> List[Dict[str, Any]]:
        async with get_db_session(self.session_factory, commit=False) as db:
            result = await db.execute(
                select(QuoteLogEntry).order_by(QuoteLogEntry.seq.desc()).limit(max(1, limit))
            )
            return [entry.to_dict() for entry in result.scalars().all()]


class TokenStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def load(self, provider: str) -> Optional[Dict[str, str]]:
        async with get_db_session(self.session_factory, commit=False) as db:
            row = await db.get(ProviderToken, provider)
            if row is None:
                return None
            return {
                "access_token": row.access_token,
                "refresh_token": row.refresh_token or "",
                "updated_at": _iso(row.updated_at),
            }

    async def save(self, provider: str, access_token: str, refresh_token: str) -> None:
        async with get_db_session(self.session_factory) as db:
            row = await db.get(ProviderToken, provider)
            if row is None:
                row = ProviderToken(provider=provider)
                db.add(row)
            row.access_token = access_token
            row.refresh_token = refresh_token or ""
            row.updated_at = datetime.now(timezone.utc)
        logger.info(f"[STORE] Token persisted for {provider}")
