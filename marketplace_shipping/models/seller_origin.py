"""
Seller origin override model

Operator-controlled ship-from address per seller. Written only by explicit
origin-sync events (Shopify Flow webhook / admin API); quote-time lookups
read it but never write it.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, String, Text

from marketplace_shipping.core.database import Base


class SellerOriginRecord(Base):
    __tablename__ = "seller_origins"

    seller_id = Column(String(64), primary_key=True)

    postal_code = Column(String(16), nullable=False)
    city = Column(String(255), default="", nullable=False)
    state = Column(String(255), default="", nullable=False)
    country = Column(String(8), default="ID", nullable=False)
    address = Column(Text, default="", nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Seller identity hints used for booking contacts
    contact_name = Column(String(255), default="", nullable=False)
    contact_phone = Column(String(64), default="", nullable=False)
    contact_email = Column(String(255), default="", nullable=False)
    store_name_handle = Column(String(255), default="", nullable=False)
    shop_domain = Column(String(255), default="", nullable=False)

    source = Column(String(32), default="manual", nullable=False)  # flow_webhook, admin_api, manual
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<SellerOriginRecord(seller_id={self.seller_id}, postal_code={self.postal_code})>"
