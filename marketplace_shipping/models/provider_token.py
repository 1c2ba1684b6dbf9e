from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text

from marketplace_shipping.core.database import Base


class ProviderToken(Base):
    """Durable bearer token slot, one row per upstream provider."""
    __tablename__ = "provider_tokens"

    provider = Column(String(32), primary_key=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, default="", nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
