"""
Quote audit log model

Append-only trace of computed checkout quotes, trimmed to the most recent
RATE_LOG_MAX_ENTRIES rows.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String

from marketplace_shipping.core.database import Base


class QuoteLogEntry(Base):
    __tablename__ = "quote_log"

    # Autoincrement seq gives a stable newest-first order for equal timestamps
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False, index=True)
    quote_id = Column(String(64), default="", nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "payload": self.payload,
        }
