"""
Order sync record model

One row per storefront order. The full record (shipments, skipped items,
selected shipping) lives in the JSON `data` column; status and timestamps
are lifted into columns for listing.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, String

from marketplace_shipping.core.database import Base


class OrderSyncRow(Base):
    __tablename__ = "order_sync_records"
    __table_args__ = (
        Index("ix_order_sync_records_updated_at", "updated_at"),
    )

    order_id = Column(String(64), primary_key=True)
    order_name = Column(String(64), default="", nullable=False)
    status = Column(String(32), nullable=False)  # processing, completed, partial_failed
    data = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<OrderSyncRow(order_id={self.order_id}, status={self.status})>"
