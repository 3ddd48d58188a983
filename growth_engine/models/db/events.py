from __future__ import annotations
"""SQLAlchemy model for the append-only marketing event log.

All datetimes are stored as naive UTC; readers re-attach UTC on the way out.
"""
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import String, Text, DateTime, Float, Enum, ForeignKey, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .brands import Brand
from growth_engine.database import Base
from .enums import EventType, EventCategory

class MarketingEvent(Base):
    __tablename__ = "marketing_events"
    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    brand_id: Mapped[str] = mapped_column(String(64), ForeignKey("brands.id"), nullable=False, index=True)

    event_type: Mapped[EventType] = mapped_column(Enum(EventType), nullable=False, index=True)
    raw_event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[EventCategory] = mapped_column(Enum(EventCategory), nullable=False, index=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    anonymous_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    utm_source: Mapped[str | None] = mapped_column(String(256), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(256), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(256), nullable=True)
    utm_term: Mapped[str | None] = mapped_column(String(256), nullable=True)
    utm_content: Mapped[str | None] = mapped_column(String(256), nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    channel_hint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    properties: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    revenue: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    message_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    brand: Mapped["Brand"] = relationship("Brand", back_populates="events")

    __table_args__ = (
        UniqueConstraint("brand_id", "message_id", name="uq_marketing_events_brand_message"),
        Index("ix_marketing_events_brand_timestamp", "brand_id", "timestamp"),
    )
