from __future__ import annotations
"""SQLAlchemy model for externally synced ad spend."""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Float, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from growth_engine.database import Base

class AdSpendEntry(Base):
    """Spend for one channel over ``[period_start, period_end)``, as reported by an ad platform sync."""
    __tablename__ = "ad_spend_entries"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    brand_id: Mapped[str] = mapped_column(String(64), ForeignKey("brands.id"), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(64), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_ad_spend_brand_period", "brand_id", "period_start", "period_end"),
    )
