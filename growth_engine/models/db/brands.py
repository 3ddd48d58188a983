from __future__ import annotations
"""SQLAlchemy model for brands (tenants whose events are tracked)."""
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import String, DateTime, Boolean, Enum
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .events import MarketingEvent
from sqlalchemy.sql import func
from growth_engine.database import Base
from .enums import Industry

class Brand(Base):
    """A tenant. Brand management lives elsewhere; the analytics core only reads it.

    ``tracking_id`` is the public identifier embedded in the browser snippet,
    ``api_key`` the shared secret server-side callers send as ``x-api-key``.
    """
    __tablename__ = "brands"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tracking_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str] = mapped_column(String, index=True)
    api_key: Mapped[str] = mapped_column(String, unique=True, index=True)
    industry: Mapped[Industry] = mapped_column(Enum(Industry), default=Industry.B2B_SAAS)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    events: Mapped[list["MarketingEvent"]] = relationship("MarketingEvent", back_populates="brand")
