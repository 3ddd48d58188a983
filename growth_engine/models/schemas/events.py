"""
Event ingestion and event query schemas.
"""
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict, field_validator

class EventIn(BaseModel):
    """A single canonicalized event as accepted by the ingestion gateway.

    Payloads are canonicalized (alias spellings folded) before they reach this
    model, so field names here are the only ones validation ever reports.
    """
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    brand_id: str = Field(min_length=1, max_length=64)
    event_type: str = Field(min_length=1, max_length=128, description="Client event name, normalized later")
    timestamp: Optional[datetime] = Field(default=None, description="Client time (ISO-8601); server time when absent")

    anonymous_id: Optional[str] = Field(default=None, max_length=128)
    user_id: Optional[str] = Field(default=None, max_length=128)
    session_id: Optional[str] = Field(default=None, max_length=128)

    utm_source: Optional[str] = Field(default=None, max_length=256)
    utm_medium: Optional[str] = Field(default=None, max_length=256)
    utm_campaign: Optional[str] = Field(default=None, max_length=256)
    utm_term: Optional[str] = Field(default=None, max_length=256)
    utm_content: Optional[str] = Field(default=None, max_length=256)
    referrer: Optional[str] = Field(default=None, max_length=2048)
    page_url: Optional[str] = Field(default=None, max_length=2048)
    channel_hint: Optional[str] = Field(default=None, max_length=64)

    properties: Dict[str, Any] = Field(default_factory=dict)
    revenue: Optional[float] = Field(default=None, allow_inf_nan=False)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    message_id: Optional[str] = Field(default=None, max_length=128)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("currency")
    @classmethod
    def _currency_upper(cls, value: str) -> str:
        return value.upper()

    @field_validator("channel_hint")
    @classmethod
    def _channel_lower(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower().replace(" ", "_").replace("-", "_") or None

