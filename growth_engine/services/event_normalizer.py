"""Normalization of raw client payloads into canonical event fields.

Clients send events in several dialects: the browser snippet (``tracking_id``,
``event_name``), camelCase server SDKs (``brandId``, ``utm: {source: ...}``) and
plain snake_case. Everything is folded into one canonical key set here, before
schema validation, so validation errors always name the canonical field.
"""
from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from growth_engine.models.db.enums import EventCategory, EventType

# canonical field -> accepted spellings (canonical first)
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "brand_id": ("brand_id", "brandId", "tracking_id", "trackingId"),
    "event_type": ("event_type", "eventType", "event_name", "eventName", "event", "type"),
    "timestamp": ("timestamp", "ts", "occurred_at", "occurredAt", "time"),
    "anonymous_id": ("anonymous_id", "anonymousId", "visitor_id", "visitorId"),
    "user_id": ("user_id", "userId"),
    "session_id": ("session_id", "sessionId"),
    "page_url": ("page_url", "pageUrl", "url", "landing_page", "landingPage"),
    "referrer": ("referrer", "referer", "referrer_url", "referrerUrl"),
    "channel_hint": ("channel_hint", "channelHint", "channel"),
    "message_id": ("message_id", "messageId", "idempotency_key", "idempotencyKey"),
    "utm_source": ("utm_source", "utmSource"),
    "utm_medium": ("utm_medium", "utmMedium"),
    "utm_campaign": ("utm_campaign", "utmCampaign"),
    "utm_term": ("utm_term", "utmTerm"),
    "utm_content": ("utm_content", "utmContent"),
    "properties": ("properties", "props"),
    "revenue": ("revenue",),
    "currency": ("currency",),
}

UTM_KEYS = ("source", "medium", "campaign", "term", "content")

EVENT_TYPE_ALIASES: dict[str, EventType] = {
    "pageview": EventType.PAGE_VIEW,
    "page": EventType.PAGE_VIEW,
    "view": EventType.PAGE_VIEW,
    "session": EventType.SESSION_START,
    "click": EventType.BUTTON_CLICK,
    "lead": EventType.LEAD_CAPTURED,
    "signup_lead": EventType.LEAD_CAPTURED,
    "form_submitted": EventType.FORM_SUBMIT,
    "trial": EventType.TRIAL_STARTED,
    "trial_start": EventType.TRIAL_STARTED,
    "subscribe": EventType.SUBSCRIPTION_STARTED,
    "subscription_created": EventType.SUBSCRIPTION_STARTED,
    "subscription_cancelled": EventType.SUBSCRIPTION_CANCELED,
    "payment": EventType.PAYMENT_SUCCEEDED,
    "payment_completed": EventType.PAYMENT_SUCCEEDED,
    "purchase": EventType.PAYMENT_SUCCEEDED,
    "cancel": EventType.CHURNED,
    "churn": EventType.CHURNED,
}

EVENT_CATEGORIES: dict[EventType, EventCategory] = {}
for _category, _types in {
    EventCategory.AWARENESS: (
        EventType.PAGE_VIEW, EventType.SESSION_START, EventType.SESSION_END,
        EventType.AD_IMPRESSION, EventType.AD_CLICK, EventType.EMAIL_SENT,
        EventType.EMAIL_OPENED, EventType.EMAIL_CLICKED, EventType.VIDEO_PLAY,
        EventType.VIDEO_COMPLETE, EventType.SCROLL_DEPTH,
    ),
    EventCategory.ENGAGEMENT: (
        EventType.IDENTIFY, EventType.BUTTON_CLICK, EventType.FORM_START,
        EventType.FORM_SUBMIT, EventType.FORM_ABANDON, EventType.CALL_STARTED,
        EventType.CALL_COMPLETED, EventType.CALL_MISSED,
    ),
    EventCategory.ACQUISITION: (
        EventType.LEAD_CAPTURED, EventType.LEAD_QUALIFIED, EventType.DEMO_REQUESTED,
        EventType.DEMO_COMPLETED, EventType.AD_CONVERSION,
    ),
    EventCategory.ACTIVATION: (
        EventType.TRIAL_STARTED, EventType.TRIAL_ACTIVATED, EventType.TRIAL_CONVERTED,
        EventType.TRIAL_EXPIRED,
    ),
    EventCategory.REVENUE: (
        EventType.SUBSCRIPTION_STARTED, EventType.SUBSCRIPTION_UPGRADED,
        EventType.PAYMENT_SUCCEEDED, EventType.PAYMENT_FAILED, EventType.REFUND_ISSUED,
    ),
    EventCategory.RETENTION: (EventType.SUBSCRIPTION_RENEWED, EventType.SUBSCRIPTION_DOWNGRADED),
    EventCategory.CHURN: (EventType.SUBSCRIPTION_CANCELED, EventType.CHURNED, EventType.EMAIL_UNSUBSCRIBED),
}.items():
    for _event_type in _types:
        EVENT_CATEGORIES[_event_type] = _category

_SEPARATORS = re.compile(r"[\s\-.]+")


def normalize_event_type(raw: str) -> EventType:
    """Map a client event name to the closed enumeration.

    Unknown names become ``page_view`` so the event still counts as traffic;
    the caller keeps the raw string for provenance.
    """
    key = _SEPARATORS.sub("_", raw.strip().lower())
    try:
        return EventType(key)
    except ValueError:
        return EVENT_TYPE_ALIASES.get(key, EventType.PAGE_VIEW)


def categorize(event_type: EventType) -> EventCategory:
    return EVENT_CATEGORIES.get(event_type, EventCategory.OTHER)


def extract_brand_ref(raw: Mapping[str, Any]) -> Optional[str]:
    """First non-empty brand reference in a raw payload, under any accepted spelling."""
    for alias in FIELD_ALIASES["brand_id"]:
        value = raw.get(alias)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def canonicalize_payload(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Fold alias spellings and nested ``utm`` objects into canonical keys.

    When a payload carries several spellings of one field, the first in
    ``FIELD_ALIASES`` order wins. Unknown keys are dropped.
    """
    payload: dict[str, Any] = {}
    for canonical, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if alias in raw and raw[alias] is not None:
                payload[canonical] = raw[alias]
                break

    nested_utm = raw.get("utm")
    if isinstance(nested_utm, Mapping):
        for key in UTM_KEYS:
            if nested_utm.get(key) is not None:
                payload.setdefault(f"utm_{key}", nested_utm[key])

    properties = payload.get("properties")
    if payload.get("revenue") is None and isinstance(properties, Mapping):
        for key in ("revenue", "amount"):
            value = properties.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                payload["revenue"] = value
                break
    return payload


__all__ = [
    "FIELD_ALIASES",
    "EVENT_TYPE_ALIASES",
    "EVENT_CATEGORIES",
    "normalize_event_type",
    "categorize",
    "extract_brand_ref",
    "canonicalize_payload",
]
