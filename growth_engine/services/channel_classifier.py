"""Marketing channel classification.

Channel assignment is driven by the ordered rule table in
``config.CHANNEL_RULES`` so new sources can be added without code changes.
Classification always returns a channel; an event with nothing to go on is
``direct``.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from growth_engine import config
from growth_engine.models.domain import TrackedEvent


@lru_cache(maxsize=256)
def _compiled(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def url_host(url: Optional[str]) -> Optional[str]:
    """Lower-cased host of ``url`` without a leading ``www.``; tolerates scheme-less input."""
    if not url:
        return None
    candidate = url.strip()
    if "//" not in candidate:
        candidate = "//" + candidate
    host = urlparse(candidate).hostname
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def external_referrer_host(event: TrackedEvent) -> Optional[str]:
    """Referrer host, or None when absent or on the same host as the landing page."""
    ref_host = url_host(event.referrer)
    if ref_host is None:
        return None
    if ref_host == url_host(event.page_url):
        return None
    return ref_host


def _field_value(event: TrackedEvent, field: str) -> Optional[str]:
    if field == "referrer":
        return external_referrer_host(event)
    value = getattr(event, field, None)
    return str(value) if value else None


def _rule_matches(event: TrackedEvent, rule: dict) -> bool:
    value = _field_value(event, rule["field"])
    if not value or not _compiled(rule["pattern"]).search(value):
        return False
    for extra_field, extra_pattern in rule.get("all", ()):
        extra_value = _field_value(event, extra_field)
        if not extra_value or not _compiled(extra_pattern).search(extra_value):
            return False
    return True


def classify_channel(event: TrackedEvent) -> str:
    if event.channel_hint:
        return event.channel_hint
    for rule in config.CHANNEL_RULES:
        if _rule_matches(event, rule):
            return rule["channel"]
    if external_referrer_host(event):
        return config.REFERRAL_CHANNEL
    return config.DEFAULT_CHANNEL


def has_marketing_signal(event: TrackedEvent) -> bool:
    """Whether the event says anything about how the visitor arrived.

    Mid-session interactions (clicks, form fills, in-app actions) and page
    views reached by internal navigation carry no acquisition information and
    are not touchpoints.
    """
    if event.channel_hint:
        return True
    if any((event.utm_source, event.utm_medium, event.utm_campaign, event.utm_term, event.utm_content)):
        return True
    if external_referrer_host(event):
        return True
    if url_host(event.referrer) is not None:
        return False
    return event.event_type.value in config.ENTRY_EVENT_TYPES


__all__ = ["classify_channel", "has_marketing_signal", "external_referrer_host", "url_host"]
