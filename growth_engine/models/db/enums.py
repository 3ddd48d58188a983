"""Central Enum definitions for core analytics vocabulary.

These replace scattered string literals to ensure consistency across
DB models, schemas, and business logic.
"""
from __future__ import annotations
import enum


class EventType(str, enum.Enum):
    # Awareness / engagement
    PAGE_VIEW = "page_view"
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    IDENTIFY = "identify"
    BUTTON_CLICK = "button_click"
    FORM_START = "form_start"
    FORM_SUBMIT = "form_submit"
    FORM_ABANDON = "form_abandon"
    VIDEO_PLAY = "video_play"
    VIDEO_COMPLETE = "video_complete"
    SCROLL_DEPTH = "scroll_depth"
    # Acquisition
    LEAD_CAPTURED = "lead_captured"
    LEAD_QUALIFIED = "lead_qualified"
    DEMO_REQUESTED = "demo_requested"
    DEMO_COMPLETED = "demo_completed"
    # Activation / trials
    TRIAL_STARTED = "trial_started"
    TRIAL_ACTIVATED = "trial_activated"
    TRIAL_CONVERTED = "trial_converted"
    TRIAL_EXPIRED = "trial_expired"
    # Revenue / retention
    SUBSCRIPTION_STARTED = "subscription_started"
    SUBSCRIPTION_UPGRADED = "subscription_upgraded"
    SUBSCRIPTION_DOWNGRADED = "subscription_downgraded"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    REFUND_ISSUED = "refund_issued"
    CHURNED = "churned"
    # Channel-side events
    AD_IMPRESSION = "ad_impression"
    AD_CLICK = "ad_click"
    AD_CONVERSION = "ad_conversion"
    EMAIL_SENT = "email_sent"
    EMAIL_OPENED = "email_opened"
    EMAIL_CLICKED = "email_clicked"
    EMAIL_BOUNCED = "email_bounced"
    EMAIL_UNSUBSCRIBED = "email_unsubscribed"
    CALL_STARTED = "call_started"
    CALL_COMPLETED = "call_completed"
    CALL_MISSED = "call_missed"
    CUSTOM = "custom"


class EventCategory(str, enum.Enum):
    AWARENESS = "awareness"
    ENGAGEMENT = "engagement"
    ACQUISITION = "acquisition"
    ACTIVATION = "activation"
    REVENUE = "revenue"
    RETENTION = "retention"
    CHURN = "churn"
    OTHER = "other"


class AttributionModel(str, enum.Enum):
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"
    TIME_DECAY = "time_decay"
    POSITION_BASED = "position_based"


class KPIPeriod(str, enum.Enum):
    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Industry(str, enum.Enum):
    B2B_SAAS = "b2b_saas"
    CHURCH_SOFTWARE = "church_software"
    NONPROFIT_TECH = "nonprofit_tech"
    ECOMMERCE = "ecommerce"
    OTHER = "other"


class Confidence(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RollupStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


__all__ = [
    "EventType",
    "EventCategory",
    "AttributionModel",
    "KPIPeriod",
    "Industry",
    "Confidence",
    "RollupStatus",
]
