"""Core application configuration & tunable analytics rules.

Every business rule that may evolve (batch limits, rate limits, attribution
windows, channel classification rules, KPI rollup cadence, industry
benchmarks, retry thresholds, queue priorities) is centralized here so it can
be adjusted without diving into service logic. Values can be overridden via
environment variables; the dicts stay mutable so tests can monkeypatch them.
"""
from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
	raw = os.getenv(name)
	return int(raw) if raw and raw.strip() else default


def _env_float(name: str, default: float) -> float:
	raw = os.getenv(name)
	return float(raw) if raw and raw.strip() else default


# ------------------------------- Ingestion -------------------------------- #
INGESTION_SETTINGS: dict[str, int | str] = {
	"max_batch_size": _env_int("INGEST_MAX_BATCH_SIZE", 100),
	"api_key_header": "x-api-key",
}

# ------------------------------ Rate Limits ------------------------------- #
RATE_LIMIT_SETTINGS: dict[str, str | dict[str, int]] = {
	# "memory" (single process) or "redis" (shared across replicas)
	"backend": os.getenv("RATE_LIMIT_BACKEND", "memory"),
	"redis_url": os.getenv("RATE_LIMIT_REDIS_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
	"key_prefix": "growth:ratelimit",
	"ingest": {
		"limit": _env_int("INGEST_RATE_LIMIT", 1000),  # events per brand
		"window_seconds": _env_int("INGEST_RATE_WINDOW_SECONDS", 60),
	},
}

# ------------------------------ Attribution ------------------------------- #
ATTRIBUTION_SETTINGS: dict[str, int | float | str | list[str]] = {
	"lookback_days": _env_int("ATTRIBUTION_LOOKBACK_DAYS", 30),
	"max_lookback_days": 90,
	"half_life_days": _env_float("ATTRIBUTION_HALF_LIFE_DAYS", 7.0),
	# Consecutive same-channel touches closer than this collapse into one
	"collapse_seconds": 300,
	"conversion_event_types": ["trial_started", "subscription_started", "payment_succeeded"],
	"default_model": "position_based",
	# Position-based split: first/last share, remainder across the middle
	"position_edge_weight": 0.4,
	"credit_tolerance": 1e-9,
	"top_paths_limit": 20,
	"max_path_length": 5,
	"path_separator": " → ",
	# Insight thresholds
	"awareness_ratio": 1.5,
	"multi_touch_hint_avg": 2.0,
}

# Event types that start a visit and therefore count as a touch even
# without utm or referrer data.
ENTRY_EVENT_TYPES: list[str] = ["page_view", "session_start", "ad_click", "email_clicked", "call_completed"]

# ------------------------- Channel Classification ------------------------- #
# Ordered rule table; the first matching rule wins. ``field`` is the event
# attribute inspected, ``pattern`` a case-insensitive regex searched in it. ``all``
# lists extra (field, pattern) pairs that must also match. Referrer rules see
# only the host of an external referrer (``www.`` stripped).
CHANNEL_RULES: list[dict] = [
	# utm_medium
	{"field": "utm_medium", "pattern": r"(cpc|ppc|paid)", "all": [("utm_source", r"(facebook|instagram|meta|linkedin|tiktok|twitter|x\.com|reddit|pinterest)")], "channel": "paid_social"},
	{"field": "utm_medium", "pattern": r"paid[_-]?social", "channel": "paid_social"},
	{"field": "utm_medium", "pattern": r"(cpc|ppc|paid|sem)", "channel": "paid_search"},
	{"field": "utm_medium", "pattern": r"(e-?mail|newsletter)", "channel": "email"},
	{"field": "utm_medium", "pattern": r"affiliate|partner", "channel": "affiliate"},
	{"field": "utm_medium", "pattern": r"referral", "channel": "referral"},
	{"field": "utm_medium", "pattern": r"social", "channel": "organic_social"},
	{"field": "utm_medium", "pattern": r"organic|seo", "channel": "organic_search"},
	{"field": "utm_medium", "pattern": r"(display|cpm|banner)", "channel": "display"},
	{"field": "utm_medium", "pattern": r"(content|blog)", "channel": "content"},
	# utm_source
	{"field": "utm_source", "pattern": r"(adwords|google[_-]?ads|bing[_-]?ads)", "channel": "paid_search"},
	{"field": "utm_source", "pattern": r"(facebook|instagram|meta|linkedin|tiktok)", "channel": "paid_social"},
	{"field": "utm_source", "pattern": r"(twitter|x\.com|reddit|youtube)", "channel": "organic_social"},
	{"field": "utm_source", "pattern": r"(google|bing|yahoo|duckduckgo|baidu)", "channel": "organic_search"},
	{"field": "utm_source", "pattern": r"(e-?mail|newsletter|mailchimp|sendgrid|hubspot)", "channel": "email"},
	# referrer host
	{"field": "referrer", "pattern": r"^(mail\.google|outlook\.live|outlook\.office|mail\.yahoo)\.", "channel": "email"},
	{"field": "referrer", "pattern": r"(^|\.)(google|bing|yahoo|duckduckgo|baidu|ecosia)\.", "channel": "organic_search"},
	{"field": "referrer", "pattern": r"(^|\.)(facebook|instagram|linkedin|twitter|reddit|tiktok|youtube|pinterest)\.|^(t\.co|x\.com|lnkd\.in)$", "channel": "organic_social"},
]
DEFAULT_CHANNEL: str = "direct"
# Any external referrer that matched no rule above
REFERRAL_CHANNEL: str = "referral"

# ---------------------------------- KPIs ---------------------------------- #
KPI_SETTINGS: dict[str, list[str] | dict[str, int] | int] = {
	"lead_event_types": ["lead_captured"],
	"qualified_lead_event_types": ["lead_qualified"],
	"trial_event_types": ["trial_started"],
	"conversion_event_types": ["subscription_started", "trial_converted"],
	"revenue_event_types": ["payment_succeeded", "subscription_started"],
	"churn_event_types": ["churned", "subscription_canceled"],
	"active_subscription_event_types": ["subscription_started", "subscription_renewed"],
	"traffic_event_types": ["page_view", "session_start"],
	"trial_activation_event_types": ["trial_activated"],
	"trial_conversion_event_types": ["trial_converted"],
	"impression_event_types": ["ad_impression"],
	"click_event_types": ["ad_click"],
	"new_mrr_event_types": ["subscription_started"],
	"realtime_window_minutes": 30,
	# Rollup cadence per period (seconds between scheduled rollups)
	"rollup_intervals": {
		"realtime": 30 * 60,
		"hourly": 60 * 60,
		"daily": 24 * 60 * 60,
		"weekly": 7 * 24 * 60 * 60,
		"monthly": 30 * 24 * 60 * 60,
	},
	"history_limit": 100,
}

# ------------------------------ Ad Spend Fetch ---------------------------- #
AD_SPEND_SETTINGS: dict[str, int | float] = {
	"max_attempts": 3,
	"timeout_seconds": 5.0,
}

# ---------------------------- Budget / Benchmarks ------------------------- #
INDUSTRY_BENCHMARKS: dict[str, dict] = {
	"b2b_saas": {
		"baseline_cac": 150.0,
		"avg_revenue_per_customer": 100.0,
		"cac_safety_margin": 1.2,
		"target_roas": 3.0,
		"channel_split": {"paid_search": 0.35, "paid_social": 0.30, "content": 0.15, "email": 0.10, "display": 0.10},
	},
	"church_software": {
		"baseline_cac": 200.0,
		"avg_revenue_per_customer": 100.0,
		"cac_safety_margin": 1.25,
		"target_roas": 2.5,
		"channel_split": {"paid_search": 0.30, "paid_social": 0.35, "content": 0.15, "email": 0.15, "display": 0.05},
	},
	"nonprofit_tech": {
		"baseline_cac": 180.0,
		"avg_revenue_per_customer": 100.0,
		"cac_safety_margin": 1.25,
		"target_roas": 2.0,
		"channel_split": {"paid_search": 0.30, "paid_social": 0.30, "content": 0.20, "email": 0.15, "display": 0.05},
	},
	"ecommerce": {
		"baseline_cac": 60.0,
		"avg_revenue_per_customer": 80.0,
		"cac_safety_margin": 1.15,
		"target_roas": 4.0,
		"channel_split": {"paid_search": 0.30, "paid_social": 0.35, "content": 0.10, "email": 0.15, "display": 0.10},
	},
	"other": {
		"baseline_cac": 150.0,
		"avg_revenue_per_customer": 100.0,
		"cac_safety_margin": 1.2,
		"target_roas": 3.0,
		"channel_split": {"paid_search": 0.35, "paid_social": 0.30, "content": 0.15, "email": 0.10, "display": 0.10},
	},
}

BUDGET_SETTINGS: dict[str, int | float] = {
	# Historical conversions below these counts lower the confidence level
	"low_confidence_below": 10,
	"medium_confidence_below": 50,
	"days_per_month": 30,
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 60,
	"max_attempts": 3,
	"jitter_pct": 0.10,   # +/-10% jitter
}

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, dict[str, int] | int | float | bool] = {
	"priorities": {  # Lower number = higher priority
		"high": 0,
		"normal": 5,
		"low": 10,
	},
	"warn_depth": 1000,
	"max_in_memory": 5000,
	"scheduler_enabled": os.getenv("ROLLUP_SCHEDULER_ENABLED", "false").lower() == "true",
	"scheduler_tick_seconds": 60.0,
}

# ---------------------------------- CORS ---------------------------------- #
CORS_SETTINGS: dict[str, list[str] | bool] = {
	"allow_origins": os.getenv("CORS_ORIGINS", "*").split(","),
	"allow_methods": ["GET", "POST", "OPTIONS"],
	"allow_headers": ["Content-Type", "x-api-key", "Authorization", "X-Request-ID"],
	"allow_credentials": False,
}

__all__ = [
	"INGESTION_SETTINGS",
	"RATE_LIMIT_SETTINGS",
	"ATTRIBUTION_SETTINGS",
	"ENTRY_EVENT_TYPES",
	"CHANNEL_RULES",
	"DEFAULT_CHANNEL",
	"REFERRAL_CHANNEL",
	"KPI_SETTINGS",
	"AD_SPEND_SETTINGS",
	"INDUSTRY_BENCHMARKS",
	"BUDGET_SETTINGS",
	"BACKOFF_POLICY",
	"QUEUE_SETTINGS",
	"CORS_SETTINGS",
]
