"""Event ingestion pipeline.

Request-level problems (malformed body, oversized batch, brand mismatch) fail
the whole request via ``IngestionError``. Everything else is decided per
event, in this order:

1. validate (canonicalize aliases, schema check)
2. idempotency (``message_id`` already stored, or repeated in the batch)
3. rate limit (one sliding-window hit per new event)
4. append (all surviving events in a single transaction)

Per-event failures are reported as data in the result, never raised.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from growth_engine.config import INGESTION_SETTINGS, RATE_LIMIT_SETTINGS
from growth_engine.models.db import Brand
from growth_engine.models.domain import TrackedEvent
from growth_engine.models.schemas.events import EventIn
from growth_engine.services.event_normalizer import (
    canonicalize_payload,
    categorize,
    extract_brand_ref,
    normalize_event_type,
)
from growth_engine.services.event_store import EventStore, new_event_id
from growth_engine.utils import get_logger, log_business_event
from growth_engine.utils.ratelimiter import RateLimitDecision, RateLimiter
from growth_engine.utils.time import utc_now

logger = get_logger(__name__)


class IngestionError(Exception):
    """Whole-request rejection carrying the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class EventOutcome:
    index: int
    status: str  # accepted | duplicate | rejected
    event_id: Optional[str] = None
    error: Optional[str] = None
    rate_limited: bool = False
    retry_after: Optional[float] = None


@dataclass
class IngestionResult:
    outcomes: list[EventOutcome] = field(default_factory=list)
    processing_time_ms: float = 0.0
    rate_limit: Optional[RateLimitDecision] = None

    @property
    def accepted(self) -> int:
        """Events now present in the store, including already-stored duplicates."""
        return sum(1 for o in self.outcomes if o.status in ("accepted", "duplicate"))

    @property
    def duplicates(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "duplicate")

    @property
    def rejected(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "rejected")

    @property
    def errors(self) -> list[dict]:
        return [{"index": o.index, "error": o.error} for o in self.outcomes if o.status == "rejected"]

    def to_batch_payload(self) -> dict:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "processingTimeMs": round(self.processing_time_ms, 2),
        }


def parse_body(body: Any) -> tuple[list[Any], bool]:
    """Split a decoded JSON body into raw events; returns (events, is_batch)."""
    if not isinstance(body, dict):
        raise IngestionError(400, "request body must be a JSON object")
    if "events" not in body:
        return [body], False
    events = body["events"]
    if not isinstance(events, list):
        raise IngestionError(400, "'events' must be a list")
    if not events:
        raise IngestionError(400, "events batch must not be empty")
    max_batch = int(INGESTION_SETTINGS["max_batch_size"])
    if len(events) > max_batch:
        raise IngestionError(400, f"batch of {len(events)} events exceeds the maximum of {max_batch}")
    return events, True


def authorize_events(raw_events: Sequence[Any], brand: Brand) -> None:
    """Reject the request if any event names a brand other than the caller's.

    Events without a brand reference pass here and fail validation individually.
    """
    allowed = {brand.id, brand.tracking_id}
    for index, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            continue
        ref = extract_brand_ref(raw)
        if ref is not None and ref not in allowed:
            logger.warning(
                "Brand mismatch in ingest request",
                brand_id=brand.id,
                event_index=index,
                referenced_brand=ref,
            )
            raise IngestionError(401, f"event {index} references a brand not authorized by this API key")


def format_validation_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    field_name = ".".join(str(part) for part in err.get("loc", ())) or "event"
    if err.get("type") == "missing":
        return f"missing required field '{field_name}'"
    return f"invalid field '{field_name}': {err.get('msg')}"


def validate_event(raw: Any) -> EventIn:
    """Canonicalize and schema-check one raw event; raises ValueError with a client-facing message."""
    if not isinstance(raw, dict):
        raise ValueError("event must be a JSON object")
    payload = canonicalize_payload(raw)
    if not payload.get("brand_id"):
        raise ValueError("missing required field 'brand_id'")
    try:
        return EventIn.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(format_validation_error(exc)) from exc


def build_tracked_event(event: EventIn, brand: Brand, received_at: datetime) -> TrackedEvent:
    event_type = normalize_event_type(event.event_type)
    return TrackedEvent(
        id=new_event_id(),
        brand_id=brand.id,
        event_type=event_type,
        timestamp=event.timestamp or received_at,
        received_at=received_at,
        raw_event_type=event.event_type,
        category=categorize(event_type),
        anonymous_id=event.anonymous_id,
        user_id=event.user_id,
        session_id=event.session_id,
        utm_source=event.utm_source,
        utm_medium=event.utm_medium,
        utm_campaign=event.utm_campaign,
        utm_term=event.utm_term,
        utm_content=event.utm_content,
        referrer=event.referrer,
        page_url=event.page_url,
        channel_hint=event.channel_hint,
        revenue=event.revenue,
        currency=event.currency,
        message_id=event.message_id,
        properties=event.properties,
    )


async def ingest_events(
    raw_events: Sequence[Any],
    brand: Brand,
    *,
    store: EventStore,
    limiter: RateLimiter,
    request_id: Optional[str] = None,
) -> IngestionResult:
    start = time.perf_counter()
    received_at = utc_now()
    result = IngestionResult()
    outcomes: dict[int, EventOutcome] = {}

    validated: list[tuple[int, EventIn]] = []
    for index, raw in enumerate(raw_events):
        try:
            validated.append((index, validate_event(raw)))
        except ValueError as exc:
            outcomes[index] = EventOutcome(index=index, status="rejected", error=str(exc))

    stored_ids = store.existing_message_ids(brand.id, (e.message_id for _, e in validated if e.message_id))
    seen_in_batch: set[str] = set()

    rl_cfg = RATE_LIMIT_SETTINGS["ingest"]
    limit = int(rl_cfg["limit"])  # type: ignore[index]
    window_seconds = int(rl_cfg["window_seconds"])  # type: ignore[index]

    to_append: list[tuple[int, TrackedEvent]] = []
    for index, event in validated:
        if event.message_id and (event.message_id in stored_ids or event.message_id in seen_in_batch):
            outcomes[index] = EventOutcome(index=index, status="duplicate")
            continue

        decision = await limiter.hit(f"ingest:{brand.id}", limit=limit, window_seconds=window_seconds)
        result.rate_limit = decision
        if not decision.allowed:
            retry_after = max(1, int(decision.retry_after + 0.999))
            outcomes[index] = EventOutcome(
                index=index,
                status="rejected",
                error=f"rate limit exceeded for brand {brand.id}; retry after {retry_after}s",
                rate_limited=True,
                retry_after=decision.retry_after,
            )
            continue

        if event.message_id:
            seen_in_batch.add(event.message_id)
        tracked = build_tracked_event(event, brand, received_at)
        to_append.append((index, tracked))

    # a message id committed by a concurrent request after the lookup above is not written
    written = set(store.append([tracked for _, tracked in to_append]))
    for index, tracked in to_append:
        if tracked.id in written:
            outcomes[index] = EventOutcome(index=index, status="accepted", event_id=tracked.id)
        else:
            outcomes[index] = EventOutcome(index=index, status="duplicate")

    result.outcomes = [outcomes[i] for i in sorted(outcomes)]
    result.processing_time_ms = (time.perf_counter() - start) * 1000

    if result.rejected:
        logger.info(
            "Ingest request had rejected events",
            brand_id=brand.id,
            rejected=result.rejected,
            first_error=result.errors[0]["error"],
            request_id=request_id,
        )
    log_business_event(
        "events_ingested",
        {
            "received": len(raw_events),
            "accepted": result.accepted,
            "rejected": result.rejected,
            "duplicates": result.duplicates,
        },
        brand_id=brand.id,
        request_id=request_id,
    )
    return result


__all__ = [
    "IngestionError",
    "IngestionResult",
    "EventOutcome",
    "parse_body",
    "authorize_events",
    "validate_event",
    "format_validation_error",
    "build_tracked_event",
    "ingest_events",
]
