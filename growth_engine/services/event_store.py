"""Append-only event store accessor.

The log is only ever appended to and read by time range; there is no update
or delete path. ``as_of`` bounds reads by server receipt time so a computation
pass sees a fixed snapshot even while ingestion keeps appending.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from sqlalchemy import func, insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from growth_engine.models.db import MarketingEvent
from growth_engine.models.db.enums import EventCategory, EventType
from growth_engine.models.domain import TrackedEvent
from growth_engine.utils import get_logger
from growth_engine.utils.time import ensure_utc, to_naive_utc

logger = get_logger(__name__)


def new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:24]}"


class EventStore(Protocol):
    def append(self, events: Sequence[TrackedEvent]) -> list[str]:
        """Store events; returns the ids actually written (conflicting message ids are skipped)."""
        ...

    def existing_message_ids(self, brand_id: str, message_ids: Iterable[str]) -> set[str]: ...

    def query(
        self,
        brand_id: str,
        start: datetime,
        end: datetime,
        *,
        as_of: Optional[datetime] = None,
        event_types: Optional[Iterable[EventType]] = None,
        category: Optional[EventCategory] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[TrackedEvent]: ...

    def count(
        self,
        brand_id: str,
        start: datetime,
        end: datetime,
        *,
        as_of: Optional[datetime] = None,
        event_types: Optional[Iterable[EventType]] = None,
        category: Optional[EventCategory] = None,
    ) -> int: ...


def to_tracked_event(row: MarketingEvent) -> TrackedEvent:
    return TrackedEvent(
        id=row.id,
        brand_id=row.brand_id,
        event_type=row.event_type,
        timestamp=ensure_utc(row.timestamp),
        received_at=ensure_utc(row.received_at),
        raw_event_type=row.raw_event_type,
        category=row.category,
        anonymous_id=row.anonymous_id,
        user_id=row.user_id,
        session_id=row.session_id,
        utm_source=row.utm_source,
        utm_medium=row.utm_medium,
        utm_campaign=row.utm_campaign,
        utm_term=row.utm_term,
        utm_content=row.utm_content,
        referrer=row.referrer,
        page_url=row.page_url,
        channel_hint=row.channel_hint,
        revenue=row.revenue,
        currency=row.currency or "USD",
        message_id=row.message_id,
        properties=dict(row.properties or {}),
    )


def _row_values(event: TrackedEvent) -> dict:
    return {
        "id": event.id,
        "brand_id": event.brand_id,
        "event_type": event.event_type,
        "raw_event_type": event.raw_event_type or event.event_type.value,
        "category": event.category,
        "timestamp": to_naive_utc(event.timestamp),
        "received_at": to_naive_utc(event.received_at),
        "anonymous_id": event.anonymous_id,
        "user_id": event.user_id,
        "session_id": event.session_id,
        "utm_source": event.utm_source,
        "utm_medium": event.utm_medium,
        "utm_campaign": event.utm_campaign,
        "utm_term": event.utm_term,
        "utm_content": event.utm_content,
        "referrer": event.referrer,
        "page_url": event.page_url,
        "channel_hint": event.channel_hint,
        "revenue": event.revenue,
        "currency": event.currency,
        "message_id": event.message_id,
        "properties": dict(event.properties),
    }


# dialects whose INSERT can skip rows that hit the (brand_id, message_id) constraint
_CONFLICT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class SqlAlchemyEventStore:
    def __init__(self, session: Session):
        self.session = session

    def _insert_statement(self, event: TrackedEvent):
        values = _row_values(event)
        dialect_insert = _CONFLICT_INSERTS.get(self.session.get_bind().dialect.name)
        if event.message_id and dialect_insert is not None:
            return (
                dialect_insert(MarketingEvent.__table__)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["brand_id", "message_id"])
            )
        return insert(MarketingEvent.__table__).values(**values)

    def append(self, events: Sequence[TrackedEvent]) -> list[str]:
        """Persist events in one transaction.

        Returns the ids actually stored, in input order. An event whose
        message id was committed concurrently by another request is skipped
        rather than failing the batch.
        """
        if not events:
            return []
        stored: list[str] = []
        try:
            for event in events:
                result = self.session.execute(self._insert_statement(event))
                if result.rowcount:
                    stored.append(event.id)
                else:
                    logger.info(
                        "Duplicate message id skipped",
                        brand_id=event.brand_id,
                        message_id=event.message_id,
                    )
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error("Event append failed", count=len(events), error=str(e), exc_info=True)
            raise
        logger.debug("Events appended", count=len(stored), brand_id=events[0].brand_id)
        return stored

    def existing_message_ids(self, brand_id: str, message_ids: Iterable[str]) -> set[str]:
        ids = {m for m in message_ids if m}
        if not ids:
            return set()
        stmt = select(MarketingEvent.message_id).where(
            MarketingEvent.brand_id == brand_id,
            MarketingEvent.message_id.in_(ids),
        )
        return {m for m in self.session.scalars(stmt) if m}

    def _filtered(self, stmt, brand_id, start, end, as_of, event_types, category):
        stmt = stmt.where(
            MarketingEvent.brand_id == brand_id,
            MarketingEvent.timestamp >= to_naive_utc(start),
            MarketingEvent.timestamp < to_naive_utc(end),
        )
        if as_of is not None:
            stmt = stmt.where(MarketingEvent.received_at <= to_naive_utc(as_of))
        if event_types is not None:
            stmt = stmt.where(MarketingEvent.event_type.in_(list(event_types)))
        if category is not None:
            stmt = stmt.where(MarketingEvent.category == category)
        return stmt

    def query(
        self,
        brand_id: str,
        start: datetime,
        end: datetime,
        *,
        as_of: Optional[datetime] = None,
        event_types: Optional[Iterable[EventType]] = None,
        category: Optional[EventCategory] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[TrackedEvent]:
        """Events with ``start <= timestamp < end``, ordered by timestamp then id."""
        stmt = self._filtered(select(MarketingEvent), brand_id, start, end, as_of, event_types, category)
        stmt = stmt.order_by(MarketingEvent.timestamp, MarketingEvent.id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [to_tracked_event(row) for row in self.session.scalars(stmt)]

    def count(
        self,
        brand_id: str,
        start: datetime,
        end: datetime,
        *,
        as_of: Optional[datetime] = None,
        event_types: Optional[Iterable[EventType]] = None,
        category: Optional[EventCategory] = None,
    ) -> int:
        stmt = self._filtered(select(func.count(MarketingEvent.id)), brand_id, start, end, as_of, event_types, category)
        return int(self.session.scalar(stmt) or 0)


__all__ = ["EventStore", "SqlAlchemyEventStore", "to_tracked_event", "new_event_id"]
