import os
import secrets
import sys
from datetime import datetime, timezone
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'growth_engine' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from growth_engine.main import app  # type: ignore
from growth_engine.database import Base  # type: ignore
from growth_engine.api import deps  # type: ignore
"""Pytest fixtures and factories.

Important: SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise back_populates targets might not exist yet.
"""
from growth_engine.models.db import AdSpendEntry, Brand, KPISnapshotRecord, RollupLog  # noqa: F401
from growth_engine.models.db.enums import EventType, Industry
from growth_engine.models.domain import TrackedEvent
from growth_engine.jobs.queue import PriorityDelayQueue
from growth_engine.jobs import worker_rollup
from growth_engine.jobs.worker_rollup import RollupWorker
from growth_engine.services.event_normalizer import categorize
from growth_engine.services.event_store import SqlAlchemyEventStore, new_event_id
from growth_engine.utils import ratelimiter
from growth_engine.utils.time import ensure_utc, to_naive_utc

# File-based SQLite so the worker thread and the test thread share data
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_growth_engine.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Workers and the scheduler open sessions through growth_engine.database.SessionLocal
import growth_engine.database as _database  # noqa: E402
_database.SessionLocal = TestingSessionLocal  # type: ignore

@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_growth_engine.db")
    except OSError:
        pass

@pytest.fixture(scope="session", autouse=True)
def rollup_queue(create_test_db):  # depend on DB creation
    """Provide a queue instance on app.state for endpoints during tests.

    The production app sets this up in lifespan. Tests bypass lifespan so we replicate here.
    """
    queue = PriorityDelayQueue()
    app.state.rollup_queue = queue  # type: ignore[attr-defined]
    worker = RollupWorker(queue, poll_timeout=0.2)
    worker.start()
    yield queue
    worker.stop()
    queue.shutdown()

@pytest.fixture(autouse=True)
def _isolate_test_state(rollup_queue):
    """Per-test isolation for in-memory single-process components."""
    rollup_queue.purge()
    ratelimiter.rate_limiter.reset()  # type: ignore[attr-defined]
    worker_rollup.LAST_EXCEPTIONS.clear()
    yield
    rollup_queue.purge()
    ratelimiter.rate_limiter.reset()  # type: ignore[attr-defined]

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

@pytest.fixture()
def client():
    return TestClient(app)

# ---------- Data factory helpers ----------

@pytest.fixture()
def brand_factory(db_session):
    def _create(name: str = "Test Brand", *, industry: Industry = Industry.B2B_SAAS, is_active: bool = True):
        suffix = secrets.token_hex(4)
        brand = Brand(
            id=f"brand_{suffix}",
            tracking_id=f"trk_{suffix}",
            name=f"{name} {suffix}",
            api_key=f"ge_{secrets.token_hex(16)}",
            industry=industry,
            is_active=is_active,
        )
        db_session.add(brand)
        db_session.commit()
        db_session.refresh(brand)
        return brand
    return _create

@pytest.fixture()
def auth_header(brand_factory):
    brand = brand_factory()
    return {"x-api-key": brand.api_key}, brand

def build_event(brand_id: str, event_type: EventType, timestamp: datetime, **fields) -> TrackedEvent:
    timestamp = ensure_utc(timestamp)
    return TrackedEvent(
        id=fields.pop("id", None) or new_event_id(),
        brand_id=brand_id,
        event_type=event_type,
        timestamp=timestamp,
        received_at=ensure_utc(fields.pop("received_at", timestamp)),
        raw_event_type=event_type.value,
        category=categorize(event_type),
        **fields,
    )

@pytest.fixture()
def make_event():
    """Build an in-memory TrackedEvent; received_at defaults to the event time."""
    return build_event

@pytest.fixture()
def event_factory(db_session):
    """Append events straight to the store, bypassing the HTTP gateway."""
    store = SqlAlchemyEventStore(db_session)
    def _create(brand_id: str, event_type: EventType, timestamp: datetime, **fields) -> TrackedEvent:
        event = build_event(brand_id, event_type, timestamp, **fields)
        store.append([event])
        return event
    return _create

@pytest.fixture()
def ad_spend_factory(db_session):
    def _create(brand_id: str, start: datetime, end: datetime, amount: float, channel: str = "paid_search"):
        entry = AdSpendEntry(
            brand_id=brand_id,
            channel=channel,
            period_start=to_naive_utc(start),
            period_end=to_naive_utc(end),
            amount=amount,
            source="test",
        )
        db_session.add(entry)
        db_session.commit()
        return entry
    return _create

@pytest.fixture()
def utc():
    def _at(*args) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)
    return _at
