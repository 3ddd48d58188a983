"""
Dependencies for authentication, database sessions, and shared collaborators.
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, status, Header, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session
from growth_engine import database
from growth_engine.jobs.queue import PriorityDelayQueue
from growth_engine.models.db import Brand
from growth_engine.services.ad_spend import AdSpendProvider, SqlAlchemyAdSpendProvider
from growth_engine.services.event_store import EventStore, SqlAlchemyEventStore
from growth_engine.utils import get_logger
from growth_engine.utils import ratelimiter
from growth_engine.utils.ratelimiter import RateLimiter

logger = get_logger(__name__)

def _key_prefix(api_key: str) -> str:
    return api_key[:10] + "..." if len(api_key) > 10 else api_key

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = database.SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_current_brand(
    x_api_key: Optional[str] = Header(None, alias="x-api-key"),
    db: Session = Depends(get_db)
) -> Brand:
    """
    Resolve the calling brand from its shared API key.

    Raises:
        HTTPException: 401 if the key is missing, unknown, or the brand is inactive
    """
    if not x_api_key:
        logger.warning("Authentication failed: missing x-api-key header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    brand = db.scalars(
        select(Brand).where(Brand.api_key == x_api_key, Brand.is_active.is_(True))
    ).first()

    if not brand:
        logger.warning(
            "Authentication failed: invalid or inactive API key",
            api_key_prefix=_key_prefix(x_api_key)
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
        )

    logger.debug("Brand authenticated", brand_id=brand.id)
    return brand

def ensure_brand_access(brand_id: Optional[str], brand: Brand) -> Brand:
    """Allow access only to the authenticated brand (by id or tracking id)."""
    if brand_id is not None and brand_id not in (brand.id, brand.tracking_id):
        logger.warning(
            "Access denied: brand mismatch",
            brand_id=brand.id,
            requested_brand_id=brand_id
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied for this brand"
        )
    return brand

def get_authorized_brand(
    brand_id: Optional[str] = Query(None, description="Defaults to the authenticated brand"),
    brand: Brand = Depends(get_current_brand),
) -> Brand:
    return ensure_brand_access(brand_id, brand)

def get_event_store(db: Session = Depends(get_db)) -> EventStore:
    return SqlAlchemyEventStore(db)

def get_ad_spend_provider(db: Session = Depends(get_db)) -> AdSpendProvider:
    return SqlAlchemyAdSpendProvider(db)

def get_rate_limiter() -> RateLimiter:
    return ratelimiter.rate_limiter

def get_rollup_queue(request: Request) -> PriorityDelayQueue:
    queue = getattr(request.app.state, "rollup_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rollup queue not initialized"
        )
    return queue

def get_pagination_params(
    limit: int = 100,
    offset: int = 0
) -> dict:
    """
    Validate and return pagination parameters.

    Args:
        limit: Maximum number of items to return (1-1000)
        offset: Number of items to skip (>= 0)

    Raises:
        HTTPException: If parameters are invalid
    """
    if limit < 1 or limit > 1000:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Limit must be between 1 and 1000"
        )

    if offset < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Offset must be >= 0"
        )

    return {"limit": limit, "offset": offset}
