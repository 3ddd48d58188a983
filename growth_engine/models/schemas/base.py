"""
Base schemas used across the application.
"""
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict

class ResponseBase(BaseModel):
    """Base response format for API endpoints with an optional arbitrary data payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

class Pagination(BaseModel):
    limit: int
    offset: int
    total: int
    has_more: bool
