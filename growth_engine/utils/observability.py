"""Observability helpers (correlation IDs)."""
from __future__ import annotations
import uuid
from typing import Any, Mapping

REQUEST_ID_HEADER = "X-Request-ID"

def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())

def request_id_from(request: Any) -> str:
    """Request id assigned by the context middleware, falling back to the header."""
    state_id = getattr(getattr(request, "state", None), "request_id", None)
    return state_id or request.headers.get(REQUEST_ID_HEADER, "unknown")

__all__ = ["ensure_request_id", "request_id_from", "REQUEST_ID_HEADER"]
