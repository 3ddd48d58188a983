"""
Logging for the growth engine.

Every module logs through ``get_logger``, which nests loggers under the
``growth_engine`` namespace and turns keyword arguments into structured
fields (brand_id, request_id, counts). Console output is human readable;
the optional log file gets one JSON object per line.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path

LOGGER_NAMESPACE = "growth_engine"

# third-party loggers routed to the same handlers
_LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "sqlalchemy.engine": "WARNING",
}


class JSONFormatter(logging.Formatter):
    """One JSON line per record, structured fields merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            "thread": record.threadName,
        }
        fields = getattr(record, "fields", None)
        if fields:
            entry.update(fields)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Thin wrapper so call sites can write ``logger.info("Rollup done", brand_id=...)``.

    ``None`` values are dropped; ``exc_info`` goes to the stdlib logger.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _emit(self, level: int, message: str, **fields):
        exc_info = fields.pop("exc_info", False)
        if not self.logger.isEnabledFor(level):
            return
        payload = {k: v for k, v in fields.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={"fields": payload})

    def debug(self, message: str, **fields):
        self._emit(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self._emit(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self._emit(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self._emit(logging.ERROR, message, **fields)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure handlers for the service and its libraries.

    Args:
        log_level: Level for growth_engine loggers and the root logger
        log_file: Rotating JSON log file; parent directories are created
        enable_console: Plain-text output on stdout
    """
    handlers: Dict[str, Dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "plain",
            "level": log_level,
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "level": log_level,
        }
    names = list(handlers)

    loggers: Dict[str, Dict[str, Any]] = {
        LOGGER_NAMESPACE: {"level": log_level, "handlers": names, "propagate": False},
    }
    for library, level in _LIBRARY_LEVELS.items():
        loggers[library] = {"level": level, "handlers": names, "propagate": False}

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "plain": {
                "format": "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": names},
    })


def get_logger(name: str) -> StructuredLogger:
    """Logger under the growth_engine namespace; ``__name__`` of package modules is kept as is."""
    if name == LOGGER_NAMESPACE or name.startswith(LOGGER_NAMESPACE + "."):
        return StructuredLogger(name)
    return StructuredLogger(f"{LOGGER_NAMESPACE}.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    brand_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> None:
    """Audit record for a brand-visible action such as ``events_ingested`` or ``budget_recommended``."""
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        brand_id=brand_id,
        request_id=request_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    get_logger("performance").info(
        f"Performance: {operation}",
        operation=operation,
        duration_ms=round(duration_ms, 2),
        **(additional_data or {})
    )
