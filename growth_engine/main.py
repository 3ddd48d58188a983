"""
FastAPI application main module.
Wires the ingestion gateway and analytics APIs together with middleware,
error handling, and the background KPI rollup worker.
"""
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import os
from contextlib import asynccontextmanager
from sqlalchemy import text
from growth_engine import database
from growth_engine.api.v1 import api_router
from growth_engine.utils import setup_logging, get_logger
from growth_engine.utils.observability import ensure_request_id
from growth_engine.jobs.worker_rollup import RollupScheduler, RollupWorker, create_queue
from growth_engine.database import Base, engine
from growth_engine.config import CORS_SETTINGS, QUEUE_SETTINGS, RATE_LIMIT_SETTINGS

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "growth-engine"
SERVICE_VERSION = "1.0.0"


def _uses_redis() -> bool:
    return str(RATE_LIMIT_SETTINGS.get("backend", "memory")).lower() == "redis"


def check_redis_health() -> bool:
    """Check if Redis is reachable for the shared rate limiter."""
    try:
        import redis
        redis_url = str(RATE_LIMIT_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        client = redis.from_url(redis_url, socket_connect_timeout=2.0)
        client.ping()
        logger.info("Redis health check: Redis is available", url=redis_url)
        return True
    except Exception as e:
        logger.warning("Redis health check: Redis is unavailable", error=str(e))
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates tables, then runs the rollup worker (and optionally the scheduler)
    for the lifetime of the app.
    """
    logger.info("Application startup initiated")

    worker: RollupWorker | None = None
    scheduler: RollupScheduler | None = None
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        if _uses_redis() and not check_redis_health():
            logger.warning("Redis rate limiter configured but Redis is unavailable; ingestion will fail until it returns")

        queue = create_queue()
        # endpoints reach the queue through app.state
        app.state.rollup_queue = queue  # type: ignore[attr-defined]
        worker = RollupWorker(queue)
        worker.start()
        logger.info("KPI rollup queue + worker started")

        if QUEUE_SETTINGS.get("scheduler_enabled"):
            scheduler = RollupScheduler(queue)
            scheduler.start()
        else:
            logger.info("Rollup scheduler not enabled; rollups run on demand only")

        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if scheduler:
            scheduler.stop()
        if worker:
            worker.stop()
            logger.info("KPI rollup worker stop signal sent")
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Growth Engine",
    description="""
    Marketing event ingestion, multi-touch attribution and KPI analytics.

    ## Features
    * **Event ingestion** - Single events or batches of up to 100, deduplicated by message id
    * **Attribution** - First touch, last touch, linear, time decay and position based models
    * **KPI dashboards** - Realtime, hourly, daily, weekly and monthly snapshots with comparisons
    * **Budget planning** - Spend recommendations from MRR growth targets

    ## Authentication
    Send your brand's API key in the `x-api-key` header.

    ## Rate Limiting
    Ingestion is limited per brand over a sliding window (default 1000 events per 60 seconds).
    Responses carry `X-RateLimit-Limit`, `X-RateLimit-Remaining` and `X-RateLimit-Reset`;
    rejected single events also carry `Retry-After`.
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_SETTINGS["allow_origins"],
    allow_credentials=bool(CORS_SETTINGS["allow_credentials"]),
    allow_methods=CORS_SETTINGS["allow_methods"],
    allow_headers=CORS_SETTINGS["allow_headers"],
)

# Compression middleware for better performance
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request ID and comprehensive logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

# Custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")
    details = jsonable_encoder(exc.errors())

    logger.warning(
        "Request validation failed",
        errors=details,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "Request validation failed",
            "details": details,
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "request_id": request_id
        }
    )

# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
def health_check():
    """Basic health check endpoint for load balancers."""
    rate_limit_backend = "redis" if _uses_redis() else "memory"
    redis_status = None
    if rate_limit_backend == "redis":
        redis_status = "healthy" if check_redis_health() else "unavailable"
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "rate_limit_backend": rate_limit_backend,
        **({"redis_status": redis_status} if redis_status is not None else {}),
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
def detailed_health_check():
    """Detailed health check with database, Redis and queue status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    db = database.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"
    finally:
        db.close()

    if _uses_redis():
        healthy = check_redis_health()
        health_status["checks"]["redis"] = "healthy" if healthy else "unavailable"
        if not healthy:
            health_status["status"] = "degraded"

    queue = getattr(app.state, "rollup_queue", None)  # type: ignore[attr-defined]
    if queue is not None:
        health_status["checks"]["queue"] = queue.snapshot()

    return health_status

# API Documentation root
@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Growth Engine API",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

# Include API router with version prefix
app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "growth_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["growth_engine"],
        log_level="info",
        access_log=True
    )
