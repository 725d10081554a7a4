from fastapi import FastAPI, Request, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import time
import uuid
from contextlib import asynccontextmanager

from storyguard.routers import moderation, stories, admin, analytics
from storyguard.core.logger import logger
from storyguard.core.exceptions import StoryGuardException, EXCEPTION_STATUS_MAPPING
from storyguard.core.config import settings
from storyguard.core.dependencies import build_moderation_engine
from storyguard.db.session import get_db
from storyguard.services.analytics_service import get_moderation_stats

APP_VERSION = "1.0.0"

# Application lifespan management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared moderation engine and make sure tables exist."""
    logger.info("Starting StoryGuard Moderation API", extra={"version": APP_VERSION})

    # Import all models to ensure they are registered with SQLAlchemy
    from storyguard.models.story import Story
    from storyguard.models.moderation_log import ModerationLog
    from storyguard.models.notification_log import NotificationLog

    app.state.moderation_engine = build_moderation_engine()
    if not app.state.moderation_engine.enabled:
        logger.warning("AI moderation disabled, every submission will be approved")

    try:
        from storyguard.db.session import engine, Base
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified/created successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}", exc_info=True)

    app.state.started_at = time.time()

    yield

    logger.info("Shutting down StoryGuard Moderation API")

app = FastAPI(
    title=settings.app_name,
    description="""
    Moderation backend for an ephemeral stories app. Stories (text, image or
    video, expiring after 24 hours) are checked before they are published and
    deep-scanned after they go live.

    ## Decisions

    * **APPROVED**: visible
    * **SHADOW**: stored but hidden from public feeds
    * **PENDING**: queued for a moderator
    * **REJECTED**: blocked

    A deep scan can only make a live story's decision stricter. Moderators can
    set any decision from the admin queue.

    ## Authentication

    Admin routes require `Authorization: Bearer <admin key>` when an admin key
    is configured.
    """,
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request ID middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Tag each request with an ID, reusing the caller's ``X-Request-ID`` if sent."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code}",
        extra={
            "request_id": request_id,
            "client_ip": request.client.host if request.client else "unknown",
            "process_time_ms": round(elapsed_ms, 1)
        }
    )

    return response

# Global exception handler
@app.exception_handler(StoryGuardException)
async def storyguard_exception_handler(request: Request, exc: StoryGuardException):
    """Service errors that escape a router become a JSON body with the request ID."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = EXCEPTION_STATUS_MAPPING.get(exc.__class__, 500)
    logger.error(
        f"{exc.error_code}: {exc.message}",
        extra={"request_id": request_id, "status_code": status_code, "details": exc.details}
    )

    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": request_id
        }
    )

# Include routers
app.include_router(moderation.router)
app.include_router(stories.router)
app.include_router(admin.router)
app.include_router(analytics.router)

# Health check endpoint
@app.get("/health", tags=["monitoring"])
async def health_check(request: Request, db: Session = Depends(get_db)):
    """Database reachability and whether AI moderation is switched on."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=503,
            detail={"status": "unhealthy", "timestamp": time.time(), "error": str(e)}
        )

    moderation_engine = getattr(request.app.state, "moderation_engine", None)
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": APP_VERSION,
        "services": {
            "database": "healthy",
            "api": "healthy",
            "moderation": "enabled" if moderation_engine and moderation_engine.enabled else "disabled"
        }
    }

# Metrics endpoint
@app.get("/metrics", tags=["monitoring"])
async def get_metrics(request: Request, db: Session = Depends(get_db)):
    """Decision counts, mean pre-publish latency and process uptime."""
    try:
        stats = get_moderation_stats(db)
    except SQLAlchemyError as e:
        logger.error(f"Metrics collection failed: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to collect metrics", "message": str(e)}
        )

    started_at = getattr(request.app.state, "started_at", None)
    return {
        "timestamp": time.time(),
        "moderation": stats.model_dump(),
        "uptime": time.time() - started_at if started_at else None
    }

# Root endpoint
@app.get("/", tags=["general"])
async def root():
    """
    Root endpoint with API information.

    Returns:
        Basic API information and links
    """
    return {
        "message": settings.app_name,
        "version": APP_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
        "endpoints": {
            "evaluate": "/api/v1/moderate/evaluate",
            "deep_evaluate": "/api/v1/moderate/deep",
            "batch_evaluate": "/api/v1/moderate/batch",
            "stories": "/api/v1/stories",
            "moderation_queue": "/api/v1/admin/queue",
            "moderation_stats": "/api/v1/analytics/moderation"
        }
    }
