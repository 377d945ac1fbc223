"""
FORMCOACH Backend API
Exercise form feedback and automatic rep counting

FastAPI application entry point. Clients run the pose detector themselves
and push keypoints; the form service scores form and counts reps.
"""

import logging
import sys
import time
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from core.config import settings
from shared.utils import LOG_DATE_FORMAT, LOG_FORMAT, parse_log_level, setup_logger

# ============================================
# Configure Root Logger First
# ============================================
logging.basicConfig(
    level=parse_log_level(settings.LOG_LEVEL),
    format=LOG_FORMAT,
    datefmt=LOG_DATE_FORMAT,
    handlers=[logging.StreamHandler(sys.stdout)]
)

from form_service.models import ExerciseSessionHandler, FormAnalyzer, ProfileRegistry
from form_service.router import router as form_router

# Setup logging
logger = setup_logger("formcoach.main", level=parse_log_level(settings.LOG_LEVEL))
request_logger = setup_logger("formcoach.requests", level=logging.DEBUG if settings.DEBUG else logging.INFO)


# ============================================
# Request Logging Middleware
# ============================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all incoming requests and responses with timing."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        client_ip = request.client.host if request.client else "unknown"
        query_string = f"?{request.url.query}" if request.url.query else ""
        request_logger.debug(f"➡️  {request.method} {request.url.path}{query_string} from {client_ip}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000

            if response.status_code < 300:
                status_emoji = "✅"
            elif response.status_code < 400:
                status_emoji = "↪️"
            elif response.status_code < 500:
                status_emoji = "⚠️"
            else:
                status_emoji = "❌"

            request_logger.info(
                f"{status_emoji} {request.method} {request.url.path} → {response.status_code} ({process_time:.1f}ms)"
            )

            return response
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            request_logger.error(f"💥 {request.method} {request.url.path} → ERROR: {type(e).__name__}: {str(e)} ({process_time:.1f}ms)")
            request_logger.error(traceback.format_exc())
            raise


def build_session_handler() -> ExerciseSessionHandler:
    """
    Load exercise profiles and create the session handler.

    An invalid PROFILES_PATH raises InvalidProfile and aborts startup.
    """
    registry = ProfileRegistry.with_builtins(settings.PROFILES_PATH)
    return ExerciseSessionHandler(
        registry=registry,
        analyzer=FormAnalyzer(),
        confidence_threshold=settings.KEYPOINT_CONFIDENCE_THRESHOLD,
        min_valid_keypoints=settings.MIN_VALID_KEYPOINTS,
        max_sessions=settings.MAX_ACTIVE_SESSIONS,
        idle_timeout_s=settings.SESSION_IDLE_TIMEOUT_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # ===== STARTUP =====
    logger.info(f"🚀 {settings.APP_NAME} API starting up...")

    app.state.session_handler = build_session_handler()
    logger.info(f"🏋️ Exercise profiles loaded: {app.state.session_handler.registry.names()}")

    logger.info(f"✅ {settings.APP_NAME} API ready!")

    yield  # Application runs here

    # ===== SHUTDOWN =====
    logger.info(f"👋 {settings.APP_NAME} API shutting down...")
    active = app.state.session_handler.session_count
    if active:
        logger.warning(f"Discarding {active} active session(s)")
    logger.info("✅ Shutdown complete")


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Exercise form scoring and rep counting from pose keypoints",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


# Health check endpoint
@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "formcoach-api",
        "active_sessions": request.app.state.session_handler.session_count,
    }


# Include service routers
app.include_router(form_router, prefix="/api/form", tags=["Form Service"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
