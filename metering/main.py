"""
FastAPI application entry point.
Sets up the API with lifespan events for database initialization.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from metering.api.errors import register_exception_handlers
from metering.api.router import api_router
from metering.auth.firebase import initialize_firebase
from metering.config import settings
from metering.database import init_db
from metering.middleware.metrics_middleware import MetricsMiddleware
from metering.utils.logging import configure_logging

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: Initialize database and Firebase Admin SDK
    """
    configure_logging("metering-api", settings.log_level)

    await init_db()

    # Without Firebase config every authenticated request is rejected with 401
    if settings.firebase_project_id:
        try:
            initialize_firebase()
        except Exception as e:
            if settings.environment == "production":
                raise
            logger.warning(
                f"Firebase initialization failed: {e}",
                extra={"event": "firebase_init_failed"}
            )
    else:
        logger.warning(
            "FIREBASE_PROJECT_ID not set; token verification disabled",
            extra={"event": "firebase_not_configured"}
        )

    yield


async def root():
    """Root endpoint."""
    return {
        "message": "Metering API",
        "version": VERSION,
        "environment": settings.environment
    }


async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware, handlers and routes."""
    app = FastAPI(
        title="Metering API",
        description="Usage metering, quota enforcement and billing alerts",
        version=VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Metrics middleware (added after CORS so it wraps every request)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)

    # Include API routes
    app.include_router(api_router, prefix="/api")
    app.add_api_route("/", root, methods=["GET"])
    app.add_api_route("/metrics", metrics, methods=["GET"], include_in_schema=False)

    return app


app = create_app()
