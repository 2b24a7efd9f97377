"""MetricSync — FastAPI Application Entry Point.

Pulls business metrics from Google Sheets tabs, normalizes them into typed
observations, and fully replaces each synced scope in the metric store.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from metricsync.database import init_db, test_connection
from metricsync.api.sync_routes import router as sync_router
from metricsync.core.errors import SyncError
from metricsync.core.logging import get_logger
from metricsync.models.sync_models import ErrorResponse

logger = get_logger("main")

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 MetricSync starting up...")
    # Test connection first
    if test_connection():
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Database NOT connected — endpoints will fail")
    yield
    logger.info("MetricSync shut down")


app = FastAPI(
    title="MetricSync",
    description="Google Sheets → metric store synchronization with typed, categorized observations.",
    version=VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

# Routers
app.include_router(sync_router)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Render every sync failure as {success: false, message}."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.message).model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "metricsync",
        "version": VERSION,
    }
