"""
WardTrack - Main FastAPI Application
Treatment plan timeline engine with offline-first sync
"""

import logging
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from wardtrack.config import settings
from wardtrack.dependencies import build_plan_service, close_plan_service
from wardtrack.exceptions import (
    InvalidTransition,
    ItemNotFound,
    RecordNotFound,
    RemoteRequestError,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifecycle
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting WardTrack application...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Sync collections: {', '.join(settings.sync_collections)}")

    app.state.plan_service = build_plan_service()

    yield

    # Shutdown
    logger.info("Shutting down WardTrack application...")
    await close_plan_service(app.state.plan_service)


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="WardTrack",
    description="Treatment plan timeline engine with offline-first sync",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from wardtrack.routes import patients as patient_routes, plans as plan_routes, sync as sync_routes
app.include_router(plan_routes.router)
app.include_router(patient_routes.router)
app.include_router(sync_routes.router)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": "1.0.0",
        "environment": settings.environment
    }


# =============================================================================
# Error Handlers
# =============================================================================

def _error_response(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "error": str(exc),
            "timestamp": datetime.now().isoformat(),
            **extra
        })
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request, exc: ValidationError):
    """Invalid item, recurrence or occurrence; nothing was stored"""
    return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, errors=exc.errors)


@app.exception_handler(InvalidTransition)
async def transition_exception_handler(request, exc: InvalidTransition):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(RecordNotFound)
async def record_not_found_handler(request, exc: RecordNotFound):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ItemNotFound)
async def item_not_found_handler(request, exc: ItemNotFound):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(RemoteRequestError)
async def remote_request_exception_handler(request, exc: RemoteRequestError):
    """Remote store rejected the write"""
    logger.error(f"Remote store rejected request: {exc}")
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc, remote_status=exc.status_code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Handle HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "timestamp": datetime.now().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An error occurred",
            "timestamp": datetime.now().isoformat()
        }
    )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "wardtrack.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower()
    )
