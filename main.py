"""
Catalog Bulk Upload - Main Application

FastAPI application entry point. Mounts the bulk upload API under
/api/bulk-upload.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog
from datetime import datetime, timezone

from config import settings, check_connection
from exceptions import AppError
from services.bulk_upload_service import get_run_registry

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if settings.is_production
            else structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def database_status() -> dict:
    if not settings.supabase_configured:
        return {"status": "not_configured"}
    return check_connection()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: log pipeline limits and check the catalog database.
    Shutdown: report runs that were still open (they are memory only).
    """
    logger.info(
        "application_starting",
        environment=settings.environment,
        upload_concurrency_limit=settings.upload_concurrency_limit,
        persist_chunk_size=settings.persist_chunk_size,
        storage_bucket=settings.storage_bucket,
        notifications=settings.telegram_configured
    )

    db_status = database_status()
    if db_status["status"] == "healthy":
        logger.info("database_connected", products=db_status["products_count"])
    elif db_status["status"] == "not_configured":
        logger.warning("database_not_configured")
    else:
        logger.error("database_connection_failed", error=db_status.get("error"))

    yield

    open_runs = len(get_run_registry())
    if open_runs:
        logger.warning("open_upload_runs_dropped", count=open_runs)
    logger.info("application_shutting_down")


app = FastAPI(
    title="Catalog Bulk Upload",
    description="Match product images to a product feed and load them into the catalog",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===================
# ROUTES
# ===================

@app.get("/health")
async def health_check():
    """Service health: catalog database, open runs and notification setup."""
    db_status = database_status()

    return {
        "status": "healthy" if db_status["status"] == "healthy" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "database": db_status,
        "open_runs": len(get_run_registry()),
        "notifications": settings.telegram_configured,
    }


@app.get("/")
async def root():
    return {
        "name": "Catalog Bulk Upload API",
        "version": "0.1.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "health": "/health",
        "endpoints": {
            "bulk_upload": "/api/bulk-upload"
        }
    }


# ===================
# ERROR HANDLERS
# ===================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """AppErrors that escape a route keep their status code and error body."""
    logger.warning(
        "app_error",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler.

    Catches unhandled exceptions and returns standard error format.
    """
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": str(exc) if settings.debug else None,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        }
    )


# ===================
# INCLUDE ROUTERS
# ===================
from routes.bulk_upload import router as bulk_upload_router

app.include_router(bulk_upload_router, prefix="/api/bulk-upload", tags=["Bulk Upload"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
