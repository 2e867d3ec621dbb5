"""
ErrorScope FastAPI Application.

Senior Engineering Note:
- Lifespan context for startup/shutdown
- CORS middleware for dashboard integration
- Structured JSON logging
- Domain errors mapped to HTTP status codes in one place
- Health check endpoint
- API versioning
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger
from starlette.requests import Request

from errorscope.config import get_settings
from errorscope.database import close_db, init_db
from errorscope.errors import InvalidTransitionError, NotFoundError

settings = get_settings()

# Configure structured logging
logger = logging.getLogger()
logHandler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter(
    fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logHandler.setFormatter(formatter)
logger.addHandler(logHandler)
logger.setLevel(getattr(logging, settings.log_level))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler for startup and shutdown."""
    logger.info("Starting ErrorScope API", extra={"version": settings.app_version})

    # In production, use Alembic migrations instead
    if settings.environment == "development":
        logger.info("Initializing database...")
        await init_db()

    yield

    logger.info("Shutting down ErrorScope API...")
    from errorscope.api.dependencies import get_report_cache
    await get_report_cache().close()

    await close_db()
    logger.info("ErrorScope API shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Error grouping, correlation and anomaly detection",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint for monitoring and load balancers."""
    return JSONResponse(
        content={
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }
    )


from errorscope.api.v1 import analytics, groups, occurrences  # noqa: E402

app.include_router(
    occurrences.router,
    prefix=f"{settings.api_v1_prefix}/occurrences",
    tags=["Ingestion"],
)

app.include_router(
    groups.router,
    prefix=f"{settings.api_v1_prefix}/groups",
    tags=["Error Groups"],
)

app.include_router(
    analytics.router,
    prefix=f"{settings.api_v1_prefix}/analytics",
    tags=["Analytics"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled exceptions."""
    logger.error(
        "Unhandled exception",
        extra={
            "path": str(request.url),
            "method": request.method,
            "error": str(exc),
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "errorscope.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
